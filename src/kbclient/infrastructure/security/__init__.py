"""Protected token storage."""

from .keyring_backend import KeyringSecretBackend
from .token_store import SecureTokenStore

__all__ = ["KeyringSecretBackend", "SecureTokenStore"]
