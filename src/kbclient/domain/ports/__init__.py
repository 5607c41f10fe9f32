"""Domain ports (interfaces) for dependency inversion."""

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping


# Hey future me, ISecretBackend is the PORT for the OS-backed credential store (Keychain,
# Secret Service, Windows Credential Locker). It only moves strings - no JSON, no expiry
# logic. Implementations MUST raise on failure (never return None to mean "broken"),
# because SecureTokenStore decides to fall back to the plain store based on exceptions.
class ISecretBackend(ABC):
    """Protected storage for a single secret string."""

    @abstractmethod
    async def get_secret(self) -> str | None:
        """Return the stored secret, or None if nothing is stored."""
        pass

    @abstractmethod
    async def set_secret(self, value: str) -> None:
        """Store *value*, replacing any previous secret."""
        pass

    @abstractmethod
    async def delete_secret(self) -> None:
        """Erase the secret. Deleting a missing secret is not an error."""
        pass


# Listen up, IKeyValueStore is the plain (unprotected) persistent store. It holds the
# identity entries (user id, roles, seller id, fingerprint) and - only when the secret
# backend is unavailable - the fallback copy of the token blob. Batch methods exist so
# a session is written and erased in one transaction, never half.
class IKeyValueStore(ABC):
    """Plain persistent string key/value storage."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the value for *key*, or None."""
        pass

    @abstractmethod
    async def get_many(self, keys: Iterable[str]) -> dict[str, str | None]:
        """Return a mapping for every requested key (None for missing ones)."""
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Insert or replace one entry."""
        pass

    @abstractmethod
    async def set_many(self, entries: Mapping[str, str]) -> None:
        """Insert or replace several entries atomically."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove one entry (missing keys are ignored)."""
        pass

    @abstractmethod
    async def delete_many(self, keys: Iterable[str]) -> None:
        """Remove several entries atomically (missing keys are ignored)."""
        pass


__all__ = ["IKeyValueStore", "ISecretBackend"]
