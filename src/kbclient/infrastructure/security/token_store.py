"""Secure token store with plain-store fallback.

Write path:
    1. Try the protected backend (OS keyring).
    2. On success, delete any stale fallback copy - the fallback must never outlive
       a newer protected write.
    3. On failure, write the blob to the plain store under the fallback key.
   Every write tries the protected backend first again, so a keyring that comes back
   (unlocked, D-Bus restarted) heals the store on the next refresh.

Read path: protected backend first, then the fallback key.

Clear: both paths, unconditionally - a previous write may have used either.

No expiry logic lives here. This class only moves bytes.
"""

import json
import logging
from datetime import UTC, datetime
from typing import Any

from kbclient.domain.entities.session import TokenPair
from kbclient.domain.exceptions import StorageError
from kbclient.domain.ports import IKeyValueStore, ISecretBackend

logger = logging.getLogger(__name__)


def _to_epoch_ms(value: datetime | None) -> int | None:
    if value is None:
        return None
    return int(value.timestamp() * 1000)


def _from_epoch_ms(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ValueError(f"expiry must be epoch milliseconds, got {value!r}")
    return datetime.fromtimestamp(value / 1000, tz=UTC)


def encode_tokens(tokens: TokenPair) -> str:
    """Serialize a token pair to the JSON blob kept in the secure store."""
    return json.dumps(
        {
            "accessToken": tokens.access_token,
            "refreshToken": tokens.refresh_token,
            "accessExpiresAt": _to_epoch_ms(tokens.access_expires_at),
            "refreshExpiresAt": _to_epoch_ms(tokens.refresh_expires_at),
        }
    )


def decode_tokens(raw: str) -> TokenPair:
    """Parse the JSON blob back into a token pair.

    Raises:
        ValueError: If the blob is not valid JSON or misses a token
    """
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("token blob is not an object")

    access_token = data.get("accessToken")
    refresh_token = data.get("refreshToken")
    if not isinstance(access_token, str) or not access_token:
        raise ValueError("token blob has no accessToken")
    if not isinstance(refresh_token, str) or not refresh_token:
        raise ValueError("token blob has no refreshToken")

    return TokenPair(
        access_token=access_token,
        refresh_token=refresh_token,
        access_expires_at=_from_epoch_ms(data.get("accessExpiresAt")),
        refresh_expires_at=_from_epoch_ms(data.get("refreshExpiresAt")),
    )


class SecureTokenStore:
    """Persists the token pair, preferring the protected backend."""

    def __init__(
        self,
        secure_backend: ISecretBackend | None,
        fallback_store: IKeyValueStore,
        fallback_key: str = "kb_session_tokens_fallback",
    ) -> None:
        """Initialize the token store.

        Args:
            secure_backend: Protected backend, or None to always use the fallback
            fallback_store: Plain key/value store
            fallback_key: Key of the plaintext fallback copy
        """
        self._secure = secure_backend
        self._fallback = fallback_store
        self._fallback_key = fallback_key

    async def write(self, tokens: TokenPair) -> None:
        """Persist both tokens together.

        Raises:
            StorageError: If neither the protected nor the plain store accepted the write
        """
        blob = encode_tokens(tokens)

        if self._secure is not None:
            try:
                await self._secure.set_secret(blob)
            except Exception as e:
                # Any backend failure (NoKeyringError, locked keychain, D-Bus gone) means
                # "protected store unavailable right now" - fall through to the plain store.
                logger.warning(
                    "Failed to persist tokens to secure store, falling back to plain store: %s",
                    e,
                )
            else:
                await self._drop_stale_fallback()
                return

        try:
            await self._fallback.set(self._fallback_key, blob)
        except StorageError:
            logger.error("Failed to persist tokens to fallback store")
            raise

    async def read(self) -> TokenPair | None:
        """Return the last written token pair, or None."""
        if self._secure is not None:
            try:
                raw = await self._secure.get_secret()
            except Exception as e:
                logger.warning("Failed to read tokens from secure store: %s", e)
                raw = None
            if raw:
                tokens = self._decode(raw, source="secure store")
                if tokens is not None:
                    return tokens

        try:
            raw = await self._fallback.get(self._fallback_key)
        except StorageError as e:
            logger.warning("Failed to read tokens from fallback store: %s", e)
            return None

        return self._decode(raw, source="fallback store") if raw else None

    async def clear(self) -> None:
        """Erase the token pair from both stores.

        Raises:
            StorageError: If the plain store could not be cleared
        """
        try:
            if self._secure is not None:
                await self._secure.delete_secret()
        except Exception as e:
            logger.warning("Failed to clear secure store tokens: %s", e)
        finally:
            await self._fallback.delete(self._fallback_key)

    # -- private helpers -----------------------------------------------------

    async def _drop_stale_fallback(self) -> None:
        try:
            await self._fallback.delete(self._fallback_key)
        except StorageError as e:
            # The protected copy is authoritative and read first, so a leftover
            # fallback row is shadowed until the next successful delete.
            logger.warning("Failed to remove stale fallback tokens: %s", e)

    @staticmethod
    def _decode(raw: str, source: str) -> TokenPair | None:
        try:
            return decode_tokens(raw)
        except ValueError as e:
            logger.warning("Discarding malformed token blob from %s: %s", source, e)
            return None
