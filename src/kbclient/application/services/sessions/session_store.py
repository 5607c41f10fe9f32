"""Session record store.

Hey future me - this is the ONE authoritative copy of the session in memory. It
combines the SecureTokenStore (token blob) with the plain identity entries
(user id, roles, seller id, fingerprint) and keeps the result cached after the first
load. Everything else (request pipeline, refresh coordinator, auth service, UI)
reads the session through here.

Ordering rules that matter:
- persist: storage write -> cache update -> broadcast. Listeners always see the
  new session when they read cached_session from inside their callback.
- clear: cache and storage go empty together, THEN "session changed (None)",
  THEN - only for involuntary sign-outs - "unauthorized".
- persist/update/clear are serialized by one asyncio.Lock, so a sign-out that lands
  while a refresh is mid-write can't be undone by the refresh finishing later.

Storage failures never escape: they are logged and the store behaves as if there
is no session. Forcing a fresh sign-in is always the safe default.
"""

import asyncio
import dataclasses
import json
import logging
from typing import Any

from kbclient.application.services.sessions.event_bus import SessionEventBus
from kbclient.config import StorageSettings
from kbclient.domain.entities.session import Session, utc_now
from kbclient.domain.exceptions import StorageError
from kbclient.domain.ports import IKeyValueStore
from kbclient.domain.value_objects.token_expiry import Clock, is_refresh_token_expired
from kbclient.infrastructure.security.token_store import SecureTokenStore

logger = logging.getLogger(__name__)


def sanitize_roles(roles: Any) -> tuple[str, ...]:
    """Keep non-empty string roles, first occurrence wins, order preserved."""
    if not isinstance(roles, list | tuple):
        return ()
    return tuple(
        dict.fromkeys(role for role in roles if isinstance(role, str) and role)
    )


def _parse_roles(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    try:
        return sanitize_roles(json.loads(raw))
    except ValueError:
        return ()


def _to_int(raw: str | None) -> int | None:
    if not raw:
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


def _storage_errors(results: list[Any]) -> list[StorageError]:
    """Pick StorageErrors out of gather(return_exceptions=True) results.

    Anything else is a bug, not an I/O failure, and is re-raised.
    """
    errors: list[StorageError] = []
    for result in results:
        if isinstance(result, StorageError):
            errors.append(result)
        elif isinstance(result, BaseException):
            raise result
    return errors


def _normalize_optional(raw: str | None) -> str | None:
    if not raw:
        return None
    trimmed = raw.strip()
    return trimmed or None


class SessionStore:
    """Loads, caches, persists and clears the login session."""

    def __init__(
        self,
        token_store: SecureTokenStore,
        kv_store: IKeyValueStore,
        event_bus: SessionEventBus,
        storage_settings: StorageSettings,
        skew_seconds: float = 30.0,
        clock: Clock = utc_now,
    ) -> None:
        self._tokens = token_store
        self._kv = kv_store
        self._bus = event_bus
        self._keys = storage_settings
        self._skew = skew_seconds
        self._clock = clock

        self._cached: Session | None = None
        self._loaded = False
        self._write_lock = asyncio.Lock()

    @property
    def cached_session(self) -> Session | None:
        """The in-memory session without any I/O (None until loaded or when signed out)."""
        return self._cached

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def event_bus(self) -> SessionEventBus:
        return self._bus

    async def load_session(self) -> Session | None:
        """Return the cached session, reading storage only on the first call."""
        if self._loaded:
            return self._cached

        session, has_leftovers = await self._read_from_storage()

        # A persist or clear completed while we were suspended on I/O - it is newer
        # than what we just read, so keep it.
        if self._loaded:
            return self._cached

        if session is None:
            if has_leftovers:
                logger.info("Discarding incomplete stored session")
                await self.clear_session()
                return None
            self._loaded = True
            return None

        if is_refresh_token_expired(session, self._skew, self._clock):
            logger.info(
                "Stored refresh token expired, discarding session user_id=%s",
                session.user_id,
            )
            await self.clear_session(emit_unauthorized=True)
            return None

        self._cached = session
        self._loaded = True
        logger.debug("Session restored from storage: %r", session)
        return session

    async def persist_session(self, session: Session) -> Session | None:
        """Write *session*, make it the cached session and broadcast it.

        Returns:
            The persisted (role-sanitized) session, or None if storage failed - in
            which case the store is reset to "no session".
        """
        async with self._write_lock:
            return await self._persist_locked(session)

    async def update_session(self, **changes: Any) -> Session | None:
        """Shallow-merge *changes* onto the current session and persist the result.

        A None value means "keep the current value" for that field.

        Returns:
            The merged session, or None if there was no session to update.

        Raises:
            StorageError: The merged session could not be written. The cache still
                holds the old session; the caller decides how to sign the user out.
        """
        await self.load_session()

        async with self._write_lock:
            current = self._cached
            if current is None:
                return None
            patch = {name: value for name, value in changes.items() if value is not None}
            return await self._persist_locked(
                dataclasses.replace(current, **patch), raise_on_failure=True
            )

    async def clear_session(self, emit_unauthorized: bool = False) -> None:
        """Erase the session everywhere and notify listeners.

        Args:
            emit_unauthorized: Also fire the unauthorized event (involuntary sign-out)
        """
        async with self._write_lock:
            await self._reset_locked(emit_unauthorized)

    # -- private helpers -----------------------------------------------------

    async def _read_from_storage(self) -> tuple[Session | None, bool]:
        """Rebuild the session from storage.

        Returns:
            (session, has_leftovers) - has_leftovers is True when some but not all
            parts of a session were found.
        """
        try:
            entries, tokens = await asyncio.gather(
                self._kv.get_many(self._keys.identity_keys),
                self._tokens.read(),
            )
        except StorageError as e:
            logger.warning("Failed to rebuild session from storage: %s", e)
            return None, False

        user_id = _to_int(entries.get(self._keys.user_id_key))
        if tokens is None or user_id is None:
            return None, tokens is not None or any(entries.values())

        session = Session.from_tokens(
            tokens,
            user_id=user_id,
            roles=_parse_roles(entries.get(self._keys.roles_key)),
            seller_id=_to_int(entries.get(self._keys.seller_id_key)),
            fingerprint=_normalize_optional(entries.get(self._keys.fingerprint_key)),
        )
        return session, False

    async def _persist_locked(
        self, session: Session, raise_on_failure: bool = False
    ) -> Session | None:
        session = dataclasses.replace(session, roles=sanitize_roles(session.roles))
        identity = {
            self._keys.user_id_key: str(session.user_id),
            self._keys.roles_key: json.dumps(list(session.roles)),
            self._keys.seller_id_key: (
                str(session.seller_id) if session.seller_id is not None else ""
            ),
            self._keys.fingerprint_key: session.fingerprint or "",
        }

        results = await asyncio.gather(
            self._tokens.write(session.tokens),
            self._kv.set_many(identity),
            return_exceptions=True,
        )
        errors = _storage_errors(results)
        if errors:
            logger.error(
                "Failed to persist session for user_id=%s: %s", session.user_id, errors[0]
            )
            if raise_on_failure:
                raise errors[0]
            await self._reset_locked(emit_unauthorized=False)
            return None

        self._cached = session
        self._loaded = True
        self._bus.publish_session_changed(session)
        return session

    async def _reset_locked(self, emit_unauthorized: bool) -> None:
        self._cached = None
        self._loaded = True

        results = await asyncio.gather(
            self._tokens.clear(),
            self._kv.delete_many(self._keys.identity_keys),
            return_exceptions=True,
        )
        for error in _storage_errors(results):
            logger.error("Failed to erase stored session data: %s", error)

        self._bus.publish_session_changed(None)
        if emit_unauthorized:
            self._bus.publish_unauthorized()
