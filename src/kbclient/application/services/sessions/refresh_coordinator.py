"""Single-flight session refresh.

Hey future me - this is the one place where a refresh network call happens, and there is
at most ONE in flight at any time. Ten requests finding an expired token at once all get
the same asyncio.Task and await it; only the first one actually calls /jwt/refresh.

Why it matters: the backend rotates refresh tokens. Two parallel refreshes with the same
refresh token race server-side, the loser's token gets revoked, and the user is logged out
for no reason.

The "check slot, create slot" step below has NO await between the check and the
assignment, so on the single-threaded event loop nothing can interleave there. Don't add
an await in between (not even a log call that awaits) or the guarantee is gone.
"""

import asyncio
import logging

from kbclient.application.services.sessions.session_store import SessionStore
from kbclient.domain.entities.session import Session, utc_now
from kbclient.domain.exceptions import RefreshFailedError, StorageError
from kbclient.domain.value_objects.token_expiry import (
    Clock,
    expires_at_from_lifetime,
    is_refresh_token_expired,
)
from kbclient.infrastructure.integrations.auth_api_client import AuthApiClient
from kbclient.infrastructure.observability.logger_template import log_operation

logger = logging.getLogger(__name__)


class RefreshCoordinator:
    """Collapses concurrent refresh requests into one network round-trip."""

    def __init__(
        self,
        store: SessionStore,
        auth_api: AuthApiClient,
        skew_seconds: float = 30.0,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._auth_api = auth_api
        self._skew = skew_seconds
        self._clock = clock
        self._in_flight: asyncio.Task[Session] | None = None

    @property
    def in_flight(self) -> bool:
        """True while a refresh call is outstanding."""
        return self._in_flight is not None

    async def refresh(self, session: Session) -> Session | None:
        """Get a freshly refreshed session.

        Args:
            session: The session the caller believes needs refreshing

        Returns:
            The refreshed session, or None if the refresh token was already past its
            lifetime (the session has then been cleared as unauthorized)

        Raises:
            RefreshFailedError: The refresh call failed. The session has been cleared
                and the unauthorized event has fired before this reaches the caller.
        """
        if is_refresh_token_expired(session, self._skew, self._clock):
            logger.info(
                "Refresh token expired locally, signing out user_id=%s", session.user_id
            )
            await self._store.clear_session(emit_unauthorized=True)
            return None

        task = self._in_flight
        current = self._store.cached_session
        stale = current is not None and current.refresh_token != session.refresh_token
        if task is None and stale:
            # Someone else refreshed since the caller read *session*; its refresh token
            # has been rotated and must not be sent again.
            logger.debug("Session already refreshed, skipping refresh call")
            return current
        if task is None:
            task = asyncio.create_task(self._run(session), name="kb-session-refresh")
            self._in_flight = task
            task.add_done_callback(self._release)
        else:
            logger.debug("Joining in-flight session refresh")

        # shield(): one caller being cancelled (screen closed) must not cancel the refresh
        # every other caller is waiting on.
        return await asyncio.shield(task)

    def _release(self, task: asyncio.Task[Session]) -> None:
        # Runs exactly once when the task settles - success, failure or cancellation. Only
        # clear the slot if it still holds THIS task.
        if self._in_flight is task:
            self._in_flight = None
        # Mark the exception retrieved; every waiter already got it via shield().
        if not task.cancelled():
            task.exception()

    async def _run(self, session: Session) -> Session:
        try:
            async with log_operation(logger, "session_refresh", user_id=session.user_id):
                response = await self._auth_api.refresh(
                    session.refresh_token, session.fingerprint
                )
        except RefreshFailedError:
            await self._store.clear_session(emit_unauthorized=True)
            raise
        except Exception as e:
            await self._store.clear_session(emit_unauthorized=True)
            raise RefreshFailedError(f"Session refresh failed: {e}") from e

        # Lifetimes count from NOW, the moment this response is processed.
        try:
            refreshed = await self._store.update_session(
                access_token=response.access_token,
                refresh_token=response.refresh_token,
                access_expires_at=expires_at_from_lifetime(response.expires_in, self._clock),
                refresh_expires_at=expires_at_from_lifetime(
                    response.refresh_expires_in, self._clock
                ),
                fingerprint=response.fingerprint,
            )
        except StorageError as e:
            # The server already rotated the tokens, so the old ones are dead too.
            await self._store.clear_session(emit_unauthorized=True)
            raise RefreshFailedError(
                "Could not save the refreshed session. Please sign in again.",
                error_code="storage_error",
            ) from e
        if refreshed is None:
            # Signed out while the call was in flight. That was deliberate, so stay quiet.
            raise RefreshFailedError(
                "Session ended while refreshing. Please sign in again.",
                error_code="session_gone",
            )
        return refreshed
