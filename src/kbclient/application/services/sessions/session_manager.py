"""Session manager - the object the rest of the app holds on to.

Hey future me - the cached session and the in-flight refresh slot used to be module
globals in the mobile client. Here they are instance state: ONE SessionManager is built at
startup (see infrastructure/lifecycle.py) and passed to the ApiClient and the AuthService.
Tests build a fresh one per test, so no state leaks between them.
"""

import logging

from kbclient.application.services.sessions.event_bus import (
    SessionEventBus,
    SessionListener,
    UnauthorizedListener,
    Unsubscribe,
)
from kbclient.application.services.sessions.refresh_coordinator import RefreshCoordinator
from kbclient.application.services.sessions.session_store import SessionStore
from kbclient.config import SessionSettings
from kbclient.domain.entities.session import AuthState, Session, utc_now
from kbclient.domain.exceptions import RefreshFailedError
from kbclient.domain.value_objects.token_expiry import (
    Clock,
    is_access_token_expired,
    is_refresh_token_expired,
    should_proactively_refresh,
)
from kbclient.infrastructure.integrations.auth_api_client import AuthApiClient

logger = logging.getLogger(__name__)


class SessionManager:
    """Owns the session store, the event bus and the refresh coordinator."""

    def __init__(
        self,
        store: SessionStore,
        auth_api: AuthApiClient,
        settings: SessionSettings,
        clock: Clock = utc_now,
    ) -> None:
        """
        Initialize the session manager.

        Args:
            store: Session record store (carries the event bus)
            auth_api: Client for the refresh endpoint
            settings: Skew margin and proactive refresh window
            clock: Time source, injectable for tests
        """
        self.store = store
        self.settings = settings
        self.clock = clock
        self.coordinator = RefreshCoordinator(
            store,
            auth_api,
            skew_seconds=settings.expiry_skew_seconds,
            clock=clock,
        )

    @property
    def event_bus(self) -> SessionEventBus:
        return self.store.event_bus

    @property
    def cached_session(self) -> Session | None:
        return self.store.cached_session

    @property
    def auth_state(self) -> AuthState:
        """Snapshot for the UI. is_loading stays True until the first load finished."""
        if not self.store.is_loaded:
            return AuthState()
        return AuthState.from_session(self.store.cached_session)

    async def load_session(self) -> Session | None:
        return await self.store.load_session()

    async def persist_session(self, session: Session) -> Session | None:
        return await self.store.persist_session(session)

    async def clear_session(self, emit_unauthorized: bool = False) -> None:
        await self.store.clear_session(emit_unauthorized=emit_unauthorized)

    async def refresh(self, session: Session | None = None) -> Session | None:
        """Refresh *session* (default: the current one) through the single-flight slot.

        Returns:
            The refreshed session, or None when there is no session to refresh

        Raises:
            RefreshFailedError: The refresh call failed (session already cleared)
        """
        if session is None:
            session = await self.store.load_session()
            if session is None:
                return None
        return await self.coordinator.refresh(session)

    # -- expiry shortcuts bound to this manager's settings and clock ----------

    def is_access_token_expired(self, session: Session) -> bool:
        return is_access_token_expired(session, self.settings.expiry_skew_seconds, self.clock)

    def is_refresh_token_expired(self, session: Session) -> bool:
        return is_refresh_token_expired(session, self.settings.expiry_skew_seconds, self.clock)

    def should_proactively_refresh(self, session: Session) -> bool:
        return should_proactively_refresh(
            session, self.settings.refresh_window_seconds, self.clock
        )

    async def get_access_token(self) -> str | None:
        """Return an access token that is safe to use right now, or None.

        Refreshes first (blocking) when the access token is expired. A failed refresh
        means signed out, so it returns None instead of raising.
        """
        session = await self.store.load_session()
        if session is None:
            return None
        if self.is_refresh_token_expired(session):
            await self.store.clear_session(emit_unauthorized=True)
            return None
        if not self.is_access_token_expired(session):
            return session.access_token

        try:
            refreshed = await self.coordinator.refresh(session)
        except RefreshFailedError as e:
            logger.info("No access token available, refresh failed: %s", e.message)
            return None
        return refreshed.access_token if refreshed else None

    def on_session_change(self, listener: SessionListener) -> Unsubscribe:
        return self.event_bus.on_session_change(listener)

    def on_unauthorized(self, listener: UnauthorizedListener) -> Unsubscribe:
        return self.event_bus.on_unauthorized(listener)
