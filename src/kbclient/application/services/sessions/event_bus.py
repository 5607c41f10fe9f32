"""Session event bus.

Two channels, on purpose:
- session changed: fires on EVERY transition (login, refresh, logout) with the new
  session or None.
- unauthorized: fires only on INVOLUNTARY sign-outs (dead refresh token, repeated
  401/403). UI layers use it to show "your session expired" instead of silently
  dropping to the login screen. A deliberate sign_out() never fires it.

Listeners are plain synchronous callables. They run inline, in subscription order,
after the session store has updated its cache - so a listener that reads
SessionStore.cached_session sees the new state. A listener that raises is logged
and skipped; it cannot break the publisher or the other listeners.
"""

import logging
from collections.abc import Callable

from kbclient.domain.entities.session import Session

logger = logging.getLogger(__name__)

SessionListener = Callable[[Session | None], None]
UnauthorizedListener = Callable[[], None]
Unsubscribe = Callable[[], None]


class SessionEventBus:
    """In-process pub/sub for session notifications."""

    def __init__(self) -> None:
        self._session_listeners: list[SessionListener] = []
        self._unauthorized_listeners: list[UnauthorizedListener] = []

    def on_session_change(self, listener: SessionListener) -> Unsubscribe:
        """Subscribe to session changes. Returns a callable that unsubscribes."""
        self._session_listeners.append(listener)
        return lambda: self._remove(self._session_listeners, listener)

    def on_unauthorized(self, listener: UnauthorizedListener) -> Unsubscribe:
        """Subscribe to involuntary sign-outs. Returns a callable that unsubscribes."""
        self._unauthorized_listeners.append(listener)
        return lambda: self._remove(self._unauthorized_listeners, listener)

    def publish_session_changed(self, session: Session | None) -> None:
        # Iterate over a copy - a listener may unsubscribe itself while being notified.
        for listener in list(self._session_listeners):
            try:
                listener(session)
            except Exception:
                logger.exception("Session listener %r failed", listener)

    def publish_unauthorized(self) -> None:
        logger.info(
            "Session ended involuntarily, notifying %d listener(s)",
            len(self._unauthorized_listeners),
        )
        for listener in list(self._unauthorized_listeners):
            try:
                listener()
            except Exception:
                logger.exception("Unauthorized listener %r failed", listener)

    @staticmethod
    def _remove(listeners: list, listener: Callable) -> None:
        if listener in listeners:
            listeners.remove(listener)
