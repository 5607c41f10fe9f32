"""Session lifecycle: storage, notifications and single-flight refresh."""

from kbclient.application.services.sessions.event_bus import SessionEventBus
from kbclient.application.services.sessions.refresh_coordinator import RefreshCoordinator
from kbclient.application.services.sessions.session_manager import SessionManager
from kbclient.application.services.sessions.session_store import SessionStore

__all__ = [
    "RefreshCoordinator",
    "SessionEventBus",
    "SessionManager",
    "SessionStore",
]
