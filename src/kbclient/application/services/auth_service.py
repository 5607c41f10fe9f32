"""Sign-in / sign-out façade.

Hey future me - screens call THIS, never AuthApiClient directly. sign_in builds the whole
session (tokens, absolute expiries, identity, seller id) and hands it to the session
store; sign_out always succeeds locally even if the server is unreachable.

Flow:
1. sign_in(username, password) -> POST /jwt/login
2. expiries computed right away (lifetimes count from the login response)
3. best-effort GET /api/v1/sellers/{userId} - a non-seller just gets seller_id=None
4. persist -> "session changed" -> UI flips to signed in
"""

import logging
from typing import Any

from kbclient.application.services.sessions.session_manager import SessionManager
from kbclient.domain.entities.session import Session
from kbclient.domain.exceptions import ApiError, StorageError
from kbclient.domain.value_objects.token_expiry import expires_at_from_lifetime
from kbclient.infrastructure.integrations.auth_api_client import (
    AuthApiClient,
    RegisterRequest,
)
from kbclient.infrastructure.observability.logger_template import log_operation

logger = logging.getLogger(__name__)


class AuthService:
    """Builds sessions from credentials and tears them down."""

    def __init__(self, auth_api: AuthApiClient, manager: SessionManager) -> None:
        """Initialize auth service.

        Args:
            auth_api: Client for the auth endpoints
            manager: The process-wide session manager
        """
        self._auth_api = auth_api
        self._manager = manager

    async def sign_in(self, username: str, password: str) -> Session:
        """Exchange credentials for a session and persist it.

        Returns:
            The persisted session

        Raises:
            AuthenticationError: Credentials rejected
            ApiError: Login endpoint unreachable or failing
            StorageError: The session could not be stored
        """
        async with log_operation(logger, "sign_in"):
            data = await self._auth_api.login(username, password)
            clock = self._manager.clock
            access_expires_at = expires_at_from_lifetime(data.expires_in, clock)
            refresh_expires_at = expires_at_from_lifetime(data.refresh_expires_in, clock)

            seller_id = await self._resolve_seller_id(data.user_id, data.access_token)

            session = await self._manager.persist_session(
                Session(
                    user_id=data.user_id,
                    access_token=data.access_token,
                    refresh_token=data.refresh_token,
                    access_expires_at=access_expires_at,
                    refresh_expires_at=refresh_expires_at,
                    roles=tuple(data.roles),
                    seller_id=seller_id,
                    fingerprint=data.fingerprint,
                )
            )
            if session is None:
                raise StorageError("Signed in, but the session could not be saved on this device")

        logger.info("Signed in user_id=%s roles=%s", session.user_id, list(session.roles))
        return session

    async def sign_out(self) -> None:
        """Invalidate the session server-side (best effort) and clear it locally.

        Never raises for server failures, and never fires the unauthorized event -
        this is a deliberate sign-out. Anything else still propagates, but only after
        the local session is gone.
        """
        session = self._manager.cached_session
        try:
            await self._auth_api.logout(
                access_token=session.access_token if session else None,
                fingerprint=session.fingerprint if session else None,
            )
        except ApiError as e:
            # Hey future me - logout MUST succeed locally. The server-side session just
            # expires on its own if this call never lands.
            logger.warning("Server-side logout failed, clearing local session anyway: %s", e)
        finally:
            await self._manager.clear_session()
            logger.info("Signed out")

    async def register(self, request: RegisterRequest) -> dict[str, Any]:
        """Create an account. The caller signs in separately afterwards.

        Raises:
            ApiError: Registration rejected or backend unreachable
        """
        async with log_operation(logger, "register", role=request.role):
            return await self._auth_api.register(request)

    async def _resolve_seller_id(self, user_id: int, access_token: str) -> int | None:
        try:
            return await self._auth_api.get_seller_id(user_id, access_token)
        except ApiError as e:
            logger.info("No seller profile resolved for user_id=%s: %s", user_id, e.message)
            return None
