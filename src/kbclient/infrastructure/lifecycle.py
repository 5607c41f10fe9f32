"""Process wiring for startup and shutdown.

Hey future me - this is the ONLY place that knows how the pieces fit together. Everything
is built once per process (KbRuntime.create) and handed around by reference; there are no
module-level singletons. The host app typically does:

    async with kb_lifespan() as runtime:
        runtime.session_manager.on_unauthorized(show_session_expired_banner)
        await runtime.session_manager.load_session()
        ...
        await runtime.api.get("/api/v1/cars")

Shutdown order matters: ApiClient first (it waits for background refreshes, which still
need the auth client and the database), then the auth client, then the database.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx

from kbclient.application.services.auth_service import AuthService
from kbclient.application.services.sessions.event_bus import SessionEventBus
from kbclient.application.services.sessions.session_manager import SessionManager
from kbclient.application.services.sessions.session_store import SessionStore
from kbclient.config import Settings, get_settings
from kbclient.domain.entities.session import utc_now
from kbclient.domain.ports import ISecretBackend
from kbclient.domain.value_objects.token_expiry import Clock
from kbclient.infrastructure.http.api_client import ApiClient
from kbclient.infrastructure.integrations.auth_api_client import AuthApiClient
from kbclient.infrastructure.observability.logging import configure_logging
from kbclient.infrastructure.persistence import Database, SqlKeyValueStore
from kbclient.infrastructure.security import KeyringSecretBackend, SecureTokenStore

logger = logging.getLogger(__name__)

# Sentinel: "build the keyring backend from settings" (None means "no secure backend").
_FROM_SETTINGS = object()


@dataclass
class KbRuntime:
    """Everything the host app needs, built once."""

    settings: Settings
    database: Database
    session_manager: SessionManager
    auth_api: AuthApiClient
    api: ApiClient
    auth: AuthService

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        secret_backend: ISecretBackend | None | object = _FROM_SETTINGS,
        clock: Clock = utc_now,
    ) -> "KbRuntime":
        """Build the object graph. Performs no I/O.

        Args:
            settings: Settings to use (default: get_settings())
            transport: httpx transport shared by both HTTP clients (tests)
            secret_backend: Protected token backend; default builds the OS keyring
                backend when settings.storage.use_keyring is set. Pass None to force
                the plain fallback store.
            clock: Time source
        """
        settings = settings or get_settings()
        storage = settings.storage

        database = Database(storage)
        kv_store = SqlKeyValueStore(database)

        if secret_backend is _FROM_SETTINGS:
            secret_backend = (
                KeyringSecretBackend(storage.keyring_service, storage.keyring_account)
                if storage.use_keyring
                else None
            )

        token_store = SecureTokenStore(
            secret_backend,  # type: ignore[arg-type]
            kv_store,
            fallback_key=storage.fallback_tokens_key,
        )
        store = SessionStore(
            token_store,
            kv_store,
            SessionEventBus(),
            storage,
            skew_seconds=settings.session.expiry_skew_seconds,
            clock=clock,
        )

        auth_api = AuthApiClient(settings.api, transport=transport)
        manager = SessionManager(store, auth_api, settings.session, clock=clock)
        api = ApiClient(settings.api, manager, transport=transport)

        return cls(
            settings=settings,
            database=database,
            session_manager=manager,
            auth_api=auth_api,
            api=api,
            auth=AuthService(auth_api, manager),
        )

    async def start(self) -> None:
        """Create the storage tables. Safe to call on every start."""
        await self.database.create_tables()

    async def close(self) -> None:
        """Release HTTP connections and the database engine."""
        try:
            await self.api.close()
            await self.auth_api.close()
        finally:
            await self.database.close()


# Listen future me, everything before `yield` is STARTUP, everything after is SHUTDOWN.
# The try/finally makes sure connections are released even if the host app crashes.
@asynccontextmanager
async def kb_lifespan(
    settings: Settings | None = None,
    *,
    configure_logs: bool = True,
    **overrides: object,
) -> AsyncGenerator[KbRuntime, None]:
    """Build, start and (on exit) close a KbRuntime.

    Args:
        settings: Settings to use (default: get_settings())
        configure_logs: Install the kbclient logging setup on the root logger
        **overrides: Passed to KbRuntime.create (transport, secret_backend, clock)
    """
    settings = settings or get_settings()

    if configure_logs:
        configure_logging(
            log_level=settings.logging.level,
            json_format=settings.logging.json_format,
            app_name=settings.app_name,
        )
    logger.info("Starting %s against %s", settings.app_name, settings.api.base_url)

    runtime = KbRuntime.create(settings, **overrides)  # type: ignore[arg-type]
    try:
        await runtime.start()
        yield runtime
    finally:
        logger.info("Shutting down %s", settings.app_name)
        await runtime.close()
