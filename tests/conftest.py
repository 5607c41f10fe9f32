"""Shared fixtures and in-memory fakes.

Hey future me - nothing here touches the OS keyring, the network or the disk. The fake
backend below speaks just enough of the marketplace API (login, refresh, logout, seller
lookup, one protected resource) to drive the whole session lifecycle through httpx's
MockTransport.
"""

import asyncio
import json
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import httpx
import pytest

from kbclient.application.services.auth_service import AuthService
from kbclient.application.services.sessions.event_bus import SessionEventBus
from kbclient.application.services.sessions.session_manager import SessionManager
from kbclient.application.services.sessions.session_store import SessionStore
from kbclient.config import ApiSettings, SessionSettings, StorageSettings
from kbclient.domain.entities.session import Session
from kbclient.domain.exceptions import StorageError
from kbclient.domain.ports import IKeyValueStore, ISecretBackend
from kbclient.infrastructure.http.api_client import ApiClient
from kbclient.infrastructure.integrations.auth_api_client import AuthApiClient
from kbclient.infrastructure.security.token_store import SecureTokenStore

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Controllable time source. Call it like utc_now()."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class InMemoryKeyValueStore(IKeyValueStore):
    """Dict-backed plain store. Flip fail_reads/fail_writes to simulate I/O errors."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.fail_reads = False
        self.fail_writes = False

    def _check(self, failing: bool) -> None:
        if failing:
            raise StorageError("simulated storage failure")

    async def get(self, key: str) -> str | None:
        self._check(self.fail_reads)
        return self.data.get(key)

    async def get_many(self, keys: Iterable[str]) -> dict[str, str | None]:
        self._check(self.fail_reads)
        return {key: self.data.get(key) for key in keys}

    async def set(self, key: str, value: str) -> None:
        self._check(self.fail_writes)
        self.data[key] = value

    async def set_many(self, entries: Mapping[str, str]) -> None:
        self._check(self.fail_writes)
        self.data.update(entries)

    async def delete(self, key: str) -> None:
        self._check(self.fail_writes)
        self.data.pop(key, None)

    async def delete_many(self, keys: Iterable[str]) -> None:
        self._check(self.fail_writes)
        for key in keys:
            self.data.pop(key, None)


class InMemorySecretBackend(ISecretBackend):
    """Working protected store."""

    def __init__(self) -> None:
        self.secret: str | None = None
        self.writes = 0

    async def get_secret(self) -> str | None:
        return self.secret

    async def set_secret(self, value: str) -> None:
        self.writes += 1
        self.secret = value

    async def delete_secret(self) -> None:
        self.secret = None


class FailingSecretBackend(ISecretBackend):
    """Protected store that is unavailable (think: no keyring on a headless box)."""

    def __init__(self) -> None:
        self.attempts = 0

    async def get_secret(self) -> str | None:
        self.attempts += 1
        raise RuntimeError("keyring unavailable")

    async def set_secret(self, value: str) -> None:
        self.attempts += 1
        raise RuntimeError("keyring unavailable")

    async def delete_secret(self) -> None:
        self.attempts += 1
        raise RuntimeError("keyring unavailable")


def _json(status: int, body: object) -> httpx.Response:
    return httpx.Response(status, json=body)


class FakeBackend:
    """MockTransport handler emulating the marketplace auth endpoints.

    Tokens are numbered. access-1/refresh-1 count as already issued (make_session uses
    them); login and every successful refresh issue the next number. Old access tokens
    stay valid until they are discarded from valid_tokens, like a real JWT backend.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.refresh_bodies: list[dict] = []
        self.valid_tokens: set[str] = {"access-1"}
        self.issued = 1
        self.refresh_status = 200
        self.refresh_error: dict | None = None
        self.refresh_fingerprint: str | None = None
        self.refresh_expires_in: float | None = 3600
        self.login_status = 200
        self.seller_status = 200
        self.logout_status = 200
        self.resource_status: int | None = None
        self.routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}

    @property
    def refresh_calls(self) -> int:
        return len(self.refresh_bodies)

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def _issue(self) -> tuple[str, str]:
        self.issued += 1
        access = f"access-{self.issued}"
        self.valid_tokens.add(access)
        return access, f"refresh-{self.issued}"

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        # One suspension per request, like real network I/O.
        await asyncio.sleep(0)

        route = self.routes.get((request.method, request.url.path))
        if route is not None:
            return route(request)

        path = request.url.path
        if path == "/jwt/login":
            return self._login()
        if path == "/jwt/refresh":
            return self._refresh(request)
        if path == "/api/v1/auth/logout":
            return _json(self.logout_status, {"code": "OK", "message": "Logged out"})
        if path.startswith("/api/v1/sellers/"):
            if self.seller_status != 200:
                return _json(self.seller_status, {"message": "Seller not found"})
            return _json(200, {"sellerId": 99, "userId": 7})
        return self._protected(request)

    def _login(self) -> httpx.Response:
        if self.login_status != 200:
            return _json(self.login_status, {"message": "Bad credentials"})
        access, refresh = self._issue()
        return _json(
            200,
            {
                "accessToken": access,
                "refreshToken": refresh,
                "tokenType": "Bearer",
                "expiresIn": 3600,
                "refreshExpiresIn": 86400,
                "roles": ["SELLER", "SELLER", "", "BUYER"],
                "userId": 7,
                "fingerprint": "fp-1",
            },
        )

    def _refresh(self, request: httpx.Request) -> httpx.Response:
        self.refresh_bodies.append(json.loads(request.content))
        if self.refresh_status != 200:
            return _json(self.refresh_status, self.refresh_error or {"message": "boom"})
        access, refresh = self._issue()
        body: dict = {
            "accessToken": access,
            "refreshToken": refresh,
            "tokenType": "Bearer",
            "expiresIn": 3600,
            "refreshExpiresIn": self.refresh_expires_in,
        }
        if self.refresh_fingerprint is not None:
            body["fingerprint"] = self.refresh_fingerprint
        return _json(200, body)

    def _protected(self, request: httpx.Request) -> httpx.Response:
        if self.resource_status is not None:
            return _json(self.resource_status, {"message": "Forbidden"})
        auth = request.headers.get("Authorization", "")
        token = auth.removeprefix("Bearer ")
        if token not in self.valid_tokens:
            return _json(401, {"message": "Unauthorized"})
        return _json(200, {"ok": True, "token": token})


@dataclass
class Harness:
    """A fully wired client stack over in-memory storage and the fake backend."""

    backend: FakeBackend
    clock: FakeClock
    kv_store: InMemoryKeyValueStore
    secret_backend: InMemorySecretBackend
    store: SessionStore
    manager: SessionManager
    auth_api: AuthApiClient
    api: ApiClient
    auth: AuthService
    session_events: list[Session | None] = field(default_factory=list)
    unauthorized_events: list[None] = field(default_factory=list)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def kv_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def secret_backend() -> InMemorySecretBackend:
    return InMemorySecretBackend()


@pytest.fixture
def failing_secret_backend() -> FailingSecretBackend:
    return FailingSecretBackend()


@pytest.fixture
def api_settings() -> ApiSettings:
    return ApiSettings(base_url="http://kb.test")


@pytest.fixture
def session_settings() -> SessionSettings:
    return SessionSettings(expiry_skew_seconds=30, refresh_window_seconds=60)


@pytest.fixture
def storage_settings() -> StorageSettings:
    return StorageSettings(database_url="sqlite+aiosqlite:///:memory:")


@pytest.fixture
def event_bus() -> SessionEventBus:
    return SessionEventBus()


@pytest.fixture
def token_store(
    secret_backend: InMemorySecretBackend, kv_store: InMemoryKeyValueStore
) -> SecureTokenStore:
    return SecureTokenStore(secret_backend, kv_store)


@pytest.fixture
def session_store(
    token_store: SecureTokenStore,
    kv_store: InMemoryKeyValueStore,
    event_bus: SessionEventBus,
    storage_settings: StorageSettings,
    clock: FakeClock,
) -> SessionStore:
    return SessionStore(
        token_store, kv_store, event_bus, storage_settings, skew_seconds=30, clock=clock
    )


@pytest.fixture
def make_session(clock: FakeClock) -> Callable[..., Session]:
    """Build a session whose expiries are relative to the fake clock."""

    def _make(
        access_in: float | None = 3600,
        refresh_in: float | None = 86400,
        **overrides: object,
    ) -> Session:
        values: dict = {
            "user_id": 7,
            "access_token": "access-1",
            "refresh_token": "refresh-1",
            "access_expires_at": clock() + timedelta(seconds=access_in)
            if access_in is not None
            else None,
            "refresh_expires_at": clock() + timedelta(seconds=refresh_in)
            if refresh_in is not None
            else None,
            "roles": ("SELLER",),
            "seller_id": 99,
            "fingerprint": "fp-1",
        }
        values.update(overrides)
        return Session(**values)

    return _make


@pytest.fixture
async def harness(
    clock: FakeClock,
    kv_store: InMemoryKeyValueStore,
    secret_backend: InMemorySecretBackend,
    token_store: SecureTokenStore,
    event_bus: SessionEventBus,
    storage_settings: StorageSettings,
    api_settings: ApiSettings,
    session_settings: SessionSettings,
):
    backend = FakeBackend()
    transport = httpx.MockTransport(backend)
    store = SessionStore(
        token_store, kv_store, event_bus, storage_settings, skew_seconds=30, clock=clock
    )
    auth_api = AuthApiClient(api_settings, transport=transport)
    manager = SessionManager(store, auth_api, session_settings, clock=clock)
    api = ApiClient(api_settings, manager, transport=transport)

    h = Harness(
        backend=backend,
        clock=clock,
        kv_store=kv_store,
        secret_backend=secret_backend,
        store=store,
        manager=manager,
        auth_api=auth_api,
        api=api,
        auth=AuthService(auth_api, manager),
    )
    manager.on_session_change(h.session_events.append)
    manager.on_unauthorized(lambda: h.unauthorized_events.append(None))

    yield h

    await api.close()
    await auth_api.close()
