"""Tests for the session record store."""

import json

import pytest

from kbclient.application.services.sessions.session_store import (
    SessionStore,
    sanitize_roles,
)
from kbclient.domain.exceptions import StorageError
from kbclient.infrastructure.security.token_store import SecureTokenStore


@pytest.fixture
def events(session_store: SessionStore):
    recorded: dict[str, list] = {"session": [], "unauthorized": []}
    session_store.event_bus.on_session_change(recorded["session"].append)
    session_store.event_bus.on_unauthorized(lambda: recorded["unauthorized"].append(None))
    return recorded


def _fresh_store(session_store: SessionStore, token_store, kv_store, storage_settings, clock):
    """A second store over the same storage, i.e. the app after a restart."""
    return SessionStore(
        token_store,
        kv_store,
        session_store.event_bus,
        storage_settings,
        skew_seconds=30,
        clock=clock,
    )


class TestSanitizeRoles:
    """Test role cleanup."""

    def test_drops_empty_and_non_strings_and_duplicates(self):
        assert sanitize_roles(["SELLER", "", None, 3, "BUYER", "SELLER"]) == ("SELLER", "BUYER")

    def test_non_list(self):
        assert sanitize_roles("SELLER") == ()
        assert sanitize_roles(None) == ()


class TestPersistAndLoad:
    """Test persist_session / load_session."""

    async def test_persist_then_load_returns_equal_session(
        self, session_store: SessionStore, make_session
    ):
        session = make_session()
        persisted = await session_store.persist_session(session)

        assert persisted == session
        assert await session_store.load_session() == session

    async def test_persisted_session_survives_restart(
        self, session_store, token_store, kv_store, storage_settings, clock, make_session
    ):
        session = make_session()
        await session_store.persist_session(session)

        restarted = _fresh_store(session_store, token_store, kv_store, storage_settings, clock)

        assert await restarted.load_session() == session

    async def test_identity_entries_layout(self, session_store, kv_store, make_session):
        await session_store.persist_session(make_session(seller_id=None, fingerprint=None))

        assert kv_store.data["kb_user_id"] == "7"
        assert json.loads(kv_store.data["kb_roles"]) == ["SELLER"]
        assert kv_store.data["kb_seller_id"] == ""
        assert kv_store.data["kb_device_fingerprint"] == ""

    async def test_cache_updated_before_broadcast(
        self, session_store: SessionStore, make_session
    ):
        seen_in_listener = []
        session_store.event_bus.on_session_change(
            lambda _s: seen_in_listener.append(session_store.cached_session)
        )
        session = make_session()

        await session_store.persist_session(session)

        assert seen_in_listener == [session]

    async def test_load_is_cached_after_first_call(
        self, session_store: SessionStore, kv_store, make_session
    ):
        await session_store.persist_session(make_session())
        kv_store.fail_reads = True

        assert (await session_store.load_session()).user_id == 7

    async def test_roles_sanitized_on_persist(self, session_store, make_session):
        persisted = await session_store.persist_session(
            make_session(roles=("SELLER", "", "SELLER", "BUYER"))
        )
        assert persisted.roles == ("SELLER", "BUYER")

    async def test_persist_storage_failure_resets_to_signed_out(
        self, session_store: SessionStore, kv_store, make_session, events
    ):
        kv_store.fail_writes = True

        assert await session_store.persist_session(make_session()) is None
        assert session_store.cached_session is None
        assert events["session"] == [None]
        assert events["unauthorized"] == []


class TestLoadFromStorage:
    """Test reconstruction edge cases."""

    async def test_nothing_stored(self, session_store: SessionStore, events):
        assert await session_store.load_session() is None
        assert session_store.is_loaded
        assert events["session"] == []

    async def test_identity_without_tokens_is_discarded(
        self, session_store: SessionStore, kv_store
    ):
        kv_store.data["kb_user_id"] = "7"

        assert await session_store.load_session() is None
        assert "kb_user_id" not in kv_store.data

    async def test_tokens_without_user_id_are_discarded(
        self, session_store, token_store: SecureTokenStore, secret_backend, make_session
    ):
        await token_store.write(make_session().tokens)

        assert await session_store.load_session() is None
        assert secret_backend.secret is None

    async def test_expired_refresh_token_is_cleared_as_unauthorized(
        self, session_store, token_store, kv_store, storage_settings, clock, make_session
    ):
        await session_store.persist_session(make_session(refresh_in=100))
        clock.advance(80)  # 20s left, inside the 30s skew

        restarted = _fresh_store(session_store, token_store, kv_store, storage_settings, clock)
        unauthorized = []
        restarted.event_bus.on_unauthorized(lambda: unauthorized.append(1))

        assert await restarted.load_session() is None
        assert unauthorized == [1]
        assert kv_store.data.get("kb_user_id") is None

    async def test_identity_values_are_normalized(
        self, session_store, token_store, kv_store, make_session
    ):
        await token_store.write(make_session().tokens)
        kv_store.data.update(
            {
                "kb_user_id": " 7 ",
                "kb_roles": "not json",
                "kb_seller_id": "abc",
                "kb_device_fingerprint": "   ",
            }
        )

        session = await session_store.load_session()

        assert session.user_id == 7
        assert session.roles == ()
        assert session.seller_id is None
        assert session.fingerprint is None

    async def test_storage_read_failure_means_no_session(
        self, session_store: SessionStore, kv_store
    ):
        kv_store.fail_reads = True
        assert await session_store.load_session() is None


class TestUpdateSession:
    """Test update_session merging."""

    async def test_no_session_returns_none(self, session_store: SessionStore):
        assert await session_store.update_session(access_token="x") is None

    async def test_merges_changes_and_keeps_the_rest(
        self, session_store: SessionStore, make_session, events
    ):
        await session_store.persist_session(make_session())

        updated = await session_store.update_session(access_token="access-2", fingerprint=None)

        assert updated.access_token == "access-2"
        assert updated.fingerprint == "fp-1"
        assert updated.refresh_token == "refresh-1"
        assert events["session"][-1] == updated
        assert await session_store.load_session() == updated

    async def test_write_failure_raises_and_leaves_signing_out_to_the_caller(
        self, session_store: SessionStore, kv_store, make_session, events
    ):
        original = await session_store.persist_session(make_session())
        kv_store.fail_writes = True

        with pytest.raises(StorageError):
            await session_store.update_session(access_token="access-2")

        assert session_store.cached_session == original
        assert events["session"] == [original]
        assert events["unauthorized"] == []


class TestClearSession:
    """Test clear_session."""

    async def test_clear_then_load_is_empty(
        self, session_store, token_store, kv_store, storage_settings, clock, make_session
    ):
        await session_store.persist_session(make_session())

        await session_store.clear_session()

        assert await session_store.load_session() is None
        restarted = _fresh_store(session_store, token_store, kv_store, storage_settings, clock)
        assert await restarted.load_session() is None

    async def test_clear_on_never_initialized_store_does_not_raise(
        self, session_store: SessionStore
    ):
        await session_store.clear_session()
        assert await session_store.load_session() is None

    async def test_clear_without_secure_backend(self, kv_store, event_bus, storage_settings):
        store = SessionStore(
            SecureTokenStore(None, kv_store), kv_store, event_bus, storage_settings
        )
        await store.clear_session()
        assert await store.load_session() is None

    async def test_deliberate_clear_does_not_emit_unauthorized(
        self, session_store: SessionStore, make_session, events
    ):
        await session_store.persist_session(make_session())
        await session_store.clear_session()

        assert events["session"][-1] is None
        assert events["unauthorized"] == []

    async def test_forced_clear_emits_unauthorized_after_session_change(
        self, session_store: SessionStore, make_session
    ):
        order = []
        session_store.event_bus.on_session_change(lambda s: order.append(("session", s)))
        session_store.event_bus.on_unauthorized(lambda: order.append(("unauthorized", None)))
        await session_store.persist_session(make_session())
        order.clear()

        await session_store.clear_session(emit_unauthorized=True)

        assert order == [("session", None), ("unauthorized", None)]

    async def test_clear_survives_storage_failure(
        self, session_store: SessionStore, kv_store, make_session
    ):
        await session_store.persist_session(make_session())
        kv_store.fail_writes = True

        await session_store.clear_session()

        assert session_store.cached_session is None
