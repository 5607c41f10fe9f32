"""Tests for the token expiry predicates."""

from datetime import timedelta

from kbclient.domain.value_objects.token_expiry import (
    expires_at_from_lifetime,
    is_access_token_expired,
    is_refresh_token_expired,
    should_proactively_refresh,
)


class TestAccessTokenExpiry:
    """Test is_access_token_expired."""

    def test_valid_token_outside_skew(self, make_session, clock):
        session = make_session(access_in=120)
        assert is_access_token_expired(session, 30, clock) is False

    def test_token_inside_skew_counts_as_expired(self, make_session, clock):
        """now + skew >= expiry means expired, even though the token still works."""
        session = make_session(access_in=20)
        assert is_access_token_expired(session, 30, clock) is True

    def test_exact_boundary_is_expired(self, make_session, clock):
        session = make_session(access_in=30)
        assert is_access_token_expired(session, 30, clock) is True

    def test_none_expiry_never_expires(self, make_session, clock):
        session = make_session(access_in=None)
        clock.advance(10**9)
        assert is_access_token_expired(session, 30, clock) is False

    def test_negative_skew_is_treated_as_zero(self, make_session, clock):
        session = make_session(access_in=10)
        assert is_access_token_expired(session, -100, clock) is False
        clock.advance(10)
        assert is_access_token_expired(session, -100, clock) is True


class TestRefreshTokenExpiry:
    """Test is_refresh_token_expired."""

    def test_past_expiry(self, make_session, clock):
        session = make_session(refresh_in=60)
        clock.advance(61)
        assert is_refresh_token_expired(session, 0, clock) is True

    def test_within_skew(self, make_session, clock):
        session = make_session(refresh_in=60)
        assert is_refresh_token_expired(session, 60, clock) is True
        assert is_refresh_token_expired(session, 59, clock) is False

    def test_none_expiry(self, make_session, clock):
        session = make_session(refresh_in=None)
        assert is_refresh_token_expired(session, 30, clock) is False


class TestProactiveRefresh:
    """Test should_proactively_refresh."""

    def test_inside_window_but_not_expired(self, make_session, clock):
        session = make_session(access_in=50)
        assert should_proactively_refresh(session, 60, clock) is True
        assert is_access_token_expired(session, 30, clock) is False

    def test_outside_window(self, make_session, clock):
        session = make_session(access_in=61)
        assert should_proactively_refresh(session, 60, clock) is False

    def test_none_expiry_never_refreshes(self, make_session, clock):
        session = make_session(access_in=None)
        assert should_proactively_refresh(session, 60, clock) is False


class TestExpiresAtFromLifetime:
    """Test conversion of relative lifetimes to absolute timestamps."""

    def test_lifetime_is_added_to_now(self, clock):
        assert expires_at_from_lifetime(3600, clock) == clock() + timedelta(seconds=3600)

    def test_none_lifetime(self, clock):
        assert expires_at_from_lifetime(None, clock) is None

    def test_uses_time_of_the_call(self, clock):
        start = clock()
        clock.advance(5)
        assert expires_at_from_lifetime(10, clock) == start + timedelta(seconds=15)
