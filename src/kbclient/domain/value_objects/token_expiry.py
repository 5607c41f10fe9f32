"""Token expiry policy.

Three predicates share one idea: a token counts as expired a little BEFORE its real
expiry. The skew margin absorbs clock drift and request latency; the (larger) refresh
window lets us renew an access token in the background while it still works, so
ordinary requests never go out with a token the server is about to reject.

A None expiry is the escape hatch for backends that send no lifetime metadata -
the token is treated as never expiring, not as an error.
"""

from collections.abc import Callable
from datetime import datetime, timedelta

from kbclient.domain.entities.session import Session, utc_now

Clock = Callable[[], datetime]


def _expired(expires_at: datetime | None, margin_seconds: float, clock: Clock) -> bool:
    if expires_at is None:
        return False
    return clock() + timedelta(seconds=max(margin_seconds, 0)) >= expires_at


def is_access_token_expired(
    session: Session, skew_seconds: float = 0, clock: Clock = utc_now
) -> bool:
    """True iff the access expiry is set and now + skew >= expiry."""
    return _expired(session.access_expires_at, skew_seconds, clock)


def is_refresh_token_expired(
    session: Session, skew_seconds: float = 0, clock: Clock = utc_now
) -> bool:
    """True iff the refresh expiry is set and now + skew >= expiry."""
    return _expired(session.refresh_expires_at, skew_seconds, clock)


def should_proactively_refresh(
    session: Session, window_seconds: float, clock: Clock = utc_now
) -> bool:
    """True iff the access token expires within *window_seconds* from now."""
    return _expired(session.access_expires_at, window_seconds, clock)


def expires_at_from_lifetime(
    lifetime_seconds: float | None, clock: Clock = utc_now
) -> datetime | None:
    """Convert a relative lifetime from a token response into an absolute UTC expiry.

    Call this while processing the response that issued the token, never later -
    the lifetime counts from the moment of issuance.
    """
    if lifetime_seconds is None:
        return None
    return clock() + timedelta(seconds=lifetime_seconds)
