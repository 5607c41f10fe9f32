"""Domain value objects."""

from .token_expiry import (
    Clock,
    expires_at_from_lifetime,
    is_access_token_expired,
    is_refresh_token_expired,
    should_proactively_refresh,
)

__all__ = [
    "Clock",
    "expires_at_from_lifetime",
    "is_access_token_expired",
    "is_refresh_token_expired",
    "should_proactively_refresh",
]
