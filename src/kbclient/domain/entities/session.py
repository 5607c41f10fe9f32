"""Session entities.

Hey future me - a Session is NEVER patched in place. Every change (refresh, seller id
lookup) builds a new frozen Session via dataclasses.replace() and hands it to
SessionStore.persist_session(), which swaps the cached reference. Listeners holding the
old object keep a consistent (if stale) snapshot instead of a half-updated one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


@dataclass(frozen=True)
class TokenPair:
    """Access and refresh token plus their absolute expiries.

    A None expiry means the backend sent no lifetime for that token; it is then
    treated as never expiring.
    """

    access_token: str
    refresh_token: str
    access_expires_at: datetime | None = None
    refresh_expires_at: datetime | None = None

    def __repr__(self) -> str:
        # Tokens stay out of logs and tracebacks.
        return (
            f"TokenPair(access_expires_at={self.access_expires_at}, "
            f"refresh_expires_at={self.refresh_expires_at})"
        )


@dataclass(frozen=True)
class Session:
    """An authenticated login: identity fields plus the embedded token pair.

    Attributes:
        user_id: Backend user id. A session without one does not exist.
        access_token: Short-lived bearer credential
        refresh_token: Long-lived credential used only against the refresh endpoint
        access_expires_at: Absolute UTC expiry of the access token (None = never)
        refresh_expires_at: Absolute UTC expiry of the refresh token (None = never)
        roles: Role names granted by the backend, deduplicated, order preserved
        seller_id: Seller profile id, resolved after login (None if not a seller)
        fingerprint: Device identity string bound to the tokens by the refresh endpoint
    """

    user_id: int
    access_token: str
    refresh_token: str
    access_expires_at: datetime | None = None
    refresh_expires_at: datetime | None = None
    roles: tuple[str, ...] = field(default_factory=tuple)
    seller_id: int | None = None
    fingerprint: str | None = None

    @classmethod
    def from_tokens(
        cls,
        tokens: TokenPair,
        *,
        user_id: int,
        roles: tuple[str, ...] = (),
        seller_id: int | None = None,
        fingerprint: str | None = None,
    ) -> Session:
        """Combine a token pair with identity fields."""
        return cls(
            user_id=user_id,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            access_expires_at=tokens.access_expires_at,
            refresh_expires_at=tokens.refresh_expires_at,
            roles=tuple(roles),
            seller_id=seller_id,
            fingerprint=fingerprint,
        )

    @property
    def tokens(self) -> TokenPair:
        """The token pair part of this session."""
        return TokenPair(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            access_expires_at=self.access_expires_at,
            refresh_expires_at=self.refresh_expires_at,
        )

    def __repr__(self) -> str:
        return (
            f"Session(user_id={self.user_id}, roles={list(self.roles)}, "
            f"seller_id={self.seller_id}, access_expires_at={self.access_expires_at}, "
            f"refresh_expires_at={self.refresh_expires_at})"
        )


@dataclass(frozen=True)
class AuthState:
    """What the UI renders from: signed in or not, and who."""

    is_loading: bool = True
    is_signed_in: bool = False
    access_token: str | None = None
    user_id: int | None = None
    seller_id: int | None = None
    roles: tuple[str, ...] = ()

    @classmethod
    def from_session(cls, session: Session | None) -> AuthState:
        if session is None:
            return cls(is_loading=False)
        return cls(
            is_loading=False,
            is_signed_in=True,
            access_token=session.access_token,
            user_id=session.user_id,
            seller_id=session.seller_id,
            roles=session.roles,
        )
