"""Domain entities."""

from .session import AuthState, Session, TokenPair, utc_now

__all__ = ["AuthState", "Session", "TokenPair", "utc_now"]
