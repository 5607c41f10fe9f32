"""SQLAlchemy ORM models for kbclient."""

from datetime import UTC, datetime

import sqlalchemy as sa
from sqlalchemy import String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# =============================================================================
# KEY/VALUE ENTRIES (plain session storage)
# =============================================================================
# Hey future me - this is the PLAIN store. Identity entries (kb_user_id, kb_roles,
# kb_seller_id, kb_device_fingerprint) always live here. The token blob only lands here
# under kb_session_tokens_fallback when the OS keyring is unavailable - and
# SecureTokenStore deletes that row again on the next successful keyring write.
# Values are plain strings; JSON encoding (roles, token blob) happens in the callers.
# =============================================================================


class KeyValueEntryModel(Base):
    """One persisted string entry."""

    __tablename__ = "kv_entries"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False, default="")
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        server_default=func.now(),
        onupdate=utc_now,
    )
