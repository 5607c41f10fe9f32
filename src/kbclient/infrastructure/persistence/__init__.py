"""Infrastructure persistence layer."""

from .database import Database
from .key_value_store import SqlKeyValueStore
from .models import Base, KeyValueEntryModel
from .retry import is_lock_error, with_db_retry

__all__ = [
    "Base",
    "Database",
    "KeyValueEntryModel",
    "SqlKeyValueStore",
    "is_lock_error",
    "with_db_retry",
]
