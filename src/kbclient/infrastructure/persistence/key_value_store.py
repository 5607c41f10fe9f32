"""SQLAlchemy-backed implementation of the plain key/value store."""

import logging
from collections.abc import Iterable, Mapping

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from kbclient.domain.exceptions import StorageError
from kbclient.domain.ports import IKeyValueStore
from kbclient.infrastructure.persistence.database import Database
from kbclient.infrastructure.persistence.models import KeyValueEntryModel, utc_now
from kbclient.infrastructure.persistence.retry import with_db_retry

logger = logging.getLogger(__name__)


class SqlKeyValueStore(IKeyValueStore):
    """Key/value entries in the kv_entries table.

    Hey future me - every public method translates SQLAlchemyError into StorageError.
    The session layer catches StorageError (and only that) to degrade to "signed out",
    so a raw OperationalError leaking out of here would crash callers instead.
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    async def get(self, key: str) -> str | None:
        values = await self.get_many([key])
        return values[key]

    async def get_many(self, keys: Iterable[str]) -> dict[str, str | None]:
        wanted = list(keys)
        try:
            rows = await self._select(wanted)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read {wanted}: {e}") from e
        return {key: rows.get(key) for key in wanted}

    async def set(self, key: str, value: str) -> None:
        await self.set_many({key: value})

    async def set_many(self, entries: Mapping[str, str]) -> None:
        if not entries:
            return
        try:
            await self._upsert(dict(entries))
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to write {list(entries)}: {e}") from e

    async def delete(self, key: str) -> None:
        await self.delete_many([key])

    async def delete_many(self, keys: Iterable[str]) -> None:
        doomed = list(keys)
        if not doomed:
            return
        try:
            await self._delete(doomed)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to delete {doomed}: {e}") from e

    # -- private helpers -----------------------------------------------------

    @with_db_retry()
    async def _select(self, keys: list[str]) -> dict[str, str]:
        async with self._db.session_scope() as session:
            result = await session.execute(
                select(KeyValueEntryModel.key, KeyValueEntryModel.value).where(
                    KeyValueEntryModel.key.in_(keys)
                )
            )
            return {key: value for key, value in result.all()}

    # Hey future me - merge() is a portable upsert (SELECT then INSERT/UPDATE). Dialect
    # specific ON CONFLICT would be faster, but these are four tiny rows per login.
    @with_db_retry()
    async def _upsert(self, entries: dict[str, str]) -> None:
        async with self._db.session_scope() as session:
            for key, value in entries.items():
                await session.merge(
                    KeyValueEntryModel(key=key, value=value, updated_at=utc_now())
                )

    @with_db_retry()
    async def _delete(self, keys: list[str]) -> None:
        async with self._db.session_scope() as session:
            await session.execute(
                delete(KeyValueEntryModel).where(KeyValueEntryModel.key.in_(keys))
            )
