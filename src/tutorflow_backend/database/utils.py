'''
Database helpers shared by the services: a UTC-normalising datetime column
type and a dialect-aware "INSERT ... ON CONFLICT" builder.
'''
import datetime
from typing import Any, Optional, Sequence

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.dialects import postgresql, sqlite

from ..common.logger import log


def ensure_utc(value: datetime.datetime) -> datetime.datetime:
    """Naive datetimes are taken to be UTC; aware ones are converted to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Stores timezone-aware datetimes and always hands back aware UTC values,
    including on backends without a native timestamptz (SQLite).
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = ensure_utc(value)
        if dialect.name == 'sqlite':
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return ensure_utc(value)


def _dialect_insert(db: AsyncSession):
    dialect_name = db.bind.dialect.name
    if dialect_name == 'postgresql':
        return postgresql.insert
    if dialect_name == 'sqlite':
        return sqlite.insert
    raise NotImplementedError(f"Upserts are not supported on dialect '{dialect_name}'.")


def build_upsert(
    db: AsyncSession,
    model: Any,
    rows: list[dict],
    conflict_columns: Sequence[str],
    update_columns: Optional[Sequence[str]] = None
):
    """
    Builds a multi-row INSERT ... ON CONFLICT statement for `model`.

    With `update_columns` the conflicting rows are overwritten with the incoming
    values (last write wins). Without it, conflicting rows are skipped.
    """
    insert = _dialect_insert(db)
    stmt = insert(model).values(rows)
    if update_columns:
        log.info(f"Upserting {len(rows)} rows into '{model.__tablename__}' on conflict {tuple(conflict_columns)}.")
        return stmt.on_conflict_do_update(
            index_elements=list(conflict_columns),
            set_={column: stmt.excluded[column] for column in update_columns}
        )
    log.info(f"Inserting {len(rows)} rows into '{model.__tablename__}', skipping conflicts on {tuple(conflict_columns)}.")
    return stmt.on_conflict_do_nothing(index_elements=list(conflict_columns))
