"""
Transaction Store

Persists raw and clean transactions and converts between table rows and
polars frames.

The clean table is only ever replaced as a whole: ``rebuild_clean`` optionally
replaces the raw rows, reads the raw table, builds the clean set, deletes the previous rows and inserts the
new ones inside one transaction. Readers see the old clean set or the new
one, never a partial rebuild. Surrogate ids continue from the last
rebuild's watermark and are never handed out twice.
"""

from datetime import datetime, timezone
from typing import Any, AsyncContextManager, Callable, Dict, List, Optional, Type

import polars as pl
import structlog
from sqlalchemy import delete, func, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from transaction_insights.config import get_settings
from transaction_insights.database.connection import get_db
from transaction_insights.database.models import (
    Base,
    CleanRebuildRecord,
    CleanTransactionRecord,
    RawTransactionRecord,
)
from transaction_insights.exceptions import StoreError
from transaction_insights.schemas import CLEAN_COLUMNS, CLEAN_SCHEMA, RAW_COLUMNS, RAW_SCHEMA
from transaction_insights.transformation.cleaners import TransactionCleaner

logger = structlog.get_logger(__name__)

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Drop the offset after moving to UTC; naive values are taken as UTC already"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _frame_from_rows(rows: List[Any], columns: List[str], schema: Dict[str, pl.DataType]) -> pl.DataFrame:
    naive_schema = {
        c: pl.Datetime("us") if isinstance(schema[c], pl.Datetime) else schema[c]
        for c in columns
    }
    data = [
        tuple(_naive_utc(v) if isinstance(v, datetime) else v for v in row)
        for row in rows
    ]
    df = pl.DataFrame(data, schema=naive_schema, orient="row")
    tz_columns = [c for c in columns if isinstance(schema[c], pl.Datetime) and schema[c].time_zone]
    if tz_columns:
        df = df.with_columns([pl.col(c).dt.replace_time_zone("UTC") for c in tz_columns])
    return df


class TransactionStore:
    """
    Async persistence for raw and clean transactions.

    Example:
        await init_database()
        await create_tables()
        store = TransactionStore()
        clean = await store.rebuild_clean(raw=batch.frame)
    """

    def __init__(
        self,
        session_factory: Optional[SessionFactory] = None,
        chunk_size: Optional[int] = None,
    ):
        self._session = session_factory or get_db
        self.chunk_size = chunk_size or get_settings().database.insert_chunk_size

    async def _insert(self, db: AsyncSession, model: Type[Base], records: List[Dict[str, Any]]) -> int:
        """Chunked executemany insert"""
        for i in range(0, len(records), self.chunk_size):
            await db.execute(insert(model), records[i:i + self.chunk_size])
        return len(records)

    async def _read_raw(self, db: AsyncSession) -> pl.DataFrame:
        columns = [getattr(RawTransactionRecord, c) for c in RAW_COLUMNS]
        result = await db.execute(select(*columns).order_by(RawTransactionRecord.row_id))
        return _frame_from_rows(result.all(), RAW_COLUMNS, RAW_SCHEMA)

    async def _next_id(self, db: AsyncSession) -> int:
        watermark = (await db.execute(select(func.max(CleanRebuildRecord.next_id)))).scalar()
        current = (await db.execute(select(func.max(CleanTransactionRecord.id)))).scalar()
        return max(watermark or 1, (current or 0) + 1)

    async def append_raw(self, raw: pl.DataFrame) -> int:
        """Append raw transactions after the existing ones"""
        records = raw.select(RAW_COLUMNS).to_dicts()
        try:
            async with self._session() as db:
                inserted = await self._insert(db, RawTransactionRecord, records)
        except SQLAlchemyError as e:
            raise StoreError(f"Raw insert failed: {e}") from e

        logger.info("Raw transactions appended", rows=inserted)
        return inserted

    async def replace_raw(self, raw: pl.DataFrame) -> int:
        """Replace the raw table contents with ``raw`` in one transaction"""
        records = raw.select(RAW_COLUMNS).to_dicts()
        try:
            async with self._session() as db:
                await db.execute(delete(RawTransactionRecord))
                inserted = await self._insert(db, RawTransactionRecord, records)
        except SQLAlchemyError as e:
            raise StoreError(f"Raw replace failed: {e}") from e

        logger.info("Raw transactions replaced", rows=inserted)
        return inserted

    async def read_raw(self) -> pl.DataFrame:
        """Raw transactions in ingestion order"""
        try:
            async with self._session() as db:
                return await self._read_raw(db)
        except SQLAlchemyError as e:
            raise StoreError(f"Raw read failed: {e}") from e

    async def rebuild_clean(
        self,
        cleaner: Optional[TransactionCleaner] = None,
        raw: Optional[pl.DataFrame] = None,
    ) -> pl.DataFrame:
        """
        Rebuild the clean table from the raw table atomically.

        Args:
            cleaner: Cleaner to build with; one from the settings by default
            raw: When given, replaces the raw table first, in the same
                transaction as the rebuild

        Returns:
            The new clean set

        Raises:
            StoreError: The rebuild could not be committed; the previous raw
                rows and clean set are left intact
            MalformedRecordError: A raw record has no event_time
        """
        cleaner = cleaner or TransactionCleaner()
        try:
            async with self._session() as db:
                if raw is not None:
                    await db.execute(delete(RawTransactionRecord))
                    await self._insert(db, RawTransactionRecord, raw.select(RAW_COLUMNS).to_dicts())
                raw_rows = await self._read_raw(db)
                start_id = await self._next_id(db)
                clean = cleaner.build_clean_set(raw_rows, start_id=start_id)

                await db.execute(delete(CleanTransactionRecord))
                await self._insert(db, CleanTransactionRecord, clean.to_dicts())
                db.add(CleanRebuildRecord(
                    row_count=clean.height,
                    first_id=cleaner.last_stats.first_id,
                    last_id=cleaner.last_stats.last_id,
                    next_id=start_id + clean.height,
                ))
        except SQLAlchemyError as e:
            logger.error("Clean rebuild failed, previous state kept", error=str(e))
            raise StoreError(f"Clean rebuild failed: {e}") from e

        logger.info("Clean table rebuilt", rows=clean.height, start_id=start_id, raw_replaced=raw is not None)
        return clean

    async def read_clean(self) -> pl.DataFrame:
        """Clean transactions ordered by id"""
        columns = [getattr(CleanTransactionRecord, c) for c in CLEAN_COLUMNS]
        try:
            async with self._session() as db:
                result = await db.execute(select(*columns).order_by(CleanTransactionRecord.id))
                return _frame_from_rows(result.all(), CLEAN_COLUMNS, CLEAN_SCHEMA)
        except SQLAlchemyError as e:
            raise StoreError(f"Clean read failed: {e}") from e
