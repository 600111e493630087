"""
Data Cleaning Module

Builds the canonical (clean) transaction set from raw records.

Every raw row produces exactly one clean row:
- a fresh surrogate id, strictly increasing in emission order
- event_time rendered on the source system clock, offset stripped
- normalized_event_time = event_time - configured correction offset
- every other field carried over unchanged, nulls included

Nothing is filtered here. Missing user ids, category codes and brands are
expected and handled downstream by the analytical view.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Optional

import polars as pl
import structlog

from transaction_insights.config import PipelineSettings, get_settings
from transaction_insights.exceptions import MalformedRecordError
from transaction_insights.schemas import CLEAN_COLUMNS, CLEAN_SCHEMA, RAW_COLUMNS

logger = structlog.get_logger(__name__)

NULLABLE_COLUMNS = ["user_id", "category_code", "brand"]


@dataclass
class CleaningStats:
    """Statistics from a cleaning pass"""
    total_rows: int
    rows_after_cleaning: int
    first_id: Optional[int]
    last_id: Optional[int]
    null_counts: Dict[str, int] = field(default_factory=dict)
    duration_seconds: float = 0.0

    @property
    def rows_dropped(self) -> int:
        return self.total_rows - self.rows_after_cleaning


def source_clock_timezone(offset_hours: int) -> str:
    """IANA name of the fixed-offset zone UTC+offset_hours (Etc/ names invert the sign)"""
    return f"Etc/GMT{-offset_hours:+d}"


class TransactionCleaner:
    """
    Builds the clean transaction set in a single full pass.

    Example:
        cleaner = TransactionCleaner()
        clean_df = cleaner.build_clean_set(raw_df)
        cleaner.last_stats.rows_dropped  # always 0
    """

    def __init__(self, settings: Optional[PipelineSettings] = None):
        self.settings = settings or get_settings().pipeline
        self.last_stats: Optional[CleaningStats] = None

    @property
    def correction_offset(self) -> timedelta:
        return timedelta(hours=self.settings.time_correction_hours)

    def _render_event_time(self, raw: pl.DataFrame) -> pl.Expr:
        """Naive event_time expression for the raw frame's event_time dtype"""
        dtype = raw.schema["event_time"]
        if getattr(dtype, "time_zone", None):
            return (
                pl.col("event_time")
                .dt.convert_time_zone(source_clock_timezone(self.settings.time_correction_hours))
                .dt.replace_time_zone(None)
            )
        return pl.col("event_time")

    def _check_event_times(self, raw: pl.DataFrame) -> None:
        missing = raw["event_time"].null_count()
        if missing:
            logger.error("Records without event_time reached cleaning", count=missing)
            raise MalformedRecordError(
                f"{missing} records have no usable event_time; reject them at ingestion",
                record_count=missing,
            )

    def build_clean_set(self, raw: pl.DataFrame, start_id: int = 1) -> pl.DataFrame:
        """
        Build the clean transaction set.

        Args:
            raw: Raw transactions with the RAW_SCHEMA columns
            start_id: First surrogate id to assign

        Returns:
            DataFrame with CLEAN_SCHEMA columns, one row per raw row

        Raises:
            MalformedRecordError: if any record has a null event_time
        """
        started_at = datetime.utcnow()
        missing_columns = [c for c in RAW_COLUMNS if c not in raw.columns]
        if missing_columns:
            raise ValueError(f"Raw frame is missing columns: {missing_columns}")

        self._check_event_times(raw)

        clean = (
            raw.select(RAW_COLUMNS)
            .with_row_index("id", offset=start_id)
            .with_columns(
                pl.col("id").cast(pl.Int64),
                self._render_event_time(raw).cast(pl.Datetime("us")).alias("event_time"),
            )
            .with_columns(
                (pl.col("event_time") - self.correction_offset).alias("normalized_event_time"),
            )
            .select(CLEAN_COLUMNS)
            .cast(CLEAN_SCHEMA)
        )

        completed_at = datetime.utcnow()
        self.last_stats = CleaningStats(
            total_rows=raw.height,
            rows_after_cleaning=clean.height,
            first_id=clean["id"][0] if clean.height else None,
            last_id=clean["id"][-1] if clean.height else None,
            null_counts={c: clean[c].null_count() for c in NULLABLE_COLUMNS},
            duration_seconds=(completed_at - started_at).total_seconds(),
        )

        logger.info(
            "Clean set built",
            rows=clean.height,
            first_id=self.last_stats.first_id,
            last_id=self.last_stats.last_id,
            null_counts=self.last_stats.null_counts,
            correction_hours=self.settings.time_correction_hours,
        )

        return clean


def build_clean_set(
    raw: pl.DataFrame,
    start_id: int = 1,
    settings: Optional[PipelineSettings] = None,
) -> pl.DataFrame:
    """
    Convenience function to build the clean transaction set.

    Args:
        raw: Raw transactions
        start_id: First surrogate id to assign
        settings: Optional pipeline settings override

    Returns:
        Clean DataFrame
    """
    return TransactionCleaner(settings).build_clean_set(raw, start_id=start_id)
