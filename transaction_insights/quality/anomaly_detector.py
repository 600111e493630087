"""
Temporal Anomaly Detection

Detects timestamp corruption in the analytical view. The known failure mode
is a batch whose timestamps all collapsed onto one instant (typically the
Unix epoch): every row of that year shares a single normalized_event_time.
Such years are excluded from time-based reports but still count everywhere
else.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import polars as pl
import structlog

from transaction_insights.config import PipelineSettings, get_settings

logger = structlog.get_logger(__name__)


class AnomalyType(str, Enum):
    """Types of anomalies detected"""
    COLLAPSED_TIMESTAMPS = "collapsed_timestamps"


class AnomalySeverity(str, Enum):
    """Severity levels for anomalies"""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class AnomalyResult:
    """Single anomaly detection result"""
    metric_name: str
    anomaly_type: AnomalyType
    severity: AnomalySeverity
    detected_at: datetime
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_critical(self) -> bool:
        return self.severity in [AnomalySeverity.CRITICAL, AnomalySeverity.HIGH]


@dataclass
class AnomalyReport:
    """Complete anomaly detection report"""
    started_at: datetime
    completed_at: datetime
    years_checked: int
    anomalies: List[AnomalyResult] = field(default_factory=list)

    @property
    def anomalies_found(self) -> int:
        return len(self.anomalies)

    @property
    def excluded_years(self) -> List[int]:
        return sorted(a.details["year"] for a in self.anomalies)


def collapsed_years(view: pl.LazyFrame, min_rows: int = 1) -> pl.LazyFrame:
    """
    Years whose rows all share one distinct normalized_event_time.

    Returns a LazyFrame with columns year, row_count, distinct_timestamps.
    Years with fewer than ``min_rows`` rows are never flagged.
    """
    return (
        view.group_by("year")
        .agg([
            pl.len().alias("row_count"),
            pl.col("normalized_event_time").n_unique().alias("distinct_timestamps"),
        ])
        .filter((pl.col("distinct_timestamps") == 1) & (pl.col("row_count") >= min_rows))
        .sort("year")
    )


def valid_temporal_rows(view: pl.LazyFrame, min_rows: int = 1) -> pl.LazyFrame:
    """The view restricted to years without collapsed timestamps"""
    return view.join(collapsed_years(view, min_rows).select("year"), on="year", how="anti")


class TimestampAnomalyDetector:
    """
    Flags years with collapsed timestamps.

    Example:
        detector = TimestampAnomalyDetector()
        report = detector.detect(view)
        report.excluded_years  # [1970]
    """

    def __init__(self, settings: Optional[PipelineSettings] = None):
        self.settings = settings or get_settings().pipeline

    def detect(self, view: pl.LazyFrame) -> AnomalyReport:
        started_at = datetime.utcnow()
        min_rows = self.settings.collapsed_year_min_rows

        years_checked = view.select(pl.col("year").n_unique()).collect().item()
        flagged = collapsed_years(view, min_rows).collect()

        anomalies = []
        for row in flagged.iter_rows(named=True):
            anomalies.append(AnomalyResult(
                metric_name="normalized_event_time",
                anomaly_type=AnomalyType.COLLAPSED_TIMESTAMPS,
                severity=AnomalySeverity.HIGH,
                detected_at=datetime.utcnow(),
                message=(
                    f"All {row['row_count']} rows of year {row['year']} share one timestamp; "
                    "excluded from temporal reports"
                ),
                details={"year": row["year"], "row_count": row["row_count"]},
            ))
            logger.warning(
                "Collapsed timestamps detected",
                year=row["year"],
                rows=row["row_count"],
            )

        return AnomalyReport(
            started_at=started_at,
            completed_at=datetime.utcnow(),
            years_checked=years_checked,
            anomalies=anomalies,
        )
