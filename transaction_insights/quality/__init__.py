"""
Data Quality Module
"""
from .anomaly_detector import AnomalyReport, AnomalyResult, TimestampAnomalyDetector, collapsed_years, valid_temporal_rows
from .validators import (
    DataValidator,
    ValidationResult,
    ValidationStatus,
    create_analytical_view_validator,
    create_clean_set_validator,
)

__all__ = [
    "AnomalyReport",
    "AnomalyResult",
    "TimestampAnomalyDetector",
    "collapsed_years",
    "valid_temporal_rows",
    "DataValidator",
    "ValidationResult",
    "ValidationStatus",
    "create_analytical_view_validator",
    "create_clean_set_validator",
]
