"""Report definitions, engine and export"""

from transaction_insights.reports.definitions import DEFAULT_REPORTS, REPORTS, ReportContext, ReportDefinition
from transaction_insights.reports.engine import ReportEngine
from transaction_insights.reports.export import ReportExporter
from transaction_insights.reports.metrics import StrategicQuadrant, classify_quadrant, round_half_up

__all__ = [
    "DEFAULT_REPORTS",
    "REPORTS",
    "ReportContext",
    "ReportDefinition",
    "ReportEngine",
    "ReportExporter",
    "StrategicQuadrant",
    "classify_quadrant",
    "round_half_up",
]
