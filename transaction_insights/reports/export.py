"""
Report Export

Writes collected reports as CSV files named after their registry entry,
e.g. ``01_user_segmentation_summary.csv``. Reports without an export name
are written under their report name.
"""

from pathlib import Path
from typing import Dict, List, Optional

import polars as pl
import structlog

from transaction_insights.reports.definitions import REPORTS, ReportDefinition

logger = structlog.get_logger(__name__)


class ReportExporter:
    """CSV writer for report results"""

    def __init__(self, registry: Optional[Dict[str, ReportDefinition]] = None):
        self.registry = registry if registry is not None else REPORTS

    def filename(self, name: str) -> str:
        definition = self.registry.get(name)
        stem = definition.export_name if definition and definition.export_name else name
        return f"{stem}.csv"

    def export(self, results: Dict[str, pl.DataFrame], directory: Path) -> List[Path]:
        """Write every result to ``directory``; returns the written paths"""
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)

        written = []
        for name, frame in results.items():
            path = directory / self.filename(name)
            frame.write_csv(path)
            written.append(path)
            logger.info("Report exported", report=name, path=str(path), rows=len(frame))

        return written
