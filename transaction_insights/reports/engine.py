"""
Report Engine

Resolves report names against the registry, builds their lazy plans over a
single analytical view and collects them together with ``pl.collect_all``
so polars can share scans and run the plans in parallel.
"""

import time
from typing import Dict, Iterable, List, Optional

import polars as pl
import structlog

from transaction_insights.config import PipelineSettings, get_settings
from transaction_insights.exceptions import UnknownReportError
from transaction_insights.reports.definitions import REPORTS, ReportContext, ReportDefinition

logger = structlog.get_logger(__name__)


class ReportEngine:
    """
    Runs named reports over an analytical view.

    Example:
        engine = ReportEngine(view)
        results = engine.run(["user_segmentation", "hourly_peaks"])
        results["user_segmentation"]
    """

    def __init__(
        self,
        view: pl.LazyFrame,
        settings: Optional[PipelineSettings] = None,
        registry: Optional[Dict[str, ReportDefinition]] = None,
    ):
        self.view = view
        self.context = ReportContext(settings=settings or get_settings().pipeline)
        self.registry = registry if registry is not None else REPORTS

    @property
    def available(self) -> List[str]:
        return list(self.registry)

    def definition(self, name: str) -> ReportDefinition:
        try:
            return self.registry[name]
        except KeyError:
            raise UnknownReportError(
                f"Unknown report '{name}'. Available: {', '.join(self.available)}"
            ) from None

    def build(self, name: str) -> pl.LazyFrame:
        """Lazy plan for one report"""
        return self.definition(name).builder(self.view, self.context)

    def run_one(self, name: str) -> pl.DataFrame:
        return self.build(name).collect()

    def run(self, names: Optional[Iterable[str]] = None) -> Dict[str, pl.DataFrame]:
        """
        Collect reports by name; every registered report when ``names`` is None.

        All names are resolved before anything is collected, so an unknown
        name fails fast without running the others.
        """
        selected = list(dict.fromkeys(names)) if names is not None else self.available
        plans = [self.build(name) for name in selected]

        start = time.time()
        frames = pl.collect_all(plans)
        duration = time.time() - start

        logger.info(
            "Reports collected",
            reports=len(selected),
            duration_seconds=round(duration, 3),
        )
        return dict(zip(selected, frames))
