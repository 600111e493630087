"""
Pipeline Orchestrator

Runs the full batch in order:
reference maps -> clean set -> validation -> analytical view ->
anomaly detection -> reports -> export.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import polars as pl
import structlog

from transaction_insights.config import Settings, get_settings
from transaction_insights.exceptions import PipelineError
from transaction_insights.quality.anomaly_detector import AnomalyReport, TimestampAnomalyDetector
from transaction_insights.quality.validators import (
    ValidationResult,
    ValidationStatus,
    create_analytical_view_validator,
    create_clean_set_validator,
)
from transaction_insights.reports import DEFAULT_REPORTS, ReportEngine, ReportExporter

from .cleaners import TransactionCleaner
from .enrichers import DataEnricher
from .mappers import ReferenceMap, ReferenceMapper

logger = structlog.get_logger(__name__)


@dataclass
class PipelineResult:
    """Summary of one pipeline run"""
    raw_rows: int
    clean_rows: int
    category_map_size: int
    brand_map_size: int
    ambiguous_category_ids: int
    ambiguous_product_ids: int
    clean_validation: ValidationResult
    view_validation: ValidationResult
    anomalies: AnomalyReport
    started_at: datetime
    completed_at: datetime
    duration_seconds: float
    reports: Dict[str, pl.DataFrame] = field(default_factory=dict)
    exported_files: List[str] = field(default_factory=list)

    @property
    def excluded_years(self) -> List[int]:
        return self.anomalies.excluded_years


class TransactionPipeline:
    """
    Batch pipeline orchestrator.

    Example:
        pipeline = TransactionPipeline()
        result = pipeline.run(raw_df, output_dir="data/reports")
        result.reports["user_segmentation"]
    """

    def __init__(self, settings: Optional[Settings] = None, strict_validation: bool = True):
        self.settings = settings or get_settings()
        self.strict_validation = strict_validation
        pipeline_settings = self.settings.pipeline
        self.mapper = ReferenceMapper(pipeline_settings)
        self.cleaner = TransactionCleaner(pipeline_settings)
        self.enricher = DataEnricher(pipeline_settings)
        self.detector = TimestampAnomalyDetector(pipeline_settings)
        self.exporter = ReportExporter()

    def build_maps(self, raw: pl.DataFrame) -> Tuple[ReferenceMap, ReferenceMap]:
        return self.mapper.build_category_map(raw), self.mapper.build_brand_map(raw)

    def _check(self, result: ValidationResult, stage: str) -> None:
        if result.status == ValidationStatus.FAILED and self.strict_validation:
            failed = ", ".join(c.name for c in result.failures)
            raise PipelineError(f"{stage} validation failed: {failed}")

    def run(
        self,
        raw: pl.DataFrame,
        report_names: Optional[Sequence[str]] = None,
        output_dir: Optional[Union[str, Path]] = None,
        clean: Optional[pl.DataFrame] = None,
    ) -> PipelineResult:
        """
        Run the pipeline over a raw transaction frame.

        Args:
            raw: Raw transactions
            report_names: Reports to compute; the exported battery by default
            output_dir: Write report CSVs here when given
            clean: Already materialized clean set (e.g. from the store);
                built from ``raw`` when omitted

        Returns:
            PipelineResult

        Raises:
            PipelineError: Structural failure in any stage
        """
        started_at = datetime.utcnow()
        logger.info("Pipeline started", raw_rows=raw.height)

        category_map, brand_map = self.build_maps(raw)

        if clean is None:
            clean = self.cleaner.build_clean_set(raw)
        clean_validation = create_clean_set_validator(raw.height).validate(clean)
        self._check(clean_validation, "Clean set")

        view = self.enricher.analytical_view(clean, category_map, brand_map)
        view_validation = create_analytical_view_validator(clean.height).validate(view.collect())
        self._check(view_validation, "Analytical view")

        anomalies = self.detector.detect(view)

        names = list(report_names) if report_names else DEFAULT_REPORTS
        engine = ReportEngine(view, self.settings.pipeline)
        reports = engine.run(names)

        exported = []
        if output_dir is not None:
            exported = [str(p) for p in self.exporter.export(reports, Path(output_dir))]

        completed_at = datetime.utcnow()
        result = PipelineResult(
            raw_rows=raw.height,
            clean_rows=clean.height,
            category_map_size=len(category_map),
            brand_map_size=len(brand_map),
            ambiguous_category_ids=category_map.ambiguity_count,
            ambiguous_product_ids=brand_map.ambiguity_count,
            clean_validation=clean_validation,
            view_validation=view_validation,
            anomalies=anomalies,
            started_at=started_at,
            completed_at=completed_at,
            duration_seconds=(completed_at - started_at).total_seconds(),
            reports=reports,
            exported_files=exported,
        )

        logger.info(
            "Pipeline completed",
            clean_rows=result.clean_rows,
            reports=len(reports),
            excluded_years=result.excluded_years,
            duration_seconds=result.duration_seconds,
        )
        return result
