"""
Prefect Workflow Orchestration - Batch Pipeline

Scheduled batch run of the transaction insights pipeline with:
- Retries on the I/O-bound steps
- Optional persistence of raw and clean tables
- Alerting on collapsed-timestamp years and failures
"""

from pathlib import Path
from typing import List, Optional

import polars as pl
from prefect import flow, task, get_run_logger

from transaction_insights.config import get_settings
from transaction_insights.database import TransactionStore, close_database, create_tables, init_database
from transaction_insights.ingestion import BatchLoader
from transaction_insights.transformation import TransactionPipeline


# =============================================================================
# TASKS
# =============================================================================

@task(
    name="load_batch_files",
    description="Load transaction exports from the raw zone",
    retries=3,
    retry_delay_seconds=60,
)
def load_batch_files(inputs: List[str]) -> pl.DataFrame:
    """Load and concatenate the input batches"""
    logger = get_run_logger()

    batch = BatchLoader().load_files(inputs)

    logger.info(
        f"Batch load complete: {batch.rows_loaded} rows loaded, "
        f"{batch.rows_rejected} rejected from {len(batch.results)} files"
    )
    return batch.frame


@task(
    name="rebuild_clean_table",
    description="Replace raw rows and rebuild the clean table atomically",
    retries=2,
    retry_delay_seconds=30,
)
async def rebuild_clean_table(raw: pl.DataFrame, database_url: Optional[str] = None) -> pl.DataFrame:
    """Persist raw transactions and rebuild the clean table"""
    logger = get_run_logger()

    await init_database(database_url)
    try:
        await create_tables()
        store = TransactionStore()
        clean = await store.rebuild_clean(raw=raw)
    finally:
        await close_database()

    logger.info(f"Clean table rebuilt with {clean.height} rows")
    return clean


@task(
    name="compute_reports",
    description="Validate, build the analytical view and export reports",
)
def compute_reports(
    raw: pl.DataFrame,
    clean: Optional[pl.DataFrame],
    output_dir: str,
    reports: Optional[List[str]] = None,
) -> dict:
    """Run the pipeline stages after ingestion"""
    logger = get_run_logger()

    result = TransactionPipeline().run(raw, report_names=reports, output_dir=output_dir, clean=clean)

    logger.info(
        f"Reports complete: {len(result.reports)} computed, "
        f"{len(result.exported_files)} exported"
    )
    return {
        "clean_rows": result.clean_rows,
        "excluded_years": result.excluded_years,
        "ambiguous_category_ids": result.ambiguous_category_ids,
        "ambiguous_product_ids": result.ambiguous_product_ids,
        "exported_files": result.exported_files,
        "duration_seconds": result.duration_seconds,
    }


@task(
    name="send_alert",
    description="Send alert notification",
)
def send_alert(
    alert_type: str,
    message: str,
    severity: str = "info",
) -> None:
    """Send alert notification"""
    logger = get_run_logger()
    logger.warning(f"[{severity.upper()}] {alert_type}: {message}")


# =============================================================================
# FLOWS
# =============================================================================

@flow(
    name="transaction_insights_batch",
    description="Batch pipeline: ingest, clean, report",
    retries=1,
    retry_delay_seconds=300,
)
async def transaction_insights_batch(
    inputs: Optional[List[str]] = None,
    output_dir: Optional[str] = None,
    reports: Optional[List[str]] = None,
    persist: bool = False,
    database_url: Optional[str] = None,
) -> dict:
    """
    Batch pipeline.

    Steps:
    1. Load every input batch (all CSVs in the raw zone by default)
    2. Optionally persist raw rows and rebuild the clean table
    3. Validate, build the view, detect collapsed years, export reports
    4. Alert on excluded years and failures
    """
    logger = get_run_logger()
    settings = get_settings()

    inputs = inputs or [str(p) for p in sorted(Path(settings.data_lake.raw_path).glob("*.csv"))]
    output_dir = output_dir or settings.data_lake.reports_path

    logger.info(f"Starting batch pipeline over {len(inputs)} files")

    try:
        raw = load_batch_files(inputs)
        clean = await rebuild_clean_table(raw, database_url) if persist else None
        summary = compute_reports(raw, clean, output_dir, reports)

        if summary["excluded_years"]:
            send_alert(
                alert_type="Collapsed Timestamps",
                message=f"Years excluded from temporal reports: {summary['excluded_years']}",
                severity="warning",
            )

    except Exception as e:
        logger.error(f"Batch pipeline failed: {e}")
        send_alert(
            alert_type="Pipeline Failed",
            message=f"Batch pipeline failed: {str(e)}",
            severity="critical",
        )
        raise

    summary["status"] = "success"
    return summary


if __name__ == "__main__":
    import asyncio

    asyncio.run(transaction_insights_batch())
