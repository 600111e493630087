"""
Transaction Insights - Command Line Entry Point

Usage:
    transaction-insights run --input data/raw/2020.csv --input data/raw/2021.csv \
        --output-dir data/reports
    transaction-insights run --input data/raw/2020.csv --report hourly_peaks --report payday
    transaction-insights run --input data/raw/2020.csv --persist --database-url sqlite+aiosqlite:///insights.db
    transaction-insights generate --output-dir data/raw --rows 50000
    transaction-insights reports
"""

import argparse
import asyncio
import sys
from typing import List, Optional

import polars as pl
import structlog

from transaction_insights.config import get_settings
from transaction_insights.config.logging import configure_logging
from transaction_insights.exceptions import PipelineError, UnknownReportError
from transaction_insights.reports import DEFAULT_REPORTS, REPORTS

logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="transaction-insights",
        description="Batch analytics over e-commerce purchase-line exports",
    )
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument("--log-format", default=None, choices=["json", "text"])

    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Ingest, clean and compute reports")
    run.add_argument("--input", dest="inputs", action="append", required=True,
                     help="Input file; repeat for several batches")
    run.add_argument("--output-dir", default=None, help="Directory for report CSVs")
    run.add_argument("--report", dest="reports", action="append", default=None,
                     help="Report to compute; repeat for several (default: the exported battery)")
    run.add_argument("--persist", action="store_true",
                     help="Store raw rows and rebuild the clean table in the database")
    run.add_argument("--database-url", default=None, help="Async database URL used with --persist")
    run.add_argument("--no-strict", action="store_true", help="Continue when validation fails")

    generate = subparsers.add_parser("generate", help="Write a synthetic two-batch dataset")
    generate.add_argument("--output-dir", default=None)
    generate.add_argument("--rows", type=int, default=50000, help="Rows per batch")
    generate.add_argument("--collapsed-rows", type=int, default=1500)
    generate.add_argument("--first-year", type=int, default=2020)
    generate.add_argument("--seed", type=int, default=42)

    subparsers.add_parser("reports", help="List available reports")

    return parser


async def _persist_and_rebuild(raw: pl.DataFrame, database_url: Optional[str]) -> pl.DataFrame:
    from transaction_insights.database import TransactionStore, close_database, create_tables, init_database

    await init_database(database_url)
    try:
        await create_tables()
        store = TransactionStore()
        return await store.rebuild_clean(raw=raw)
    finally:
        await close_database()


def _run(args: argparse.Namespace) -> int:
    from transaction_insights.ingestion import BatchLoader
    from transaction_insights.transformation import TransactionPipeline

    settings = get_settings()
    names = args.reports or DEFAULT_REPORTS
    unknown = [n for n in names if n not in REPORTS]
    if unknown:
        raise UnknownReportError(f"Unknown report(s): {', '.join(unknown)}")

    batch = BatchLoader().load_files(args.inputs)

    clean = None
    if args.persist:
        clean = asyncio.run(_persist_and_rebuild(batch.frame, args.database_url))

    pipeline = TransactionPipeline(settings, strict_validation=not args.no_strict)
    result = pipeline.run(
        batch.frame,
        report_names=names,
        output_dir=args.output_dir or settings.data_lake.reports_path,
        clean=clean,
    )

    logger.info(
        "Run summary",
        files=len(batch.results),
        rows_loaded=batch.rows_loaded,
        rows_rejected=batch.rows_rejected,
        clean_rows=result.clean_rows,
        ambiguous_category_ids=result.ambiguous_category_ids,
        ambiguous_product_ids=result.ambiguous_product_ids,
        excluded_years=result.excluded_years,
        exported=result.exported_files,
    )
    return 0


def _generate(args: argparse.Namespace) -> int:
    from transaction_insights.data import DataGenerator

    generator = DataGenerator(output_dir=args.output_dir or get_settings().data_lake.raw_path, seed=args.seed)
    data = generator.generate_all(
        rows_per_batch=args.rows,
        first_year=args.first_year,
        collapsed_rows=args.collapsed_rows,
    )
    paths = generator.save(data)
    logger.info("Dataset generated", files=[str(p) for p in paths])
    return 0


def _list_reports(args: argparse.Namespace) -> int:
    for name, definition in REPORTS.items():
        exported = f"{definition.export_name}.csv" if definition.export_name else "-"
        print(f"{name:<24} {exported:<40} {definition.description}")
    return 0


COMMANDS = {
    "run": _run,
    "generate": _generate,
    "reports": _list_reports,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, args.log_format)

    try:
        return COMMANDS[args.command](args)
    except PipelineError as e:
        logger.error("Pipeline failed", error=str(e), error_type=type(e).__name__)
        return 1


if __name__ == "__main__":
    sys.exit(main())
