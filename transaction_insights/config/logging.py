"""
Logging Configuration for Transaction Insights

structlog events are rendered through the stdlib root logger so that
SQLAlchemy and Prefect records share one handler and one format: JSON lines
for scheduled runs, coloured key=value output at a terminal.
"""

import logging
import sys
from typing import List, Optional

import structlog
from structlog.processors import JSONRenderer, TimeStamper
from structlog.stdlib import ProcessorFormatter, add_log_level, add_logger_name
from structlog.typing import Processor

from transaction_insights.config.settings import get_settings

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "aiosqlite", "asyncio")


def _pre_chain() -> List[Processor]:
    """Processors applied to both structlog and foreign stdlib records"""
    return [
        structlog.contextvars.merge_contextvars,
        add_logger_name,
        add_log_level,
        TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def _renderer(log_format: str) -> Processor:
    if log_format == "json":
        return JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def configure_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """
    Configure structured logging for a pipeline run.

    Args:
        log_level: Override log level (DEBUG, INFO, WARNING, ERROR)
        log_format: Override renderer, "json" or "text"
    """
    settings = get_settings()
    level_name = (log_level or settings.monitoring.log_level).upper()
    log_format = log_format or settings.monitoring.log_format
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    pre_chain = _pre_chain()
    structlog.configure(
        processors=pre_chain + [ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ProcessorFormatter(processor=_renderer(log_format), foreign_pre_chain=pre_chain))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    if settings.database.echo:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)

    structlog.get_logger(__name__).debug(
        "Logging configured",
        level=level_name,
        format=log_format,
        environment=settings.app_env,
    )
