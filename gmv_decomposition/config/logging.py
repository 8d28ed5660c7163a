"""
Logging Configuration for GMV Decomposition

structlog on top of stdlib logging. Records carry key/value context; a run
identifier bound with bind_run_context() is attached to every record emitted
while a pipeline run is in progress.
"""

import logging
import sys
from typing import Any, List, Optional

import structlog
from structlog.processors import JSONRenderer, TimeStamper
from structlog.stdlib import ProcessorFormatter, add_log_level
from structlog.typing import Processor

from gmv_decomposition.config.settings import get_settings


def shared_processors() -> List[Processor]:
    """Processors applied to both structlog and foreign stdlib records"""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        add_log_level,
        TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def select_renderer(log_format: str) -> Processor:
    """JSON lines for ``json``, colourless console output otherwise"""
    if log_format == "json":
        return JSONRenderer(sort_keys=True)
    return structlog.dev.ConsoleRenderer(colors=False)


def configure_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """
    Configure structured logging for the process.

    Args:
        log_level: Override the configured level (DEBUG, INFO, WARNING, ERROR)
        log_format: Override the configured format (json or text)
    """
    settings = get_settings()
    level = (log_level or settings.monitoring.log_level).upper()
    fmt = log_format or settings.monitoring.log_format
    numeric_level = getattr(logging, level, logging.INFO)

    processors = shared_processors()
    structlog.configure(
        processors=processors + [ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(ProcessorFormatter(
        processor=select_renderer(fmt),
        foreign_pre_chain=processors,
    ))

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(numeric_level)

    structlog.get_logger(__name__).info(
        "Logging configured",
        level=level,
        format=fmt,
        environment=settings.app_env,
    )


def bind_run_context(**values: Any) -> None:
    """Attach key/value context to every record until clear_run_context()"""
    structlog.contextvars.bind_contextvars(**values)


def clear_run_context() -> None:
    structlog.contextvars.clear_contextvars()
