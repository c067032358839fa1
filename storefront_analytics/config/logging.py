"""
Logging Configuration for Storefront Analytics

structlog renders every record, including stdlib records emitted by
SQLAlchemy and Prefect, through one handler on the root logger.
"""

import logging
import sys
from typing import List, Optional

import structlog
from structlog.processors import JSONRenderer, TimeStamper
from structlog.stdlib import add_log_level, ProcessorFormatter

# Libraries that log per statement or per poll at INFO
NOISY_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "asyncio", "faker")


def _pre_chain() -> List:
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


def _renderer(log_format: str):
    if log_format == "json":
        return JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def configure_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
) -> None:
    """
    Route structlog and stdlib logging to stdout.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR; defaults to LOG_LEVEL
        log_format: "json" or "text"; defaults to LOG_FORMAT
    """
    if log_level is None or log_format is None:
        from storefront_analytics.config.settings import get_settings

        monitoring = get_settings().monitoring
        log_level = log_level or monitoring.log_level
        log_format = log_format or monitoring.log_format

    level = logging.getLevelName(log_level.upper())
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
    root.handlers = [handler]
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.get_logger(__name__).info("Logging configured", level=log_level, format=log_format)
