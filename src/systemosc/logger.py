"""Structured logging configuration using structlog.

Console output is pretty-printed on stderr; when a log file is configured,
JSON lines are written to it with size-based rotation.
"""

import logging
import logging.handlers
import pathlib
import sys
from typing import Any

import structlog

_FOREIGN_PRE_CHAIN = [
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
]


def _configure_file_handler(log_file: pathlib.Path) -> logging.handlers.RotatingFileHandler:
    """Configure rotating file handler for JSON logs."""
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        filename=str(log_file),
        maxBytes=10 * 1024 * 1024,
        backupCount=3,
        encoding="utf-8",
    )
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=_FOREIGN_PRE_CHAIN,
        )
    )
    return handler


def _configure_console_handler() -> logging.StreamHandler:
    """Configure console handler for pretty-printed logs."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
            foreign_pre_chain=_FOREIGN_PRE_CHAIN,
        )
    )
    return handler


def configure_logging(
    level: str = "INFO",
    log_file: pathlib.Path | None = None,
    console: bool = True,
) -> None:
    """Configure structlog and the stdlib root logger.

    Safe to call more than once; handlers are replaced each time.

    Args:
        level: Log level name for all handlers.
        log_file: Optional path for rotating JSON logs.
        console: Whether to log to stderr. The terminal display turns this off.
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # uvicorn's access log would emit a line per HTTP poll
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    if console:
        root_logger.addHandler(_configure_console_handler())
    if log_file is not None:
        root_logger.addHandler(_configure_file_handler(log_file))
    if not root_logger.handlers:
        root_logger.addHandler(logging.NullHandler())

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def get_logger(name: str) -> Any:  # Returns structlog.stdlib.BoundLogger
    """Get a structured logger instance.

    Example:
        >>> log = get_logger(__name__)
        >>> log.info("cycle_completed", total=46.45)
    """
    if not structlog.is_configured():
        configure_logging()
    return structlog.get_logger(name)
