"""
Simple structured logging setup using structlog directly.

No wrappers, just standard structlog configuration. Modules obtain loggers
with ``structlog.get_logger(__name__)``.
"""

import logging

import structlog

from subtrack.settings import get_settings


def setup_logging() -> None:
    """
    Setup structured logging with structlog.

    Reads the ``observability`` group of the current settings, so a call after
    ``reset_settings()`` picks up the new level and format.
    """
    observability = get_settings().observability
    logging.basicConfig(
        format="%(message)s",
        level=observability.log_level.value,
    )
    logging.getLogger().setLevel(observability.log_level.value)

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    # Use JSON or console output based on settings
    if observability.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


__all__ = ["setup_logging"]
