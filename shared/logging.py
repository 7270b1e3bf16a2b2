"""
Structured logging setup for AutoExit.

JSON output for deployed services, coloured console output for local runs.
"""

import logging
import sys

import structlog
from structlog.typing import Processor

from shared.config import LoggingConfig

_configured = False


def configure_logging(config: LoggingConfig | None = None, force: bool = False) -> None:
    """
    Configure structlog and the standard library root logger.

    Safe to call from every service entry point; only the first call
    takes effect unless ``force`` is set.

    Args:
        config: Logging configuration. Defaults are used if None.
        force: Reconfigure even if logging was already set up
    """
    global _configured
    if _configured and not force:
        return

    config = config or LoggingConfig()
    level = getattr(logging, config.level.upper(), logging.INFO)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if config.format == "json":
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
        ]

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True
