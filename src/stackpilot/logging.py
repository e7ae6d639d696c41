"""structlog setup shared by the CLI and library entry points."""

import logging
from typing import Any

import structlog

from stackpilot.config import Settings


def _renderer(fmt: str) -> Any:
    if fmt == "console":
        return structlog.dev.ConsoleRenderer(colors=False)
    return structlog.processors.JSONRenderer(sort_keys=True)


def configure_logging(level: int | str = logging.INFO, fmt: str = "json") -> None:
    """Configure structlog on top of stdlib logging.

    Output goes to stderr so ``--output json`` on stdout stays parseable.
    Context bound with ``structlog.contextvars`` (the engine binds ``run_id``)
    is merged into every event.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _renderer(fmt),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(level=level, format="%(message)s", force=True)


def configure_from_settings(settings: Settings) -> None:
    configure_logging(settings.log_level, fmt=settings.log_format)
