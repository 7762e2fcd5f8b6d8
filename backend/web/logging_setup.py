"""
Structured logging for the backend.

Console rendering in development, JSON lines otherwise. Modules log through
`structlog.get_logger("campus.<area>")` with snake_case event names and
key/value context; credentials and tokens are never passed to the logger.
Events are handed to stdlib loggers of the same name, so each line carries
the `logger` it was emitted from and third-party output shares the stream.
"""
from __future__ import annotations

import logging
import sys

import structlog
from structlog.types import Processor

from .config import Settings, get_settings


def configure_logging(settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    level = getattr(logging, settings.log_level)

    shared: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if settings.log_format == "json" or settings.is_prod_like:
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=shared + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    # Third-party libraries (httpx, uvicorn) keep using stdlib logging.
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    # basicConfig is a no-op once the root logger has handlers.
    logging.getLogger("campus").setLevel(level)
