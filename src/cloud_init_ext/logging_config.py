"""Structured logging for the service.

Every line carries ``service`` and ``version``; provisioning jobs add
``job_id``, ``hostname`` and ``correlation_id`` through contextvars.
"""

import logging
import sys
from typing import Literal

import structlog
from structlog.types import Processor

# Request lines are emitted by our own middleware
_QUIET_LOGGERS = ("uvicorn.access",)


def _renderer(log_format: Literal["json", "console"]) -> Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(exception_formatter=structlog.dev.plain_traceback)


def setup_logging(
    service_name: str,
    log_format: Literal["json", "console"],
    log_level: str,
    *,
    version: str | None = None,
) -> None:
    """Route structlog through stdlib logging on stdout.

    Args:
        service_name: Bound to every line as ``service``
        log_format: "json" for log shipping, "console" for a terminal
        log_level: Minimum level name, already validated by Settings
        version: Bound as ``version`` when given
    """
    level = logging.getLevelName(log_level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _renderer(log_format),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    context = {"service": service_name}
    if version:
        context["version"] = version
    structlog.contextvars.bind_contextvars(**context)

    structlog.get_logger(__name__).info("logging_initialized", log_format=log_format, log_level=log_level)
