"""
LiveMorph Structured Logging Module.

structlog front end over the standard library's logging, so LiveMorph's
own events and those of uvicorn, watchdog and httpx share one handler and
one renderer.
Requires Python 3.11+.
"""

import logging
import sys

import structlog
from structlog.types import Processor

from utils.config import Settings, get_settings

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("watchdog", "uvicorn.access", "httpcore", "httpx")


def _renderer(fmt: str) -> list[Processor]:
    if fmt == "json":
        return [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    return [
        structlog.dev.ConsoleRenderer(
            colors=sys.stderr.isatty(),
            exception_formatter=structlog.dev.plain_traceback,
        )
    ]


def configure_logging(settings: Settings | None = None) -> None:
    """
    Configure structured logging for the application.

    Call this once at startup, before the server runs. Records from
    standard library loggers are rendered the same way as structlog events.
    """
    settings = settings or get_settings()
    level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    # Applied to structlog events and to foreign stdlib records alike
    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *pre_chain,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *_renderer(settings.logging.format),
        ],
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    # uvicorn installs its own handlers unless told otherwise
    for name in ("uvicorn", "uvicorn.error"):
        logging.getLogger(name).handlers = []
        logging.getLogger(name).propagate = True

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.contextvars.bind_contextvars(app=settings.app_name)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically the component name)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


# Pre-configured logger for quick imports
logger = get_logger("livemorph")


class LoggerMixin:
    """
    Mixin class to add logging capability to any class.

    Usage:
        class MyClass(LoggerMixin):
            def my_method(self):
                self.log.info("doing_something", key="value")
    """

    @property
    def log(self) -> structlog.stdlib.BoundLogger:
        """Get logger bound to this class name."""
        if not hasattr(self, "_logger"):
            self._logger = get_logger(self.__class__.__name__)
        return self._logger
