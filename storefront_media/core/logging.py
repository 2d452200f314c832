"""
Structured Logging with structlog

JSON lines in production, coloured console output in development. Each
entry carries the app version, the request id of the HTTP call being
served and the pipeline stage that emitted it.
"""

import sys
import time
import asyncio
import logging
from contextvars import ContextVar
from functools import wraps
from typing import Any, Callable, Dict, Optional

import structlog

from storefront_media import __version__

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
stage_var: ContextVar[Optional[str]] = ContextVar("stage", default=None)

NOISY_LOGGERS = ("httpx", "httpcore", "PIL", "asyncio", "multipart")


def add_app_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Stamp version, request id and current stage onto the event."""
    event_dict["version"] = __version__

    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id

    # stage= passed explicitly wins
    stage = stage_var.get()
    if stage:
        event_dict.setdefault("stage", stage)

    return event_dict


def setup_logging(log_level: str = "INFO", json_format: bool = True):
    """
    Route structlog through stdlib logging on stdout.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR
        json_format: JSON renderer when True, console renderer otherwise
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    renderer = (
        structlog.processors.JSONRenderer()
        if json_format
        else structlog.dev.ConsoleRenderer(colors=True)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
            add_app_context,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


class LogContext:
    """
    Bind request id and/or stage for everything logged inside the block.

        with LogContext(request_id=request_id):
            response = await call_next(request)
    """

    def __init__(self, request_id: Optional[str] = None, stage: Optional[str] = None):
        self._values = [(request_id_var, request_id), (stage_var, stage)]
        self._tokens = []

    def __enter__(self):
        self._tokens = [(var, var.set(value)) for var, value in self._values if value]
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens = []
        return False


class _StageTimer:
    """Logs start/completion/failure of one stage call with its duration."""

    def __init__(self, stage: str, module: str):
        self.stage = stage
        self.logger = get_logger(module)

    def __enter__(self):
        self._token = stage_var.set(self.stage)
        self._start = time.perf_counter()
        self.logger.info("stage_started", stage=self.stage)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration_ms = int((time.perf_counter() - self._start) * 1000)
        try:
            if exc_type is None:
                self.logger.info("stage_completed", stage=self.stage, duration_ms=duration_ms)
            elif issubclass(exc_type, Exception):
                self.logger.error(
                    "stage_failed",
                    stage=self.stage,
                    duration_ms=duration_ms,
                    error=str(exc_val),
                    error_type=exc_type.__name__
                )
        finally:
            stage_var.reset(self._token)
        return False


def with_logging(stage: str) -> Callable:
    """
    Run a stage function (sync or async) under a stage log context.

        @with_logging("fetch")
        async def fetch(self, url: str) -> FetchedImage:
            ...
    """
    def decorator(func):
        if asyncio.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                with _StageTimer(stage, func.__module__):
                    return await func(*args, **kwargs)
            return async_wrapper

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            with _StageTimer(stage, func.__module__):
                return func(*args, **kwargs)
        return sync_wrapper

    return decorator


# {
#   "event": "stage_completed",
#   "stage": "transcode",
#   "duration_ms": 182,
#   "request_id": "3f0c2a5e-...",
#   "version": "1.0.0",
#   "logger": "storefront_media.pipeline.stages",
#   "level": "info",
#   "timestamp": "2026-03-02T10:00:00.000000Z"
# }
