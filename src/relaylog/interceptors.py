"""
Interceptors for capturing standard library logs.
"""

import logging
import threading
from typing import Iterable

from .core import standard_logger
from .hooks import HOOK_THREAD_NAME

_LEVEL_LABELS = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warning",
    logging.ERROR: "error",
    logging.CRITICAL: "fatal",
}


def _label_for(levelno: int) -> str:
    for threshold in (logging.CRITICAL, logging.ERROR, logging.WARNING, logging.INFO):
        if levelno >= threshold:
            return _LEVEL_LABELS[threshold]
    return "debug"


class RedirectStdLibHandler(logging.Handler):
    """
    Redirect standard library logging records into the relaylog pipeline,
    so third-party output shares the sink, trace id and hooks.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            if "structlog" in record.name:
                return
            # httpx logs every hook request; feeding those back would loop.
            if threading.current_thread().name == HOOK_THREAD_NAME:
                return

            # Traceback travels as exc_info and is rendered by the pipeline.
            msg = record.getMessage()
            fields = {"_name": self._simplify_logger_name(record.name)}
            if record.exc_info:
                fields["exc_info"] = record.exc_info
            standard_logger().log(_label_for(record.levelno), msg, **fields)
        except Exception:
            self.handleError(record)

    @staticmethod
    def _simplify_logger_name(name: str) -> str:
        """
        Simplify a logger name for display.

        - "uvicorn.access" -> "uvicorn.access"
        - "a.b.c.d" -> "c.d"
        """
        if not name:
            return "stdlib"
        parts = name.split(".")
        if len(parts) <= 2:
            return name
        return ".".join(parts[-2:])


def intercept_stdlib_logging(level: int = logging.NOTSET, loggers: Iterable[str] = ()) -> RedirectStdLibHandler:
    """Route the root stdlib logger (and the named loggers) into relaylog.

    Existing root handlers are removed; the named loggers lose their own
    handlers and propagate to the root.
    """
    handler = RedirectStdLibHandler()
    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    if level:
        root_logger.setLevel(level)

    for name in loggers:
        lg = logging.getLogger(name)
        lg.handlers = []
        lg.propagate = True
    return handler
