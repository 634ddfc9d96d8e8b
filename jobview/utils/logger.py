# jobview/utils/logger.py

"""
Application logger.

Wraps the standard library logger so call sites can attach structured
context as keyword arguments:

    logger.info("Export committed", task_id=task.id, rows=count)

Keyword context is rendered after the message as ``key=value`` pairs and is
also available on the log record under ``record.context``.
"""

import logging
import sys
from typing import Any

_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_configured = False

# Keyword arguments understood by logging.Logger._log itself
_LOGGING_KWARGS = {"exc_info", "stack_info", "stacklevel", "extra"}


class ContextLogger(logging.LoggerAdapter):
    """
    LoggerAdapter that turns arbitrary keyword arguments into log context.
    """

    def process(self, msg: Any, kwargs: dict) -> tuple[Any, dict]:
        context = {k: v for k, v in kwargs.items() if k not in _LOGGING_KWARGS}
        passthrough = {k: v for k, v in kwargs.items() if k in _LOGGING_KWARGS}

        if context:
            rendered = " ".join(f"{key}={value}" for key, value in context.items())
            msg = f"{msg} | {rendered}"
            extra = dict(passthrough.get("extra") or {})
            extra["context"] = context
            passthrough["extra"] = extra

        return msg, passthrough


def configure_logging(level: str = "INFO") -> None:
    """Install a single stream handler on the root logger (idempotent)."""
    global _configured

    root = logging.getLogger()
    root.setLevel(level.upper())

    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    root.addHandler(handler)
    _configured = True


def get_logger(name: str) -> ContextLogger:
    """Return a context-aware logger for the given module name."""
    return ContextLogger(logging.getLogger(name), {})
