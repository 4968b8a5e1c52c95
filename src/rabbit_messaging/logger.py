"""Logger factory with hierarchical context.

Output goes to stdout from the ``rabbit_messaging`` logger. The process
environment is read once, on first use:

- ``LOG_LEVEL``: level name, ``INFO`` by default.
- ``ENV``: environment tag attached to every record as ``env``.
- ``APP_ENV``: ``development`` switches from JSON lines to readable lines.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any, Dict, MutableMapping, Optional, Tuple

from pythonjsonlogger.json import JsonFormatter

ROOT_LOGGER_NAME = "rabbit_messaging"
READABLE_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_LOGGING_CONFIGURED = False


class EnvironmentFilter(logging.Filter):
    """Stamps each record with the deployment environment tag."""

    def __init__(self, env: Optional[str]) -> None:
        super().__init__()
        self.env = env

    def filter(self, record: logging.LogRecord) -> bool:
        setattr(record, "env", self.env)
        return True


class ReadableContextFormatter(logging.Formatter):
    """Plain-text formatter that appends the record context, if any."""

    def formatMessage(self, record: logging.LogRecord) -> str:
        line = super().formatMessage(record)
        context = getattr(record, "context", None)
        if context:
            rendered = " ".join(f"{key}={value}" for key, value in context.items())
            line = f"{line} {{{rendered}}}"
        return line


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter carrying a context mapping.

    ``child`` derives a logger with extra context; a ``context`` keyword on a
    single call adds context to that record only.
    """

    def child(self, **context: Any) -> "ContextLogger":
        merged = dict(self.extra or {})
        merged.update(context)
        return ContextLogger(self.logger, merged)

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        context: Dict[str, Any] = dict(self.extra or {})
        context.update(kwargs.pop("context", None) or {})
        extra = dict(kwargs.get("extra") or {})
        extra["context"] = {key: value for key, value in context.items() if value is not None}
        kwargs["extra"] = extra
        return msg, kwargs


def _build_formatter(development: bool) -> logging.Formatter:
    if development:
        return ReadableContextFormatter(READABLE_FORMAT, datefmt=DATE_FORMAT)
    return JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s")


def configure_logging(force: bool = False) -> logging.Logger:
    """Install the stdout handler on the package logger once per process."""
    global _LOGGING_CONFIGURED
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if _LOGGING_CONFIGURED and not force:
        return root

    level = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"
    development = os.getenv("APP_ENV", "").strip().lower() == "development"

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_build_formatter(development))
    handler.addFilter(EnvironmentFilter(os.getenv("ENV")))

    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    root.propagate = False

    # pika logs every frame at DEBUG
    logging.getLogger("pika").setLevel(logging.WARNING)

    _LOGGING_CONFIGURED = True
    return root


def logger_factory(name: str, correlation_id: Optional[str] = None) -> ContextLogger:
    """Return a context logger for module ``name``.

    The context starts with the module's short name and its parent package,
    plus ``correlation_id`` when one is given.
    """
    configure_logging()
    package, _, module = name.rpartition(".")
    context: Dict[str, Any] = {
        "module": module,
        "package": package.rpartition(".")[2] or None,
        "correlation_id": correlation_id,
    }
    return ContextLogger(logging.getLogger(name), context)
