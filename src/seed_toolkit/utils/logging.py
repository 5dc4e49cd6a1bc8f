from __future__ import annotations

import contextvars
import json
import logging
import sys
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, MutableMapping, Optional, Tuple, Union

from seed_toolkit.utils.redact import scrub_message

_RUN_ID: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "seedkit_run_id", default=None
)

CI_ENV = "CI"


class _RunIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - trivial
        record.run_id = current_run_id() or "-"
        return True


class _RedactionFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = scrub_message(record.getMessage())
        record.args = None
        return True


class _TextFormatter(logging.Formatter):
    def formatException(self, ei) -> str:
        return scrub_message(super().formatException(ei))

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = getattr(record, "context", None)
        if context:
            pairs = " ".join(f"{key}={value}" for key, value in sorted(context.items()))
            line = f"{line} {pairs}"
        return line


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "run_id": getattr(record, "run_id", "-"),
            "message": record.getMessage(),
        }
        context = getattr(record, "context", None)
        if context:
            payload["context"] = dict(context)
        if record.exc_info:
            payload["exc"] = scrub_message(self.formatException(record.exc_info))
        return json.dumps(payload, sort_keys=True, default=str)


class ContextAdapter(logging.LoggerAdapter):
    """Logger adapter that attaches bound context to every record."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        context = dict(self.extra or {})
        context.update(extra.pop("context", {}) or {})
        extra["context"] = context
        kwargs["extra"] = extra
        return msg, kwargs


LogLevel = Union[int, str]
LoggerLike = Union[logging.Logger, logging.LoggerAdapter]


def init_logger(
    name: str, level: LogLevel = "INFO", env: str = "LOCAL"
) -> logging.Logger:
    """Configure ``name`` once.

    In CI, records are written as JSON lines to stdout; elsewhere as text to
    stderr. Both routes scrub credentials from the rendered message.
    """
    logger = logging.getLogger(name)

    if isinstance(level, str):
        level_value = logging._nameToLevel.get(level.upper())
        if level_value is None:
            level_value = logging.INFO
        level = level_value

    logger.setLevel(level)

    if not any(isinstance(f, _RunIdFilter) for f in logger.filters):
        logger.addFilter(_RunIdFilter())
    if not any(isinstance(f, _RedactionFilter) for f in logger.filters):
        logger.addFilter(_RedactionFilter())

    if not logger.handlers:
        if env.upper() == CI_ENV:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(_JsonFormatter())
        else:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(
                _TextFormatter(
                    "%(asctime)s %(levelname)s [%(run_id)s] %(name)s: %(message)s",
                )
            )
        handler.setLevel(level)
        # child loggers propagate here without passing the logger filters
        handler.addFilter(_RunIdFilter())
        handler.addFilter(_RedactionFilter())
        logger.addHandler(handler)

    logger.propagate = False
    return logger


def bind(logger: LoggerLike, **context: Any) -> ContextAdapter:
    if isinstance(logger, logging.LoggerAdapter):
        merged = dict(logger.extra or {})
        merged.update(context)
        return ContextAdapter(logger.logger, merged)
    return ContextAdapter(logger, context)


def current_run_id() -> Optional[str]:
    return _RUN_ID.get()


@contextmanager
def run_context(logger: logging.Logger, run_id: Optional[str] = None) -> Iterator[str]:
    if not any(isinstance(f, _RunIdFilter) for f in logger.filters):
        logger.addFilter(_RunIdFilter())

    run_id = run_id or uuid.uuid4().hex[:12]
    token = _RUN_ID.set(run_id)
    try:
        yield run_id
    finally:
        _RUN_ID.reset(token)


__all__ = ["ContextAdapter", "bind", "current_run_id", "init_logger", "run_context"]
