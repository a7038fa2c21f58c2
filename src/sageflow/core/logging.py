"""Logging configuration with structured JSON support and correlation IDs."""

from __future__ import annotations

import json
import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

# Correlates every record emitted while handling one event
_CORRELATION_ID: ContextVar[str] = ContextVar("correlation_id", default="")


class JsonFormatter(logging.Formatter):
    """Format logs as structured JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "lineno": record.lineno,
            "correlation_id": _CORRELATION_ID.get(),
        }

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_context"):
            payload.update(record.extra_context)  # type: ignore[attr-defined]

        return json.dumps(payload, default=str)


class ContextFormatter(logging.Formatter):
    """Plain-text formatter that appends the structured context, if any."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = getattr(record, "extra_context", None)
        if context:
            rendered = " ".join(f"{key}={value}" for key, value in context.items())
            line = f"{line} [{rendered}]"
        return line


def get_correlation_id() -> str:
    """Get the current correlation ID or generate a new one."""
    cid = _CORRELATION_ID.get()
    if not cid:
        cid = uuid.uuid4().hex
        _CORRELATION_ID.set(cid)
    return cid


@contextmanager
def correlation_scope(cid: Optional[str] = None) -> Iterator[str]:
    """Bind a correlation ID for the duration of one event invocation."""
    token = _CORRELATION_ID.set(cid or uuid.uuid4().hex)
    try:
        yield _CORRELATION_ID.get()
    finally:
        _CORRELATION_ID.reset(token)


def configure_logging(
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    json_logs: bool = False,
) -> None:
    """Configure global logging."""
    handlers: list[Any] = [logging.StreamHandler(sys.stdout)]

    if log_dir:
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_dir / "sageflow.log"))

    formatter: logging.Formatter
    if json_logs:
        formatter = JsonFormatter()
    else:
        formatter = ContextFormatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=level.upper(),
        handlers=handlers,
        force=True,
    )

    # boto emits a line per request at INFO
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("boto3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def log_with_context(logger: logging.Logger, level: str, message: str, **context: Any) -> None:
    """Emit ``message`` with ``context`` attached as structured fields."""
    filtered = {key: value for key, value in context.items() if value is not None}
    logger.log(getattr(logging, level.upper()), message, extra={"extra_context": filtered})
