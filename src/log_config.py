"""Structured stdout logging for PawDose.

Engine and API code log through ``logging.getLogger(__name__)``. Identifiers
for the request, instance, or offline action in flight are bound with
:func:`log_context` and travel on every record emitted inside the block, so
one request or one replayed action can be followed across modules.
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Iterator, Mapping

REQUEST_ID = "request_id"
SERVICE = "service"

_context: ContextVar[Mapping[str, str]] = ContextVar(
    "pawdose_log_context",
    default=MappingProxyType({}),
)


def get_context() -> dict[str, str]:
    """Return a copy of the fields bound in the current context."""
    return dict(_context.get())


def _merged(values: Mapping[str, object]) -> dict[str, str]:
    """Overlay stringified ``values`` on the current context, skipping ``None``."""
    merged = dict(_context.get())
    merged.update({str(key): str(value) for key, value in values.items() if value is not None})
    return merged


def bind_context(**values: object) -> None:
    """Bind fields for the remainder of the current context."""
    _context.set(_merged(values))


@contextmanager
def log_context(values: Mapping[str, object]) -> Iterator[None]:
    """Bind fields for the duration of a block, restoring the prior context after."""
    token = _context.set(_merged(values))
    try:
        yield
    finally:
        _context.reset(token)


class ContextFilter(logging.Filter):
    """Attach the bound context to each record as ``record.context``."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.context = get_context()
        return True


def _record_context(record: logging.LogRecord) -> dict[str, str]:
    context = getattr(record, "context", None)
    return context if isinstance(context, dict) else {}


class JsonFormatter(logging.Formatter):
    """One JSON object per line with context fields beside the core fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_record_context(record),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, separators=(",", ":"))


class PlainFormatter(logging.Formatter):
    """Readable lines for local runs, ending in sorted ``key=value`` context."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        pairs = " ".join(f"{key}={value}" for key, value in sorted(_record_context(record).items()))
        return f"{message} {pairs}" if pairs else message


def configure_logging(
    *,
    level: str = "INFO",
    json_output: bool = True,
    service: str | None = None,
) -> None:
    """Route all logging to a single stdout handler.

    Calling this again replaces the handler instead of adding a second one.
    """
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.addFilter(ContextFilter())
    handler.setFormatter(JsonFormatter() if json_output else PlainFormatter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level.upper())
    # The API middleware already logs one line per request.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    if service:
        bind_context(**{SERVICE: service})
