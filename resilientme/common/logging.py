"""JSON logs carrying the owner, trace and event an operation runs under.

Request handlers and Kafka consumers bind those ids once; every record logged
inside that scope picks them up through `ContextFilter`.
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Iterator

from pythonjsonlogger.json import JsonFormatter

from resilientme.common.config import settings

CONTEXT_FIELDS = ("trace_id", "event_id", "owner_id")

_context: dict[str, ContextVar[str]] = {name: ContextVar(name, default="") for name in CONTEXT_FIELDS}


def bind_context(**fields: str | None) -> dict[str, Token]:
    """Set context ids for the rest of the current task; unknown names are rejected."""

    unknown = set(fields) - set(CONTEXT_FIELDS)
    if unknown:
        raise KeyError(f"unknown log context fields: {sorted(unknown)}")
    return {name: _context[name].set(value or "") for name, value in fields.items()}


def current_context() -> dict[str, str]:
    return {name: var.get() for name, var in _context.items()}


@contextmanager
def log_context(**fields: str | None) -> Iterator[None]:
    """Bind ids for the block and restore the previous values afterwards."""

    tokens = bind_context(**fields)
    try:
        yield
    finally:
        for name, token in tokens.items():
            _context[name].reset(token)


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        for name, value in current_context().items():
            setattr(record, name, value)
        return True


def configure_logging(stream=None) -> None:
    """Route the root logger to one JSON handler; safe to call again."""

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.addFilter(ContextFilter())
    fields = " ".join(f"%({name})s" for name in ("asctime", "levelname", "service_name", *CONTEXT_FIELDS, "message"))
    handler.setFormatter(JsonFormatter(fields))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level)


logger = logging.getLogger("resilientme")
