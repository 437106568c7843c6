"""Context-local logging fields, safe across threads and asyncio tasks."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

_log_fields: ContextVar[dict[str, Any] | None] = ContextVar("ridematch_log_fields", default=None)


def get_log_context() -> dict[str, Any]:
    """Fields currently injected into log records by ContextFilter."""
    return dict(_log_fields.get() or {})


class ContextFilter(logging.Filter):
    """Injects the current log context fields into log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in get_log_context().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Set logging context fields for the enclosed block.

    Nested blocks see the outer fields; leaving a block restores the outer
    fields. Each asyncio task has its own copy.
    """
    token = _log_fields.set({**(_log_fields.get() or {}), **kwargs})
    try:
        yield
    finally:
        _log_fields.reset(token)


@contextmanager
def log_job_context(job_id: str, driver_id: str | None = None, **kwargs: Any) -> Iterator[None]:
    """Convenience context manager for notification job processing."""
    correlation_id = kwargs.pop("correlation_id", job_id)
    with log_context(job_id=job_id, driver_id=driver_id, correlation_id=correlation_id, **kwargs):
        yield
