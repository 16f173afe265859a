from __future__ import annotations

import contextlib
import contextvars
import uuid
from typing import Iterator, Optional

_TRACE_ID: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("adminguard.trace_id", default=None)


def new_trace_id() -> str:
    return uuid.uuid4().hex


def current_trace_id(default: Optional[str] = None) -> Optional[str]:
    trace_id = _TRACE_ID.get()
    return trace_id if trace_id else default


@contextlib.contextmanager
def trace_context(trace_id: Optional[str]) -> Iterator[Optional[str]]:
    """Binds ``trace_id`` for audit entries written from the current thread/task."""
    if not trace_id:
        yield current_trace_id()
        return
    token = _TRACE_ID.set(str(trace_id))
    try:
        yield str(trace_id)
    finally:
        _TRACE_ID.reset(token)
