"""
Trace context provider.

A trace id travels alongside a request through ``contextvars`` (bound via
``structlog.contextvars`` so the logging pipeline merges it automatically).
Contexts are never mutated in place: adding a trace id to a context that
lacks one yields a derived copy.
"""

from __future__ import annotations

import contextvars
import uuid
from contextlib import contextmanager
from typing import Iterator

import structlog

TRACE_ID_KEY = "trace_id"

# Name of the ContextVar structlog.contextvars.bind_contextvars creates for the trace id.
_TRACE_VAR_NAME = f"{structlog.contextvars.STRUCTLOG_KEY_PREFIX}{TRACE_ID_KEY}"


def new_trace_id() -> str:
    """Generate a fresh correlation token."""
    return uuid.uuid4().hex


def _lookup(ctx: contextvars.Context) -> str | None:
    # Plain mapping read: ctx may be the context the caller is running in.
    for var, value in ctx.items():
        if var.name == _TRACE_VAR_NAME:
            # Ellipsis marks a var reset by bound_contextvars on exit.
            if value is Ellipsis or not value:
                return None
            return str(value)
    return None


def get_trace_id(ctx: contextvars.Context | None = None) -> str | None:
    """Return the trace id carried by ``ctx`` (default: the current context)."""
    if ctx is None:
        return _lookup(contextvars.copy_context())
    return _lookup(ctx)


def get_or_create_trace_id(ctx: contextvars.Context | None = None) -> tuple[contextvars.Context, str]:
    """Recover the trace id from ``ctx`` or derive a context carrying a new one.

    Args:
        ctx: Context to inspect. Defaults to a snapshot of the current context.

    Returns:
        ``(ctx, trace_id)`` unchanged when a trace id is present, otherwise
        ``(derived_ctx, new_trace_id)`` where ``derived_ctx`` is a copy of
        ``ctx`` with the new id bound. The given context is left untouched.
    """
    if ctx is None:
        ctx = contextvars.copy_context()

    trace_id = _lookup(ctx)
    if trace_id:
        return ctx, trace_id

    trace_id = new_trace_id()
    derived = ctx.copy()
    derived.run(structlog.contextvars.bind_contextvars, **{TRACE_ID_KEY: trace_id})
    return derived, trace_id


def ensure_trace_id() -> str:
    """Bind a trace id into the current context if none is present and return it."""
    trace_id = get_trace_id()
    if trace_id:
        return trace_id
    trace_id = new_trace_id()
    structlog.contextvars.bind_contextvars(**{TRACE_ID_KEY: trace_id})
    return trace_id


@contextmanager
def bind_trace_id(trace_id: str | None = None) -> Iterator[str]:
    """Bind ``trace_id`` (or a fresh one) for the duration of the block.

    The previous binding, if any, is restored on exit.
    """
    trace_id = trace_id or new_trace_id()
    with structlog.contextvars.bound_contextvars(**{TRACE_ID_KEY: trace_id}):
        yield trace_id
