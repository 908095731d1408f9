"""Log correlation ids shared by every task of a crawl.

Worker tasks copy the context at creation, so binding the crawl id before
the workers start tags every log line they emit.
"""

from __future__ import annotations

from contextvars import ContextVar
from uuid import uuid4


trace_context: ContextVar[dict | None] = ContextVar("cachanais_trace_context", default=None)


def generate_trace_id() -> str:
    return uuid4().hex


def generate_span_id() -> str:
    return uuid4().hex[:16]


def get_trace_context() -> dict:
    """Current ids; a fresh trace is started when none is bound."""
    ctx = trace_context.get()
    if ctx is None or not ctx.get("trace_id"):
        ctx = {"trace_id": generate_trace_id(), "span_id": generate_span_id()}
        trace_context.set(ctx)
    return ctx


def set_trace_context(trace_id: str, span_id: str, **extra: object) -> None:
    trace_context.set({"trace_id": trace_id, "span_id": span_id, **extra})


def bind_crawl_id(crawl_id: str | None = None) -> str:
    """Attach a crawl id to the current trace and return it."""
    crawl_id = crawl_id or uuid4().hex[:12]
    trace_context.set({**get_trace_context(), "crawl_id": crawl_id})
    return crawl_id


def update_span_id(span_id: str) -> None:
    """Point log lines at the active span, keeping trace and crawl ids."""
    ctx = trace_context.get() or {}
    trace_context.set({**ctx, "span_id": span_id})
