"""Observability module for logging, tracing and metrics."""

from cachanais.observability.context import bind_crawl_id, get_trace_context, set_trace_context, trace_context
from cachanais.observability.logging import JsonFormatter, configure_logging
from cachanais.observability.metrics import (
    FETCH_FAILURES_TOTAL,
    FETCH_LATENCY,
    FETCH_RESULTS_TOTAL,
    LINKS_DISCOVERED_TOTAL,
    REQUESTS_TOTAL,
    get_metrics,
    track_latency,
    write_metrics,
)
from cachanais.observability.tracing import create_span, get_tracer, init_tracing


__all__ = [
    "FETCH_FAILURES_TOTAL",
    "FETCH_LATENCY",
    "FETCH_RESULTS_TOTAL",
    "LINKS_DISCOVERED_TOTAL",
    "REQUESTS_TOTAL",
    "JsonFormatter",
    "bind_crawl_id",
    "configure_logging",
    "create_span",
    "get_metrics",
    "get_tracer",
    "get_trace_context",
    "init_tracing",
    "set_trace_context",
    "trace_context",
    "track_latency",
    "write_metrics",
]
