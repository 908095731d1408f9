"""Prometheus metrics for crawl runs.

Metrics live in a dedicated registry so a crawl can dump them to a textfile
(node_exporter textfile collector) without a scrape endpoint.
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
import time
from typing import TYPE_CHECKING

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest, write_to_textfile


if TYPE_CHECKING:
    from collections.abc import Generator


REGISTRY = CollectorRegistry(auto_describe=True)

REQUESTS_TOTAL = Counter(
    "cachanais_requests_total",
    "Requests issued against the connect target",
    ["host"],
    registry=REGISTRY,
)

FETCH_RESULTS_TOTAL = Counter(
    "cachanais_fetch_results_total",
    "Fetch outcomes by status class",
    ["host", "outcome"],
    registry=REGISTRY,
)

FETCH_FAILURES_TOTAL = Counter(
    "cachanais_fetch_failures_total",
    "Failed fetches (network error, timeout, non-2xx)",
    ["host"],
    registry=REGISTRY,
)

LINKS_DISCOVERED_TOTAL = Counter(
    "cachanais_links_discovered_total",
    "Discovered links by filter decision",
    ["decision"],
    registry=REGISTRY,
)

FETCH_LATENCY = Histogram(
    "cachanais_fetch_latency_seconds",
    "Fetch latency in seconds",
    ["host"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
    registry=REGISTRY,
)


@contextmanager
def track_latency(host: str) -> Generator[None, None, None]:
    """Observe the duration of the wrapped block in ``FETCH_LATENCY``."""
    start = time.perf_counter()
    try:
        yield
    finally:
        FETCH_LATENCY.labels(host=host).observe(time.perf_counter() - start)


def get_metrics() -> bytes:
    """Prometheus text exposition of the crawl registry."""
    return generate_latest(REGISTRY)


def write_metrics(path: str | Path) -> None:
    """Atomically write the crawl registry to ``path``."""
    write_to_textfile(str(path), REGISTRY)
