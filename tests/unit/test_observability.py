"""Unit tests for observability module."""

import json
import logging

from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode
import pytest

from cachanais.observability import (
    FETCH_LATENCY,
    LINKS_DISCOVERED_TOTAL,
    JsonFormatter,
    configure_logging,
    create_span,
    get_metrics,
    get_trace_context,
    init_tracing,
    set_trace_context,
    track_latency,
    write_metrics,
)
from cachanais.observability import tracing as tracing_module
from cachanais.observability.context import bind_crawl_id, update_span_id


def _record(msg: str, name: str = "cachanais.utils.crawler", level: int = logging.INFO) -> logging.LogRecord:
    return logging.LogRecord(
        name=name,
        level=level,
        pathname="crawler.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )


@pytest.fixture
def span_exporter():
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    tracing_module._tracer_holder["tracer"] = provider.get_tracer("test")
    yield exporter
    tracing_module.reset_tracer()


@pytest.mark.unit
class TestJsonFormatter:
    """Tests for structured JSON logging."""

    def test_format_includes_trace_context(self):
        set_trace_context("ab" * 16, "cd" * 8, crawl_id="run-1")

        data = json.loads(JsonFormatter().format(_record("Visiting https://public.example/")))

        assert data["message"] == "Visiting https://public.example/"
        assert data["level"] == "INFO"
        assert data["logger"] == "cachanais.utils.crawler"
        assert data["component"] == "crawler"
        assert data["trace_id"] == "ab" * 16
        assert data["span_id"] == "cd" * 8
        assert data["crawl_id"] == "run-1"
        assert "timestamp" in data

    def test_format_includes_extra_fields(self):
        record = _record("fetched")
        record.status_code = 200

        data = json.loads(JsonFormatter().format(record))

        assert data["status_code"] == 200

    def test_cookies_and_authorization_are_redacted(self):
        record = _record("request")
        record.cookie = "session=abc"
        record.Authorization = "Bearer xyz"

        data = json.loads(JsonFormatter().format(record))

        assert data["cookie"] == "[REDACTED]"
        assert data["Authorization"] == "[REDACTED]"

    def test_long_messages_are_truncated(self):
        data = json.loads(JsonFormatter().format(_record("x" * 5000)))

        assert data["message"].endswith("...")
        assert len(data["message"]) == JsonFormatter.MAX_MESSAGE_LEN + 3

    def test_json_default_handles_set_and_bytes(self):
        formatter = JsonFormatter()
        assert formatter._json_default({3, 1, 2}) == [1, 2, 3]
        assert formatter._json_default(b"ok") == "ok"


@pytest.mark.unit
class TestTraceContext:
    """Tests for trace context propagation."""

    def test_get_trace_context_generates_ids(self):
        set_trace_context("", "")
        ctx = get_trace_context()
        assert len(ctx["trace_id"]) == 32
        assert len(ctx["span_id"]) == 16

    def test_update_span_id_preserves_trace_id(self):
        set_trace_context("aa" * 16, "bb" * 8, crawl_id="alpha")
        update_span_id("cc" * 8)
        ctx = get_trace_context()
        assert ctx["trace_id"] == "aa" * 16
        assert ctx["span_id"] == "cc" * 8
        assert ctx["crawl_id"] == "alpha"

    def test_bind_crawl_id_keeps_trace_id(self):
        set_trace_context("dd" * 16, "ee" * 8)

        crawl_id = bind_crawl_id()

        ctx = get_trace_context()
        assert ctx["trace_id"] == "dd" * 16
        assert ctx["crawl_id"] == crawl_id
        assert len(crawl_id) == 12
        assert bind_crawl_id("nightly") == "nightly"


@pytest.mark.unit
class TestTracing:
    """Tests for OpenTelemetry tracing."""

    def test_init_tracing_returns_provider(self):
        provider = init_tracing("cachanais-test")
        assert isinstance(provider, TracerProvider)
        tracing_module.reset_tracer()

    def test_create_span_records_attributes_and_span_id(self, span_exporter):
        with create_span("cachanais.fetch", attributes={"url.full": "https://public.example/"}) as span:
            span_id = format(span.get_span_context().span_id, "016x")
            assert get_trace_context()["span_id"] == span_id

        (finished,) = span_exporter.get_finished_spans()
        assert finished.name == "cachanais.fetch"
        assert finished.attributes["url.full"] == "https://public.example/"

    def test_create_span_marks_errors(self, span_exporter):
        with pytest.raises(RuntimeError), create_span("cachanais.fetch"):
            raise RuntimeError("boom")

        (finished,) = span_exporter.get_finished_spans()
        assert finished.status.status_code is StatusCode.ERROR


@pytest.mark.unit
class TestMetrics:
    """Tests for Prometheus metrics."""

    def test_get_metrics_returns_bytes(self):
        LINKS_DISCOVERED_TOTAL.labels(decision="queued").inc()
        output = get_metrics()
        assert isinstance(output, bytes)
        assert b"cachanais_links_discovered_total" in output

    def test_track_latency_records_histogram(self):
        before = FETCH_LATENCY.labels(host="backend.test")._sum.get()
        with track_latency("backend.test"):
            pass
        assert FETCH_LATENCY.labels(host="backend.test")._sum.get() >= before

    def test_write_metrics_to_textfile(self, tmp_path):
        target = tmp_path / "cachanais.prom"

        write_metrics(target)

        assert "cachanais_fetch_latency_seconds" in target.read_text()


@pytest.mark.unit
class TestConfigureLogging:
    """Tests for logging configuration."""

    def test_configure_logging_sets_level(self, restore_root_logger):
        configure_logging(level="debug")
        assert restore_root_logger.level == logging.DEBUG

    def test_configure_logging_replaces_handlers(self, restore_root_logger):
        configure_logging(level="INFO")
        configure_logging(level="INFO")
        assert len(restore_root_logger.handlers) == 1

    def test_configure_logging_plain_formatter(self, restore_root_logger):
        configure_logging(level="INFO", json_output=False)
        formatter = restore_root_logger.handlers[0].formatter
        assert "%(asctime)s" in formatter._style._fmt

    def test_configure_logging_json_formatter(self, restore_root_logger):
        configure_logging(level="INFO", json_output=True)
        assert isinstance(restore_root_logger.handlers[0].formatter, JsonFormatter)

    def test_configure_logging_quiets_http_clients_and_overrides(self, restore_root_logger):
        configure_logging(level="DEBUG", logger_levels={"cachanais.test.override": "ERROR"})
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("cachanais.test.override").level == logging.ERROR
