"""Command line entry point: populate the cache of a website."""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Iterable, Sequence
import logging
import sys

from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor

from cachanais.config import DEFAULT_USER_AGENT, VERSION, ConfigurationError, CrawlSettings, load_settings
from cachanais.domain.model import CrawlReport
from cachanais.observability.logging import configure_logging
from cachanais.observability.metrics import write_metrics
from cachanais.observability.tracing import init_tracing
from cachanais.utils.crawler import CacheWarmer


logger = logging.getLogger("cachanais")

EXAMPLE = "cachanais --url https://text.com --address http://localhost --cookies mycookie:sup --headers X-Cool:blop"


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cachanais",
        description=(
            "Populate the cache of a website by visiting every link it serves. "
            "Set --address to send the requests to another backend, e.g. when run locally."
        ),
        epilog=f"example: {EXAMPLE}",
    )
    parser.add_argument("-u", "--url", required=True, help="URL to crawl")
    parser.add_argument("-a", "--address", default="", help="URL (or host[:port]) to connect to")
    parser.add_argument(
        "--cookies",
        action="append",
        default=[],
        metavar="KEY:VALUE",
        help="Cookies to set in the form key:value (repeatable, comma-separated)",
    )
    parser.add_argument(
        "--headers",
        action="append",
        default=[],
        metavar="KEY:VALUE",
        help="Headers to set in the form key:value (repeatable, comma-separated)",
    )
    parser.add_argument(
        "--filter-query-strings",
        action="store_true",
        help="Skip links carrying query string parameters",
    )
    parser.add_argument("--max-requests", type=int, default=100, help="Maximum number of requests (default: 100)")
    parser.add_argument("--delay", default="5s", help="Delay between requests, e.g. 500ms, 5s, 1m (default: 5s)")
    parser.add_argument(
        "--random-delay",
        default=None,
        help="Upper bound of the random jitter added to --delay (default: same as --delay)",
    )
    parser.add_argument("--parallelism", type=int, default=1, help="Concurrent requests per host (default: 1)")
    parser.add_argument("--max-depth", type=int, default=3, help="Maximum link depth from --url (default: 3)")
    parser.add_argument("--timeout", default="1m", help="Per-request timeout (default: 1m)")
    parser.add_argument("--user-agent", default=DEFAULT_USER_AGENT, help="User-Agent header")
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )
    parser.add_argument("--log-json", action="store_true", help="Emit structured JSON log lines")
    parser.add_argument("--trace-spans", action="store_true", help="Print OpenTelemetry spans to stderr")
    parser.add_argument("--metrics-file", default=None, help="Write Prometheus metrics to this file at the end")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    return parser


def split_entries(values: Iterable[str]) -> list[str]:
    """Flatten repeated and comma-separated flag values."""
    entries: list[str] = []
    for value in values:
        entries.extend(part for part in value.split(",") if part)
    return entries


def settings_from_args(args: argparse.Namespace) -> CrawlSettings:
    return load_settings(
        url=args.url,
        address=args.address,
        cookies=split_entries(args.cookies),
        headers=split_entries(args.headers),
        filter_query_strings=args.filter_query_strings,
        max_requests=args.max_requests,
        delay=args.delay,
        random_delay=args.random_delay,
        parallelism=args.parallelism,
        max_depth=args.max_depth,
        request_timeout=args.timeout,
        user_agent=args.user_agent,
    )


def _configure_tracing(print_spans: bool) -> None:
    provider = init_tracing()
    if print_spans:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter(out=sys.stderr)))


async def _run(settings: CrawlSettings) -> CrawlReport:
    warmer = CacheWarmer(settings)
    return await warmer.crawl()


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_argument_parser()
    args = parser.parse_args(argv)

    configure_logging(level=args.log_level, json_output=args.log_json)
    _configure_tracing(args.trace_spans)

    try:
        settings = settings_from_args(args)
        report = asyncio.run(_run(settings))
    except ConfigurationError as exc:
        logger.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130

    if args.metrics_file:
        try:
            write_metrics(args.metrics_file)
        except OSError as exc:
            logger.warning("Failed to write metrics to %s: %s", args.metrics_file, exc)

    logger.info("Summary: %s", report.to_dict())
    return 0


if __name__ == "__main__":
    sys.exit(main())
