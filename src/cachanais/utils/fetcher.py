"""HTTP fetcher: one GET per call, every problem converted to a ``FetchFailure``."""

from __future__ import annotations

import logging
import time

from bs4 import BeautifulSoup
import httpx
from opentelemetry.trace import SpanKind, Status, StatusCode

from cachanais.domain.model import FetchFailure, FetchOutcome, FetchRedirect, FetchSuccess, RequestContext
from cachanais.observability.metrics import FETCH_FAILURES_TOTAL, FETCH_RESULTS_TOTAL, REQUESTS_TOTAL, track_latency
from cachanais.observability.tracing import create_span
from cachanais.utils.request_rewriter import RequestRewriter
from cachanais.utils.url_matcher import UrlMatcher


logger = logging.getLogger(__name__)

HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")


def _describe_error(exc: Exception) -> str:
    detail = str(exc) or exc.__class__.__name__
    if isinstance(exc, httpx.TimeoutException):
        return f"timeout: {detail}"
    return detail


def _status_class(status_code: int) -> str:
    return f"{status_code // 100}xx"


class HttpFetcher:
    """Fetch rewritten requests with httpx, one request per call.

    httpx never follows redirects here. An in-scope redirect comes back as a
    ``FetchRedirect`` for the engine to schedule as its own request; a
    redirect leaving the allowed hosts is a failure.
    """

    def __init__(
        self,
        rewriter: RequestRewriter,
        matcher: UrlMatcher,
        *,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.rewriter = rewriter
        self.matcher = matcher
        self.timeout = timeout
        self._transport = transport
        self.client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> HttpFetcher:
        self.client = self._create_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.client:
            await self.client.aclose()
            self.client = None

    def _create_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            timeout=httpx.Timeout(self.timeout),
            follow_redirects=False,
        )

    async def fetch(self, context: RequestContext) -> FetchOutcome:
        """Issue the single request described by ``context``.

        Request problems come back as ``FetchFailure``; only use outside the
        ``async with`` block raises.
        """
        if self.client is None:
            raise RuntimeError("HttpFetcher must be used as async context manager")

        host = self.rewriter.connect_target.host
        with create_span(
            "cachanais.fetch",
            kind=SpanKind.CLIENT,
            attributes={"http.method": "GET", "http.url": context.url, "cachanais.public_url": context.public_url},
        ) as span:
            outcome = await self._fetch(self.client, context, host)
            if isinstance(outcome, FetchFailure):
                FETCH_FAILURES_TOTAL.labels(host=host).inc()
                span.set_status(Status(StatusCode.ERROR, outcome.error))
                if outcome.status_code is not None:
                    span.set_attribute("http.status_code", outcome.status_code)
            else:
                span.set_attribute("http.status_code", outcome.status_code)
            if isinstance(outcome, FetchRedirect):
                span.set_attribute("cachanais.redirect_location", outcome.location)
            return outcome

    async def _fetch(self, client: httpx.AsyncClient, context: RequestContext, host: str) -> FetchOutcome:
        start = time.perf_counter()
        try:
            REQUESTS_TOTAL.labels(host=host).inc()
            with track_latency(host):
                response = await client.get(context.url, headers=context.header_dict())
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            FETCH_RESULTS_TOTAL.labels(host=host, outcome="error").inc()
            return FetchFailure(url=context.public_url, error=_describe_error(exc))

        FETCH_RESULTS_TOTAL.labels(host=host, outcome=_status_class(response.status_code)).inc()

        if response.is_redirect:
            return self._redirect_outcome(context, response)

        if not response.is_success:
            return FetchFailure(
                url=context.public_url,
                error=f"{response.status_code} {response.reason_phrase}".strip(),
                status_code=response.status_code,
            )

        document = None
        content_type = response.headers.get("content-type", "").lower()
        if any(kind in content_type for kind in HTML_CONTENT_TYPES):
            try:
                document = BeautifulSoup(response.content, "html.parser", from_encoding=response.charset_encoding)
            except (LookupError, UnicodeDecodeError, ValueError) as exc:
                return FetchFailure(
                    url=context.public_url,
                    error=f"cannot decode body: {exc}",
                    status_code=response.status_code,
                )

        return FetchSuccess(
            url=context.public_url,
            status_code=response.status_code,
            document=document,
            elapsed=time.perf_counter() - start,
        )

    def _redirect_outcome(self, context: RequestContext, response: httpx.Response) -> FetchOutcome:
        location = response.headers.get("location", "")
        target = self.matcher.resolve(location, context.public_url)
        if target is None or not self.matcher.is_allowed(target):
            return FetchFailure(
                url=context.public_url,
                error=f"redirect to '{location}' leaves the allowed domains",
                status_code=response.status_code,
            )
        logger.debug(f"Redirect {context.public_url} -> {target}")
        return FetchRedirect(
            url=context.public_url,
            location=self.matcher.canonicalize(target),
            status_code=response.status_code,
        )
