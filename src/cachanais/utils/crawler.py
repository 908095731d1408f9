"""Breadth-first cache-warming crawler.

The engine owns the frontier and the visited set and pulls work from them:
worker tasks dequeue an entry, rewrite it for the connect target, wait for
the politeness policy, fetch it, and feed the links of HTML pages back into
the frontier. The engine follows a redirect as one more request, so every
hop reserves budget and passes the visited check. Individual fetch failures
are logged and never stop the crawl; only configuration errors do, and those
surface before the first request.
"""

from __future__ import annotations

import asyncio
import logging
import time
from urllib.parse import urljoin

from bs4 import BeautifulSoup
import httpx

from cachanais.config import ConfigurationError, CrawlSettings
from cachanais.domain.model import (
    CrawlReport,
    CrawlState,
    CrawlStateError,
    FetchFailure,
    FetchOutcome,
    FetchRedirect,
    FrontierEntry,
)
from cachanais.observability.context import bind_crawl_id
from cachanais.observability.metrics import LINKS_DISCOVERED_TOTAL
from cachanais.observability.tracing import create_span
from cachanais.utils.fetcher import HttpFetcher
from cachanais.utils.rate_limiter import DomainRateLimiter, RequestBudget
from cachanais.utils.request_rewriter import RequestRewriter
from cachanais.utils.url_matcher import UrlMatcher


logger = logging.getLogger(__name__)

_TRANSITIONS: dict[CrawlState, frozenset[CrawlState]] = {
    CrawlState.IDLE: frozenset({CrawlState.RUNNING, CrawlState.FAILED}),
    CrawlState.RUNNING: frozenset({CrawlState.DONE, CrawlState.FAILED}),
    CrawlState.DONE: frozenset(),
    CrawlState.FAILED: frozenset(),
}


class VisitedSet:
    """URLs already enqueued or fetched during one crawl."""

    def __init__(self) -> None:
        self._urls: set[str] = set()

    def add_if_new(self, url: str) -> bool:
        """Mark ``url`` visited; False when it already was.

        No await inside, so check-and-mark is atomic across worker tasks.
        """
        if url in self._urls:
            return False
        self._urls.add(url)
        return True

    def __contains__(self, url: object) -> bool:
        return url in self._urls

    def __len__(self) -> int:
        return len(self._urls)


class Frontier:
    """FIFO of (url, depth) entries awaiting fetch, bounded by ``max_depth``."""

    def __init__(self, max_depth: int) -> None:
        self.max_depth = max_depth
        self._queue: asyncio.Queue[FrontierEntry] = asyncio.Queue()

    def push(self, entry: FrontierEntry) -> bool:
        if entry.depth > self.max_depth:
            return False
        self._queue.put_nowait(entry)
        return True

    async def get(self) -> FrontierEntry:
        return await self._queue.get()

    def task_done(self) -> None:
        self._queue.task_done()

    async def join(self) -> None:
        await self._queue.join()

    def __len__(self) -> int:
        return self._queue.qsize()


class CacheWarmer:
    """Crawl a site once, issuing one request per in-scope link."""

    def __init__(
        self,
        settings: CrawlSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        rate_limiter: DomainRateLimiter | None = None,
        progress_interval: int = 10,
    ):
        self.settings = settings
        self.state = CrawlState.IDLE
        try:
            self.crawl_target = settings.crawl_target
            # Built explicitly, as its own value, before any use
            self.connect_target = settings.connect_target
        except ValueError as exc:
            self._transition(CrawlState.FAILED)
            raise ConfigurationError(str(exc)) from exc

        self.matcher = UrlMatcher(
            self.crawl_target,
            self.connect_target,
            filter_query_strings=settings.filter_query_strings,
        )
        self.rewriter = RequestRewriter(
            self.crawl_target,
            self.connect_target,
            settings.headers,
            settings.cookies,
            user_agent=settings.user_agent,
        )
        self.rate_limiter = rate_limiter or DomainRateLimiter(
            delay=settings.delay,
            random_delay=settings.effective_random_delay,
            parallelism=settings.parallelism,
        )
        self.fetcher = HttpFetcher(
            self.rewriter,
            self.matcher,
            timeout=settings.request_timeout,
            transport=transport,
        )
        self.budget = RequestBudget(settings.max_requests)
        self.visited = VisitedSet()
        self.frontier = Frontier(settings.max_depth)
        self.report = CrawlReport()
        self.progress_interval = progress_interval

        self.start_url = self._resolve_start_url()

        logger.info(f"Crawl target: {self.crawl_target.url}")
        logger.info(f"Connect target: {self.connect_target.scheme}://{self.connect_target.host}")

    def _resolve_start_url(self) -> str:
        result = self.matcher.match(self.settings.url, self.settings.url)
        if not result.accepted or result.url is None:
            self._transition(CrawlState.FAILED)
            raise ConfigurationError(f"start url '{self.settings.url}' is rejected by the crawl filters")
        return result.url

    def _transition(self, new_state: CrawlState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise CrawlStateError(f"cannot move crawl from {self.state.value} to {new_state.value}")
        logger.debug(f"Crawl state {self.state.value} -> {new_state.value}")
        self.state = new_state

    async def crawl(self) -> CrawlReport:
        """Run the crawl to frontier or budget exhaustion."""
        if self.state is not CrawlState.IDLE:
            raise CrawlStateError(f"crawl already {self.state.value}")

        crawl_id = bind_crawl_id()

        start_time = time.time()
        attributes = {"cachanais.start_url": self.start_url, "cachanais.crawl_id": crawl_id}
        with create_span("cachanais.crawl", attributes=attributes) as span:
            self._transition(CrawlState.RUNNING)
            async with self.fetcher:
                self._enqueue(self.start_url, 0)
                workers = [
                    asyncio.create_task(self._worker(), name=f"cachanais-worker-{index}")
                    for index in range(self.settings.parallelism)
                ]
                try:
                    await self.frontier.join()
                finally:
                    for worker in workers:
                        worker.cancel()
                    await asyncio.gather(*workers, return_exceptions=True)

            self.report.duration_s = time.time() - start_time
            span.set_attribute("cachanais.requests_issued", self.report.requests_issued)
            span.set_attribute("cachanais.failed", self.report.failed)

        self._transition(CrawlState.DONE)
        self._log_completion()
        return self.report

    async def _worker(self) -> None:
        while True:
            entry = await self.frontier.get()
            try:
                await self._process_entry(entry)
            except Exception as e:
                logger.exception(f"Unexpected error while processing {entry.url}: {e}")
                self.report.failed += 1
                self.report.failures.append(FetchFailure(url=entry.url, error=str(e) or e.__class__.__name__))
            finally:
                self.frontier.task_done()

    async def _process_entry(self, entry: FrontierEntry) -> None:
        url = entry.url
        redirects = 0
        while True:
            outcome = await self._issue(url)
            if outcome is None:
                return
            if not isinstance(outcome, FetchRedirect):
                break
            if redirects >= self.settings.max_redirects:
                outcome = FetchFailure(
                    url=entry.url,
                    error=f"stopped after {self.settings.max_redirects} redirects",
                    status_code=outcome.status_code,
                )
                break
            if not self.visited.add_if_new(outcome.location):
                logger.info(f"Not following redirect from {url} to already visited {outcome.location}")
                self.report.succeeded += 1
                return
            redirects += 1
            url = outcome.location

        if isinstance(outcome, FetchFailure):
            self._record_failure(outcome)
            return

        if outcome.document is None:
            logger.debug(f"Not scanning non-HTML response from {url}")
        else:
            queued = self._enqueue_links(outcome.document, url, entry.depth + 1)
            logger.debug(f"Queued {queued} new links from {url}")

        self.report.succeeded += 1
        if self._should_report_progress():
            self._report_progress()

    async def _issue(self, url: str) -> FetchOutcome | None:
        """One budgeted, rate limited request; None once the budget is spent."""
        if not self.budget.try_acquire():
            if not self.report.budget_exhausted:
                logger.info(f"Reached max_requests limit ({self.budget.maximum}); discarding remaining frontier")
            self.report.budget_exhausted = True
            self.report.discarded += 1
            return None

        self.report.requests_issued += 1
        context = self.rewriter.rewrite(url)
        async with self.rate_limiter.slot(self.connect_target.host):
            logger.info(f"Visiting {context.url}")
            return await self.fetcher.fetch(context)

    def _record_failure(self, failure: FetchFailure) -> None:
        self.report.failed += 1
        self.report.failures.append(failure)
        logger.error(f"Get error on {self.rewriter.rewrite(failure.url).url}: {failure.error}")

    def _enqueue(self, url: str, depth: int) -> bool:
        """Depth check, then visited check-and-mark, then push."""
        if depth > self.frontier.max_depth:
            LINKS_DISCOVERED_TOTAL.labels(decision="depth").inc()
            return False
        if not self.visited.add_if_new(url):
            LINKS_DISCOVERED_TOTAL.labels(decision="visited").inc()
            return False
        self.frontier.push(FrontierEntry(url=url, depth=depth))
        LINKS_DISCOVERED_TOTAL.labels(decision="queued").inc()
        return True

    def _document_base(self, document: BeautifulSoup, page_url: str) -> str:
        """Honor ``<base href>`` when resolving relative links."""
        base = document.find("base", href=True)
        if base is None:
            return page_url
        href = base.get("href")
        if isinstance(href, list):
            href = href[0] if href else ""
        if not href:
            return page_url
        try:
            return self.matcher.canonicalize(urljoin(page_url, href))
        except ValueError:
            return page_url

    def _enqueue_links(self, document: BeautifulSoup, page_url: str, depth: int) -> int:
        if depth > self.frontier.max_depth:
            logger.debug(f"Not following links from {page_url}: depth {depth} exceeds {self.frontier.max_depth}")
            return 0

        base_url = self._document_base(document, page_url)
        queued = 0
        for anchor in document.find_all("a", href=True):
            href = anchor.get("href")
            if isinstance(href, list):
                href = href[0] if href else ""
            result = self.matcher.match(href or "", base_url)
            if not result.accepted or result.url is None:
                LINKS_DISCOVERED_TOTAL.labels(decision=result.reason or "rejected").inc()
                logger.debug(f"Skipping link {href!r} on {page_url}: {result.reason}")
                continue
            if self._enqueue(result.url, depth):
                queued += 1
        return queued

    def _should_report_progress(self) -> bool:
        return self.progress_interval > 0 and self.report.succeeded % self.progress_interval == 0

    def _report_progress(self) -> None:
        logger.info(
            f"Progress: {self.report.requests_issued} requests, "
            f"{self.report.failed} failed, "
            f"{len(self.frontier)} in queue, "
            f"{len(self.visited)} visited, "
            f"{self.budget.remaining} left in budget"
        )

    def _log_completion(self) -> None:
        elapsed = self.report.duration_s
        rate = self.report.requests_issued / elapsed if elapsed > 0 else 0
        discarded = f", {self.report.discarded} discarded (budget reached)" if self.report.discarded else ""
        logger.info(
            f"Crawl complete: {self.report.requests_issued} requests "
            f"({self.report.succeeded} ok, {self.report.failed} failed) in {elapsed:.1f}s "
            f"({rate:.1f} req/sec){discarded}"
        )
        for host, stats in self.rate_limiter.get_stats().items():
            logger.debug(f"Rate limit stats for {host}: {stats}")


async def warm_cache(
    settings: CrawlSettings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> CrawlReport:
    """Build a ``CacheWarmer`` for ``settings`` and run it."""
    warmer = CacheWarmer(settings, transport=transport)
    return await warmer.crawl()
