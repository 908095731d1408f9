"""Domain layer - crawl value objects with no network dependencies."""

from cachanais.domain.model import (
    ConnectTarget,
    CrawlReport,
    CrawlState,
    CrawlStateError,
    CrawlTarget,
    FetchFailure,
    FetchOutcome,
    FetchRedirect,
    FetchSuccess,
    FrontierEntry,
    RequestContext,
)


__all__ = [
    "ConnectTarget",
    "CrawlReport",
    "CrawlState",
    "CrawlStateError",
    "CrawlTarget",
    "FetchFailure",
    "FetchOutcome",
    "FetchRedirect",
    "FetchSuccess",
    "FrontierEntry",
    "RequestContext",
]
