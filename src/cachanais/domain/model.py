"""Domain model - value objects shared by the crawl components.

Everything here lives for exactly one crawl invocation:
- Targets are parsed once from user input and never change
- RequestContext is built fresh for every outbound request
- Fetch outcomes are plain values the engine inspects; they never raise
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING
from urllib.parse import urlsplit


if TYPE_CHECKING:
    from bs4 import BeautifulSoup


_HTTP_SCHEMES = frozenset({"http", "https"})


class CrawlStateError(Exception):
    """Raised when the engine is driven through an invalid state transition."""


class CrawlState(str, Enum):
    """Lifecycle of a single crawl run."""

    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class CrawlTarget:
    """The public URL being warmed."""

    scheme: str
    host: str
    path: str = "/"

    @classmethod
    def from_url(cls, url: str) -> CrawlTarget:
        try:
            parts = urlsplit(url.strip())
        except ValueError as exc:
            raise ValueError(f"invalid url '{url}': {exc}") from exc
        scheme = parts.scheme.lower()
        if scheme not in _HTTP_SCHEMES:
            raise ValueError(f"invalid url '{url}': scheme must be http or https")
        if not parts.netloc:
            raise ValueError(f"invalid url '{url}': missing host")
        return cls(scheme=scheme, host=parts.netloc.lower(), path=parts.path or "/")

    @property
    def url(self) -> str:
        return f"{self.scheme}://{self.host}{self.path}"


@dataclass(slots=True, frozen=True)
class ConnectTarget:
    """The network endpoint requests are actually sent to."""

    scheme: str
    host: str

    @classmethod
    def from_crawl_target(cls, target: CrawlTarget) -> ConnectTarget:
        """Default connect target: a value copy of the crawl target's scheme and host."""
        return cls(scheme=target.scheme, host=target.host)

    @classmethod
    def from_address(cls, address: str, default_scheme: str) -> ConnectTarget:
        """Parse ``http://host:port`` or a bare ``host[:port]``.

        A bare address inherits ``default_scheme`` (the crawl target's).
        """
        raw = address.strip()
        if not raw:
            raise ValueError("invalid address: empty value")
        if "://" not in raw:
            raw = f"{default_scheme}://{raw}"
        try:
            parts = urlsplit(raw)
            # Accessing .port validates the port component
            parts.port  # noqa: B018
        except ValueError as exc:
            raise ValueError(f"invalid address '{address}': {exc}") from exc
        scheme = parts.scheme.lower()
        if scheme not in _HTTP_SCHEMES:
            raise ValueError(f"invalid address '{address}': scheme must be http or https")
        if not parts.netloc:
            raise ValueError(f"invalid address '{address}': missing host")
        return cls(scheme=scheme, host=parts.netloc.lower())


@dataclass(slots=True, frozen=True)
class FrontierEntry:
    url: str
    depth: int


@dataclass(slots=True, frozen=True)
class RequestContext:
    """Everything needed to issue one outbound request.

    ``url`` already points at the connect target; ``public_url`` is the link
    as discovered on the site.
    """

    url: str
    public_url: str
    headers: tuple[tuple[str, str], ...]
    cookies: tuple[tuple[str, str], ...] = ()

    def header_dict(self) -> dict[str, str]:
        merged = dict(self.headers)
        if self.cookies:
            merged["Cookie"] = "; ".join(f"{name}={value}" for name, value in self.cookies)
        return merged


@dataclass(slots=True, frozen=True)
class FetchSuccess:
    url: str
    status_code: int
    document: BeautifulSoup | None = None
    elapsed: float = 0.0

    @property
    def is_html(self) -> bool:
        return self.document is not None


@dataclass(slots=True, frozen=True)
class FetchRedirect:
    """A 3xx answer whose target stays on the allowed hosts.

    ``location`` is already canonical; the engine decides whether to follow it.
    """

    url: str
    location: str
    status_code: int


@dataclass(slots=True, frozen=True)
class FetchFailure:
    url: str
    error: str
    status_code: int | None = None


FetchOutcome = FetchSuccess | FetchRedirect | FetchFailure


@dataclass(slots=True)
class CrawlReport:
    """Counters describing a finished crawl."""

    requests_issued: int = 0
    succeeded: int = 0
    failed: int = 0
    discarded: int = 0
    budget_exhausted: bool = False
    duration_s: float = 0.0
    failures: list[FetchFailure] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "requests_issued": self.requests_issued,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "discarded": self.discarded,
            "budget_exhausted": self.budget_exhausted,
            "duration_s": round(self.duration_s, 3),
        }
