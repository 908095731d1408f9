"""Link resolution and scope filtering.

Decides whether a link discovered on a page belongs to the crawl. Links on
either the public host or the connect host are in scope; anything else is
dropped before it reaches the frontier.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from urllib.parse import urljoin, urlsplit, urlunsplit

from cachanais.domain.model import ConnectTarget, CrawlTarget


logger = logging.getLogger(__name__)

QUERY_STRING_PATTERN = re.compile(r"[?&]([^&=]+)=([^&=]+)")

_HTTP_SCHEMES = frozenset({"http", "https"})


@dataclass(slots=True, frozen=True)
class MatchResult:
    accepted: bool
    url: str | None = None
    reason: str = ""


class UrlMatcher:
    """Pure accept/reject decisions for discovered links."""

    def __init__(
        self,
        crawl_target: CrawlTarget,
        connect_target: ConnectTarget,
        *,
        filter_query_strings: bool = False,
    ):
        self.crawl_target = crawl_target
        self.connect_target = connect_target
        self.filter_query_strings = filter_query_strings
        self.allowed_hosts: frozenset[str] = frozenset({crawl_target.host, connect_target.host})

    def resolve(self, link: str, base_url: str) -> str | None:
        """Resolve ``link`` against ``base_url`` into an absolute URL without fragment.

        Returns None when the link cannot produce a fetchable http(s) URL.
        """
        link = (link or "").strip()
        if not link or link.startswith("#"):
            return None
        try:
            parts = urlsplit(urljoin(base_url, link))
            # Invalid ports only surface when accessed
            parts.port  # noqa: B018
        except ValueError as exc:
            logger.debug(f"Dropping unresolvable link {link!r} on {base_url}: {exc}")
            return None

        scheme = parts.scheme.lower()
        if scheme not in _HTTP_SCHEMES or not parts.netloc:
            return None

        return urlunsplit((scheme, parts.netloc.lower(), parts.path or "/", parts.query, ""))

    def canonicalize(self, url: str) -> str:
        """Map a URL on the connect host back onto the crawl target's scheme and host."""
        parts = urlsplit(url)
        if parts.netloc == self.connect_target.host and parts.netloc != self.crawl_target.host:
            return urlunsplit(
                (self.crawl_target.scheme, self.crawl_target.host, parts.path, parts.query, parts.fragment)
            )
        return url

    def is_allowed(self, url: str) -> bool:
        return urlsplit(url).netloc.lower() in self.allowed_hosts

    def has_query_parameters(self, url: str) -> bool:
        return QUERY_STRING_PATTERN.search(url) is not None

    def match(self, link: str, base_url: str) -> MatchResult:
        """Resolve, scope-check and filter a discovered link."""
        resolved = self.resolve(link, base_url)
        if resolved is None:
            return MatchResult(accepted=False, reason="unresolvable")

        if not self.is_allowed(resolved):
            return MatchResult(accepted=False, url=resolved, reason="domain")

        if self.filter_query_strings and self.has_query_parameters(resolved):
            return MatchResult(accepted=False, url=resolved, reason="query")

        return MatchResult(accepted=True, url=self.canonicalize(resolved))
