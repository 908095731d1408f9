"""Turn a public link into the request actually sent to the connect target."""

from __future__ import annotations

from urllib.parse import urlsplit, urlunsplit

from cachanais.domain.model import ConnectTarget, CrawlTarget, RequestContext


HOST_HEADER = "host"


class RequestRewriter:
    """Swap scheme/host for the connect target and attach the crawl-wide headers.

    The ``host`` header always carries the public hostname so the backend
    routes and keys its cache as if reached through the public name. User
    headers are applied after it and can override it.
    """

    def __init__(
        self,
        crawl_target: CrawlTarget,
        connect_target: ConnectTarget,
        headers: tuple[tuple[str, str], ...] = (),
        cookies: tuple[tuple[str, str], ...] = (),
        *,
        user_agent: str | None = None,
    ):
        self.crawl_target = crawl_target
        self.connect_target = connect_target

        # Keyed by lower-cased name; header names are case-insensitive
        merged: dict[str, tuple[str, str]] = {}
        if user_agent:
            merged["user-agent"] = ("User-Agent", user_agent)
        merged[HOST_HEADER] = (HOST_HEADER, crawl_target.host)
        for name, value in headers:
            merged[name.lower()] = (name, value)
        self._headers: tuple[tuple[str, str], ...] = tuple(merged.values())
        self._cookies = tuple(cookies)

    @property
    def headers(self) -> dict[str, str]:
        return dict(self._headers)

    def rewrite(self, url: str) -> RequestContext:
        parts = urlsplit(url)
        target = urlunsplit(
            (self.connect_target.scheme, self.connect_target.host, parts.path or "/", parts.query, "")
        )
        return RequestContext(
            url=target,
            public_url=url,
            headers=self._headers,
            cookies=self._cookies,
        )
