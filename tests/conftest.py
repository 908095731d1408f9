"""Shared test fixtures: an in-memory website served through httpx.MockTransport."""

from __future__ import annotations

from collections.abc import Callable
import logging
from pathlib import Path
import sys

import httpx
import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from cachanais.config import CrawlSettings, load_settings  # noqa: E402


PageSpec = str | tuple[int, str] | tuple[int, str, dict[str, str]] | Exception


class FakeSite:
    """Serve canned responses keyed by path (including query string).

    A page spec is either HTML text (200), ``(status, body)``,
    ``(status, body, headers)`` or an exception instance to raise.
    Unknown paths answer 404.
    """

    def __init__(self, pages: dict[str, PageSpec] | None = None):
        self.pages: dict[str, PageSpec] = dict(pages or {})
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = request.url.raw_path.decode("ascii")
        spec = self.pages.get(key)
        if spec is None:
            return httpx.Response(404, text="not found")
        if isinstance(spec, Exception):
            raise spec
        if isinstance(spec, str):
            return httpx.Response(200, text=spec, headers={"content-type": "text/html; charset=utf-8"})
        status, body, *rest = spec
        headers = {"content-type": "text/html; charset=utf-8"}
        if rest:
            headers.update(rest[0])
        return httpx.Response(status, text=body, headers=headers)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def paths(self) -> list[str]:
        return [request.url.raw_path.decode("ascii") for request in self.requests]

    @property
    def urls(self) -> list[str]:
        return [str(request.url) for request in self.requests]


@pytest.fixture
def fake_site() -> Callable[[dict[str, PageSpec]], FakeSite]:
    return FakeSite


@pytest.fixture
def make_settings() -> Callable[..., CrawlSettings]:
    """Settings with politeness delays disabled so tests run instantly."""

    def _make(**overrides) -> CrawlSettings:
        values = {
            "url": "https://public.example/",
            "delay": 0,
            "random_delay": 0,
            "request_timeout": 5,
        }
        values.update(overrides)
        return load_settings(**values)

    return _make


@pytest.fixture
def restore_root_logger():
    """Undo ``configure_logging`` side effects on the root logger."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)
