"""Crawl configuration using Pydantic.

All user input is validated here, before the engine is constructed, so a
malformed URL, header, cookie or duration aborts the crawl before any
request is issued (fail fast).
"""

from __future__ import annotations

from collections.abc import Iterable
import re
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from cachanais.domain.model import ConnectTarget, CrawlTarget


VERSION = "0.1.0"
DEFAULT_USER_AGENT = f"cachanais/{VERSION}"

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


class ConfigurationError(ValueError):
    """Invalid crawl configuration; raised before any network activity."""


def parse_duration(value: str | float | int) -> float:
    """Parse a Go-style duration (``1m30s``, ``500ms``) or plain seconds into seconds."""

    if isinstance(value, bool):
        raise ValueError(f"invalid duration {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = value.strip()
        if not text:
            raise ValueError("invalid duration: empty value")
        try:
            seconds = float(text)
        except ValueError:
            position = 0
            seconds = 0.0
            for match in _DURATION_PART.finditer(text):
                if match.start() != position:
                    break
                seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
                position = match.end()
            if position != len(text) or position == 0:
                raise ValueError(f"invalid duration '{value}'") from None
    if seconds < 0:
        raise ValueError(f"invalid duration '{value}': must not be negative")
    return seconds


def parse_key_value(entry: str, kind: str) -> tuple[str, str]:
    """Split a ``key:value`` CLI entry on the first colon."""

    key, sep, value = entry.partition(":")
    if not sep:
        raise ConfigurationError(f"problem with {kind} '{entry}': {kind} malformed")
    return key, value


def parse_key_value_pairs(entries: Iterable[str], kind: str) -> tuple[tuple[str, str], ...]:
    return tuple(parse_key_value(entry, kind) for entry in entries)


def _coerce_pairs(value: Any, kind: str) -> tuple[tuple[str, str], ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if isinstance(value, dict):
        return tuple((str(k), str(v)) for k, v in value.items())
    pairs: list[tuple[str, str]] = []
    for item in value:
        if isinstance(item, str):
            pairs.append(parse_key_value(item, kind))
        else:
            key, val = item
            pairs.append((str(key), str(val)))
    return tuple(pairs)


class CrawlSettings(BaseModel):
    """Immutable configuration for one crawl run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: Annotated[str, Field(description="Start URL to crawl")]
    address: Annotated[str, Field(description="Connect target URL or host[:port]")] = ""
    cookies: Annotated[
        tuple[tuple[str, str], ...],
        Field(description="Cookies attached to every request, parsed from key:value"),
    ] = ()
    headers: Annotated[
        tuple[tuple[str, str], ...],
        Field(description="Headers attached to every request, parsed from key:value"),
    ] = ()
    filter_query_strings: bool = False
    max_requests: Annotated[int, Field(ge=1, description="Ceiling on requests issued")] = 100
    delay: Annotated[float, Field(ge=0, description="Base delay between dispatches (seconds)")] = 5.0
    random_delay: Annotated[
        float | None,
        Field(ge=0, description="Upper bound of the random jitter added to delay; defaults to delay"),
    ] = None
    parallelism: Annotated[int, Field(ge=1, description="Concurrent in-flight requests per host")] = 1
    max_depth: Annotated[int, Field(ge=0, description="Maximum link depth from the start URL")] = 3
    request_timeout: Annotated[float, Field(gt=0, description="Per-request timeout (seconds)")] = 60.0
    max_redirects: Annotated[int, Field(ge=0, le=50)] = 10
    user_agent: str = DEFAULT_USER_AGENT

    @field_validator("url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        CrawlTarget.from_url(value)
        return value.strip()

    @field_validator("cookies", mode="before")
    @classmethod
    def _parse_cookies(cls, value: Any) -> tuple[tuple[str, str], ...]:
        return _coerce_pairs(value, "cookie")

    @field_validator("headers", mode="before")
    @classmethod
    def _parse_headers(cls, value: Any) -> tuple[tuple[str, str], ...]:
        return _coerce_pairs(value, "header")

    @field_validator("delay", "request_timeout", mode="before")
    @classmethod
    def _parse_required_duration(cls, value: Any) -> float:
        return parse_duration(value)

    @field_validator("random_delay", mode="before")
    @classmethod
    def _parse_optional_duration(cls, value: Any) -> float | None:
        if value is None or value == "":
            return None
        return parse_duration(value)

    @model_validator(mode="after")
    def _check_address(self) -> CrawlSettings:
        if self.address:
            ConnectTarget.from_address(self.address, self.crawl_target.scheme)
        return self

    @property
    def crawl_target(self) -> CrawlTarget:
        return CrawlTarget.from_url(self.url)

    @property
    def connect_target(self) -> ConnectTarget:
        target = self.crawl_target
        if not self.address:
            return ConnectTarget.from_crawl_target(target)
        return ConnectTarget.from_address(self.address, target.scheme)

    @property
    def effective_random_delay(self) -> float:
        return self.delay if self.random_delay is None else self.random_delay


def _format_validation_error(exc: ValidationError) -> str:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        message = str(error.get("msg", "invalid value"))
        # Pydantic prefixes errors raised from validators
        message = message.removeprefix("Value error, ")
        messages.append(f"{location}: {message}" if location else message)
    return "; ".join(messages)


def load_settings(**values: Any) -> CrawlSettings:
    """Build ``CrawlSettings`` and surface any problem as ``ConfigurationError``."""

    try:
        return CrawlSettings(**values)
    except ValidationError as exc:
        raise ConfigurationError(_format_validation_error(exc)) from exc
