"""Unit tests for crawl configuration parsing and validation."""

import pytest

from cachanais.config import (
    DEFAULT_USER_AGENT,
    ConfigurationError,
    CrawlSettings,
    load_settings,
    parse_duration,
    parse_key_value,
    parse_key_value_pairs,
)
from cachanais.domain.model import ConnectTarget, CrawlTarget


pytestmark = pytest.mark.unit


class TestParseDuration:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("5s", 5.0),
            ("500ms", 0.5),
            ("1m30s", 90.0),
            ("1h", 3600.0),
            ("1.5s", 1.5),
            ("2", 2.0),
            ("0", 0.0),
            (3, 3.0),
            (0.25, 0.25),
        ],
    )
    def test_accepts_go_style_and_plain_seconds(self, raw, expected):
        assert parse_duration(raw) == pytest.approx(expected)

    @pytest.mark.parametrize("raw", ["", "soon", "5 s", "5x", "s5", "-1"])
    def test_rejects_garbage(self, raw):
        with pytest.raises(ValueError):
            parse_duration(raw)


class TestKeyValueParsing:
    def test_splits_on_first_colon_only(self):
        assert parse_key_value("X-Forwarded-For:10.0.0.1:8080", "header") == ("X-Forwarded-For", "10.0.0.1:8080")

    def test_keeps_empty_value(self):
        assert parse_key_value("session:", "cookie") == ("session", "")

    def test_missing_colon_is_configuration_error(self):
        with pytest.raises(ConfigurationError, match="problem with cookie 'badcookie'"):
            parse_key_value("badcookie", "cookie")

    def test_pairs_preserve_order(self):
        assert parse_key_value_pairs(["a:1", "b:2"], "header") == (("a", "1"), ("b", "2"))


class TestCrawlSettings:
    def test_defaults(self):
        settings = load_settings(url="https://public.example/")

        assert settings.address == ""
        assert settings.cookies == ()
        assert settings.headers == ()
        assert settings.filter_query_strings is False
        assert settings.max_requests == 100
        assert settings.delay == 5.0
        assert settings.random_delay is None
        assert settings.effective_random_delay == 5.0
        assert settings.parallelism == 1
        assert settings.max_depth == 3
        assert settings.request_timeout == 60.0
        assert settings.user_agent == DEFAULT_USER_AGENT

    def test_parses_header_and_cookie_entries(self):
        settings = load_settings(
            url="https://public.example/",
            cookies=["mycookie:sup"],
            headers=["X-Cool:blop", "X-Other:a:b"],
        )

        assert settings.cookies == (("mycookie", "sup"),)
        assert settings.headers == (("X-Cool", "blop"), ("X-Other", "a:b"))

    def test_parses_durations(self):
        settings = load_settings(url="https://public.example/", delay="250ms", random_delay="1s", request_timeout="2m")

        assert settings.delay == pytest.approx(0.25)
        assert settings.effective_random_delay == pytest.approx(1.0)
        assert settings.request_timeout == pytest.approx(120.0)

    def test_is_immutable(self):
        settings = load_settings(url="https://public.example/")

        with pytest.raises(Exception):
            settings.max_requests = 5

    def test_connect_target_defaults_to_value_copy_of_crawl_target(self):
        settings = load_settings(url="https://Public.Example/start")

        crawl = settings.crawl_target
        connect = settings.connect_target

        assert crawl == CrawlTarget(scheme="https", host="public.example", path="/start")
        assert connect == ConnectTarget(scheme="https", host="public.example")
        assert connect is not crawl

    def test_connect_target_from_full_address(self):
        settings = load_settings(url="https://public.example/", address="http://localhost:8080")

        assert settings.connect_target == ConnectTarget(scheme="http", host="localhost:8080")

    def test_bare_address_inherits_crawl_scheme(self):
        settings = load_settings(url="https://public.example/", address="10.0.0.5:8443")

        assert settings.connect_target == ConnectTarget(scheme="https", host="10.0.0.5:8443")

    @pytest.mark.parametrize(
        "bad_input",
        [
            {"url": "not a url"},
            {"url": "ftp://public.example/"},
            {"url": "https://"},
            {"url": "https://public.example/", "address": "ftp://backend"},
            {"url": "https://public.example/", "address": "http://backend:notaport"},
            {"url": "https://public.example/", "cookies": ["badcookie"]},
            {"url": "https://public.example/", "headers": ["X-No-Colon"]},
            {"url": "https://public.example/", "delay": "forever"},
            {"url": "https://public.example/", "max_requests": 0},
            {"url": "https://public.example/", "parallelism": 0},
            {"url": "https://public.example/", "max_depth": -1},
        ],
    )
    def test_invalid_configuration_raises_configuration_error(self, bad_input):
        with pytest.raises(ConfigurationError):
            load_settings(**bad_input)

    def test_error_message_names_offending_cookie(self):
        with pytest.raises(ConfigurationError) as excinfo:
            load_settings(url="https://public.example/", cookies=["ok:1", "badcookie"])

        assert "badcookie" in str(excinfo.value)
        assert "cookies" in str(excinfo.value)

    def test_model_accepts_mapping_for_headers(self):
        settings = CrawlSettings(url="https://public.example/", headers={"X-A": "1"})

        assert settings.headers == (("X-A", "1"),)
