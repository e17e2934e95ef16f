"""Tests for config.py — env parsing and the Sentry before_send filter."""

from unittest.mock import patch

import requests

import config
from amenities import Aborted, AllEndpointsFailed
from commute import ProviderUnavailable
from overpass_http import KIND_TIMEOUT, AttemptFailure


def _hint(exc):
    return {"exc_info": (type(exc), exc, None)}


class TestParsing:
    def test_parse_endpoints_strips_and_dedupes(self):
        raw = " https://a/api , ,https://b/api,https://a/api"
        assert config._parse_endpoints(raw) == ["https://a/api", "https://b/api"]

    def test_parse_endpoints_empty(self):
        assert config._parse_endpoints("") == []

    def test_parse_point(self):
        assert config._parse_point("12.5, 77.25") == (12.5, 77.25)

    def test_defaults(self):
        assert len(config.OVERPASS_ENDPOINTS) >= 1
        assert config.DEFAULT_RADIUS_METERS > 0


class TestSentryBeforeSend:
    def test_aborted_dropped_silently(self):
        with patch("sentry_sdk.add_breadcrumb") as crumb:
            assert config._sentry_before_send({"e": 1}, _hint(Aborted("old"))) is None
        crumb.assert_not_called()

    def test_all_endpoints_failed_becomes_breadcrumb(self):
        exc = AllEndpointsFailed([AttemptFailure("a", KIND_TIMEOUT, "slow")], 3, 1500)
        with patch("sentry_sdk.add_breadcrumb") as crumb:
            assert config._sentry_before_send({"e": 1}, _hint(exc)) is None
        crumb.assert_called_once()

    def test_provider_unavailable_becomes_breadcrumb(self):
        with patch("sentry_sdk.add_breadcrumb") as crumb:
            assert config._sentry_before_send({"e": 1}, _hint(ProviderUnavailable("x"))) is None
        crumb.assert_called_once()

    def test_request_exception_becomes_breadcrumb(self):
        exc = requests.exceptions.ConnectionError("refused")
        with patch("sentry_sdk.add_breadcrumb"):
            assert config._sentry_before_send({"e": 1}, _hint(exc)) is None

    def test_unexpected_error_kept(self):
        event = {"e": 1}
        assert config._sentry_before_send(event, _hint(KeyError("boom"))) is event

    def test_event_without_exception_kept(self):
        event = {"message": "hello"}
        assert config._sentry_before_send(event, {}) is event


class TestInitSentry:
    def test_disabled_without_dsn(self, monkeypatch):
        monkeypatch.delenv("SENTRY_DSN", raising=False)
        assert config.init_sentry() is False

    def test_enabled_with_dsn(self, monkeypatch):
        monkeypatch.setenv("SENTRY_DSN", "https://key@sentry.example/1")
        with patch("sentry_sdk.init") as mock_init:
            assert config.init_sentry() is True
        kwargs = mock_init.call_args.kwargs
        assert kwargs["before_send"] is config._sentry_before_send
