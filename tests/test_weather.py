"""Tests for weather.py — Open-Meteo current conditions."""

import asyncio
from unittest.mock import MagicMock, patch

import requests

import health_monitor
from weather import WeatherSnapshot, describe_weather_code, fetch_weather, get_current_weather


def _mock_response(status_code=200, json_data=None):
    resp = MagicMock(spec=requests.Response)
    resp.status_code = status_code
    resp.ok = 200 <= status_code < 300
    if json_data is not None:
        resp.json.return_value = json_data
    else:
        resp.json.side_effect = ValueError("No JSON")
    return resp


CURRENT = {
    "current": {
        "temperature_2m": 27.4,
        "relative_humidity_2m": 61,
        "apparent_temperature": 29.1,
        "weather_code": 2,
        "wind_speed_10m": 11.2,
    }
}


class TestWeatherCodes:
    def test_known_codes(self):
        assert describe_weather_code(0) == ("Clear", "clear sky", "01d")
        assert describe_weather_code(63)[0] == "Rain"
        assert describe_weather_code(95)[2] == "11d"

    def test_unknown_code(self):
        assert describe_weather_code(42)[0] == "Unknown"


class TestGetCurrentWeather:
    @patch("weather.requests.get")
    def test_parses_current_conditions(self, mock_get):
        mock_get.return_value = _mock_response(200, CURRENT)
        snap = get_current_weather(12.97, 77.59)

        assert snap == WeatherSnapshot(
            temperature_c=27.4,
            feels_like_c=29.1,
            humidity_pct=61.0,
            wind_speed_kmh=11.2,
            weather_code=2,
            main="Clouds",
            description="partly cloudy",
            icon="02d",
        )
        params = mock_get.call_args.kwargs["params"]
        assert params["timezone"] == "auto"
        assert "weather_code" in params["current"]

    @patch("weather.requests.get")
    def test_http_error_returns_none(self, mock_get):
        mock_get.return_value = _mock_response(503, {})
        assert get_current_weather(12.97, 77.59) is None
        assert health_monitor._monitor.compute_status("open_meteo").status == "down"

    @patch("weather.requests.get", side_effect=requests.Timeout("slow"))
    def test_timeout_returns_none(self, mock_get):
        assert get_current_weather(12.97, 77.59) is None

    @patch("weather.requests.get")
    def test_missing_current_block(self, mock_get):
        mock_get.return_value = _mock_response(200, {"latitude": 12.97})
        assert get_current_weather(12.97, 77.59) is None

    @patch("weather.requests.get")
    def test_non_json(self, mock_get):
        mock_get.return_value = _mock_response(200)
        assert get_current_weather(12.97, 77.59) is None


class TestFetchWeather:
    @patch("weather.requests.get")
    def test_async_fetcher(self, mock_get):
        mock_get.return_value = _mock_response(200, CURRENT)
        snap = asyncio.run(fetch_weather((12.97, 77.59)))
        assert snap.description == "partly cloudy"
