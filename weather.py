"""
Weather Context — current conditions around the search centre.

Shown alongside the insights panel so students get a feel for the area
right now (heat, rain, wind). Purely informational: it never feeds the
livability score, and any failure just hides the weather card.

Data source:
  - Open-Meteo Forecast API (api.open-meteo.com), free, no key required
  - Weather codes follow the WMO 4677 interpretation table
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional

import requests

import health_monitor
from geo import LatLon
from ss_trace import get_trace

logger = logging.getLogger(__name__)

_API_BASE = "https://api.open-meteo.com/v1/forecast"
_API_TIMEOUT = 10
_CURRENT_FIELDS = (
    "temperature_2m,relative_humidity_2m,apparent_temperature,"
    "weather_code,wind_speed_10m"
)


# =============================================================================
# WMO WEATHER CODES
# =============================================================================

# code -> (main, description, icon)
_WMO_CODES = {
    0: ("Clear", "clear sky", "01d"),
    1: ("Clear", "mainly clear", "01d"),
    2: ("Clouds", "partly cloudy", "02d"),
    3: ("Clouds", "overcast", "03d"),
    45: ("Fog", "fog", "50d"),
    48: ("Fog", "depositing rime fog", "50d"),
    51: ("Drizzle", "light drizzle", "09d"),
    53: ("Drizzle", "moderate drizzle", "09d"),
    55: ("Drizzle", "dense drizzle", "09d"),
    61: ("Rain", "slight rain", "10d"),
    63: ("Rain", "moderate rain", "10d"),
    65: ("Rain", "heavy rain", "10d"),
    71: ("Snow", "slight snow", "13d"),
    73: ("Snow", "moderate snow", "13d"),
    75: ("Snow", "heavy snow", "13d"),
    77: ("Snow", "snow grains", "13d"),
    80: ("Rain", "slight rain showers", "09d"),
    81: ("Rain", "moderate rain showers", "09d"),
    82: ("Rain", "violent rain showers", "09d"),
    85: ("Snow", "slight snow showers", "13d"),
    86: ("Snow", "heavy snow showers", "13d"),
    95: ("Thunderstorm", "thunderstorm", "11d"),
    96: ("Thunderstorm", "thunderstorm with slight hail", "11d"),
    99: ("Thunderstorm", "thunderstorm with heavy hail", "11d"),
}
_UNKNOWN_CODE = ("Unknown", "unknown", "01d")


def describe_weather_code(code: Optional[int]):
    """(main, description, icon) for a WMO weather code."""
    return _WMO_CODES.get(code, _UNKNOWN_CODE)


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class WeatherSnapshot:
    temperature_c: float
    feels_like_c: float
    humidity_pct: float
    wind_speed_kmh: float
    weather_code: int
    main: str
    description: str
    icon: str


def _parse_current(raw: dict) -> Optional[WeatherSnapshot]:
    current = raw.get("current")
    if not isinstance(current, dict):
        return None
    try:
        code = int(current.get("weather_code", -1))
        main, description, icon = describe_weather_code(code)
        return WeatherSnapshot(
            temperature_c=float(current["temperature_2m"]),
            feels_like_c=float(current.get("apparent_temperature", current["temperature_2m"])),
            humidity_pct=float(current.get("relative_humidity_2m") or 0),
            wind_speed_kmh=float(current.get("wind_speed_10m") or 0),
            weather_code=code,
            main=main,
            description=description,
            icon=icon,
        )
    except (KeyError, TypeError, ValueError):
        return None


# =============================================================================
# PUBLIC API
# =============================================================================

def get_current_weather(lat: float, lng: float) -> Optional[WeatherSnapshot]:
    """Fetch current conditions. Returns None on any failure."""
    trace = get_trace()
    t0 = time.time()
    params = {
        "latitude": lat,
        "longitude": lng,
        "current": _CURRENT_FIELDS,
        "timezone": "auto",
    }

    try:
        resp = requests.get(_API_BASE, params=params, timeout=_API_TIMEOUT)
    except requests.exceptions.RequestException as e:
        elapsed_ms = int((time.time() - t0) * 1000)
        logger.warning("Open-Meteo request failed for (%.2f, %.2f): %s", lat, lng, e)
        if trace:
            trace.record_api_call(
                service="open_meteo",
                endpoint="forecast",
                elapsed_ms=elapsed_ms,
                status_code=0,
                provider_status="TIMEOUT" if isinstance(e, requests.Timeout) else "ERROR",
            )
        _health(False, elapsed_ms, str(e))
        return None

    elapsed_ms = int((time.time() - t0) * 1000)
    if trace:
        trace.record_api_call(
            service="open_meteo",
            endpoint="forecast",
            elapsed_ms=elapsed_ms,
            status_code=resp.status_code,
            provider_status="OK" if resp.ok else "ERROR",
        )
    if not resp.ok:
        logger.warning(
            "Open-Meteo API returned %d for (%.2f, %.2f)",
            resp.status_code, lat, lng,
        )
        _health(False, elapsed_ms, f"HTTP {resp.status_code}")
        return None

    try:
        raw = resp.json()
    except ValueError:
        logger.warning("Open-Meteo returned non-JSON for (%.2f, %.2f)", lat, lng)
        _health(False, elapsed_ms, "parse_error")
        return None

    snapshot = _parse_current(raw) if isinstance(raw, dict) else None
    _health(snapshot is not None, elapsed_ms, None if snapshot else "malformed")
    return snapshot


async def fetch_weather(point: LatLon) -> Optional[WeatherSnapshot]:
    """Context fetcher for the refresh coordinator."""
    return await asyncio.to_thread(get_current_weather, point[0], point[1])


def _health(success: bool, elapsed_ms: int, error: Optional[str] = None) -> None:
    try:
        health_monitor.record_call("open_meteo", success, elapsed_ms, error)
    except Exception:
        logger.debug("Health tracking failed for open_meteo", exc_info=True)
