"""
Runtime configuration for the StayScout location engine.

Every tunable is read once from the environment (or a local .env file)
at import time. Entry points call configure_logging() and init_sentry()
before building an engine; library modules only read the constants.
"""

import logging
import os
from typing import List, Tuple

from dotenv import load_dotenv

load_dotenv()

# =============================================================================
# Map-data provider (Overpass)
# =============================================================================

_DEFAULT_OVERPASS_ENDPOINTS = [
    "https://overpass-api.de/api/interpreter",
    "https://overpass.kumi.systems/api/interpreter",
    "https://overpass.openstreetmap.ru/api/interpreter",
]


def _parse_endpoints(raw: str) -> List[str]:
    """Split a comma-separated endpoint list, dropping blanks and duplicates."""
    endpoints: List[str] = []
    for part in raw.split(","):
        url = part.strip()
        if url and url not in endpoints:
            endpoints.append(url)
    return endpoints


OVERPASS_ENDPOINTS = (
    _parse_endpoints(os.environ.get("OVERPASS_ENDPOINTS", ""))
    or list(_DEFAULT_OVERPASS_ENDPOINTS)
)
OVERPASS_ATTEMPT_TIMEOUT = float(os.environ.get("OVERPASS_ATTEMPT_TIMEOUT", "25"))
OVERPASS_CACHE_TTL_DAYS = int(os.environ.get("OVERPASS_CACHE_TTL_DAYS", "7"))

# =============================================================================
# Geocoding (Nominatim) and routing (Google Directions)
# =============================================================================

NOMINATIM_BASE_URL = os.environ.get(
    "NOMINATIM_BASE_URL", "https://nominatim.openstreetmap.org"
).rstrip("/")
# Nominatim's usage policy requires an identifying User-Agent.
NOMINATIM_USER_AGENT = os.environ.get("NOMINATIM_USER_AGENT", "StayScout/1.0")
SEARCH_COUNTRY_SUFFIX = os.environ.get("SEARCH_COUNTRY_SUFFIX", "India")
SUGGEST_DEBOUNCE_SECONDS = float(os.environ.get("SUGGEST_DEBOUNCE_SECONDS", "0.3"))

GOOGLE_MAPS_API_KEY = os.environ.get("GOOGLE_MAPS_API_KEY")

# =============================================================================
# Listings collaborator and map defaults
# =============================================================================

LISTINGS_API_BASE_URL = os.environ.get(
    "LISTINGS_API_BASE_URL", "http://localhost:3000"
).rstrip("/")


def _parse_point(raw: str) -> Tuple[float, float]:
    lat, lon = (float(v) for v in raw.split(","))
    return lat, lon


DEFAULT_CENTER = _parse_point(os.environ.get("DEFAULT_CENTER", "12.9716,77.5946"))
DEFAULT_RADIUS_METERS = int(os.environ.get("DEFAULT_RADIUS_METERS", "1500"))
DEFAULT_MAX_PRICE = int(os.environ.get("DEFAULT_MAX_PRICE", "20000"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()


def configure_logging(level: str = None) -> None:
    """Configure root logging once for an entry point."""
    logging.basicConfig(
        level=getattr(logging, level or LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # urllib3 logs every connection at DEBUG; keep it quiet.
    logging.getLogger("urllib3").setLevel(logging.WARNING)


# =============================================================================
# Sentry error tracking, gated on SENTRY_DSN
# =============================================================================

def _sentry_before_send(event, hint):
    """Demote expected provider failures to breadcrumbs.

    Mirror outages, superseded requests and collaborator downtime are
    normal operating conditions for the engine; only unexpected errors
    become Sentry events.
    """
    import requests.exceptions
    import sentry_sdk

    from amenities import Aborted, AllEndpointsFailed
    from commute import ProviderUnavailable

    exc_info = hint.get("exc_info")
    if exc_info:
        exc_type, exc_value, _ = exc_info
        msg = str(exc_value) if exc_value else ""
        if exc_type is not None and issubclass(exc_type, Aborted):
            return None
        if exc_type is not None and issubclass(exc_type, AllEndpointsFailed):
            sentry_sdk.add_breadcrumb(category="overpass", message=msg, level="warning")
            return None
        if exc_type is not None and issubclass(exc_type, ProviderUnavailable):
            sentry_sdk.add_breadcrumb(category="collaborator", message=msg, level="warning")
            return None
        if exc_type is not None and issubclass(exc_type, requests.exceptions.RequestException):
            sentry_sdk.add_breadcrumb(category="http", message=msg, level="warning")
            return None
    return event


def init_sentry() -> bool:
    """Initialise Sentry when SENTRY_DSN is set. Returns True if enabled."""
    dsn = os.environ.get("SENTRY_DSN")
    if not dsn:
        return False

    import sentry_sdk

    sentry_sdk.init(
        dsn=dsn,
        traces_sample_rate=0.0,
        release=os.environ.get("STAYSCOUT_RELEASE"),
        environment=os.environ.get("STAYSCOUT_ENVIRONMENT", "production"),
        before_send=_sentry_before_send,
    )
    return True
