"""
Place-name search and reverse geocoding via Nominatim.

SearchSuggestionProvider backs the search box: on_input() is called on
every keystroke and debounced, so only the text the user settles on is
sent to Nominatim. Queries get the configured country appended to bias
results; suggestions are ordered by Nominatim's importance score.

Nominatim's usage policy asks for an identifying User-Agent and at most
one request per second; debouncing keeps interactive use well under that.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import requests

import health_monitor
from config import (
    NOMINATIM_BASE_URL,
    NOMINATIM_USER_AGENT,
    SEARCH_COUNTRY_SUFFIX,
    SUGGEST_DEBOUNCE_SECONDS,
)
from geo import LatLon
from ss_trace import get_trace

logger = logging.getLogger(__name__)

CURRENT_LOCATION_LABEL = "Current Location"
MIN_QUERY_CHARS = 2
SUGGESTION_LIMIT = 8
_API_TIMEOUT = 10


@dataclass(frozen=True)
class Suggestion:
    display_name: str
    lat: float
    lon: float
    type: str = ""
    importance: float = 0.0

    @property
    def point(self) -> LatLon:
        return (self.lat, self.lon)

    @property
    def short_name(self) -> str:
        """First component of the display name, e.g. "Koramangala"."""
        return self.display_name.split(",")[0].strip()


def _parse_suggestion(item: Dict[str, Any]) -> Optional[Suggestion]:
    try:
        return Suggestion(
            display_name=item["display_name"],
            lat=float(item["lat"]),
            lon=float(item["lon"]),
            type=item.get("type", ""),
            importance=float(item.get("importance") or 0.0),
        )
    except (KeyError, TypeError, ValueError):
        logger.debug("Skipping malformed Nominatim result: %r", item)
        return None


class NominatimClient:
    """Blocking Nominatim client (search + reverse)."""

    def __init__(
        self,
        base_url: str = NOMINATIM_BASE_URL,
        user_agent: str = NOMINATIM_USER_AGENT,
        country_suffix: str = SEARCH_COUNTRY_SUFFIX,
    ):
        self.base_url = base_url.rstrip("/")
        self.country_suffix = country_suffix
        self.user_agent = user_agent

    def search(self, text: str, limit: int = SUGGESTION_LIMIT) -> List[Suggestion]:
        """Forward search, most important first.

        Raises requests.exceptions.RequestException or ValueError on failure.
        """
        query = f"{text}, {self.country_suffix}" if self.country_suffix else text
        params = {
            "format": "json",
            "q": query,
            "limit": limit,
            "addressdetails": 1,
        }
        data = self._get("search", params)
        if not isinstance(data, list):
            raise ValueError(f"Nominatim search returned {type(data).__name__}")
        suggestions = [s for s in (_parse_suggestion(item) for item in data) if s]
        suggestions.sort(key=lambda s: s.importance, reverse=True)
        return suggestions

    def reverse(self, point: LatLon) -> Dict[str, Any]:
        params = {"format": "json", "lat": point[0], "lon": point[1]}
        data = self._get("reverse", params)
        if not isinstance(data, dict):
            raise ValueError(f"Nominatim reverse returned {type(data).__name__}")
        return data

    def _get(self, endpoint: str, params: Dict[str, Any]) -> Any:
        trace = get_trace()
        t0 = time.time()
        status_code = 0
        try:
            session = requests.Session()
            session.trust_env = False
            resp = session.get(
                f"{self.base_url}/{endpoint}",
                params=params,
                headers={"User-Agent": self.user_agent},
                timeout=_API_TIMEOUT,
            )
            status_code = resp.status_code
            resp.raise_for_status()
            data = resp.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            elapsed_ms = int((time.time() - t0) * 1000)
            if trace:
                trace.record_api_call("nominatim", endpoint, elapsed_ms, status_code, "ERROR")
            self._health(False, elapsed_ms, str(e))
            raise

        elapsed_ms = int((time.time() - t0) * 1000)
        if trace:
            trace.record_api_call("nominatim", endpoint, elapsed_ms, status_code, "OK")
        self._health(True, elapsed_ms)
        return data

    @staticmethod
    def _health(success: bool, elapsed_ms: int, error: Optional[str] = None) -> None:
        try:
            health_monitor.record_call("nominatim", success, elapsed_ms, error)
        except Exception:
            logger.debug("Health tracking failed for nominatim", exc_info=True)


class SearchSuggestionProvider:
    """Debounced autocomplete plus manual and reverse lookups."""

    def __init__(
        self,
        client: Optional[NominatimClient] = None,
        debounce_seconds: float = SUGGEST_DEBOUNCE_SECONDS,
        min_chars: int = MIN_QUERY_CHARS,
        on_suggestions: Optional[Callable[[str, List[Suggestion]], None]] = None,
    ):
        self.client = client or NominatimClient()
        self.debounce_seconds = debounce_seconds
        self.min_chars = min_chars
        self.on_suggestions = on_suggestions
        self._pending: Optional[asyncio.Task] = None

    async def suggest(self, query_text: str) -> List[Suggestion]:
        """Suggestions for *query_text*; [] for short input or provider failure."""
        text = (query_text or "").strip()
        if len(text) < self.min_chars:
            return []
        try:
            return await asyncio.to_thread(self.client.search, text)
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning("Suggestion lookup failed for %r: %s", text, e)
            return []

    def on_input(self, text: str) -> asyncio.Task:
        """Register a keystroke. Must be called from the event loop.

        Cancels any pending lookup and restarts the debounce window. The
        returned task resolves once this text's suggestions have been
        delivered (or raises CancelledError if a later keystroke won).
        """
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = asyncio.get_running_loop().create_task(self._debounced(text))
        return self._pending

    async def _debounced(self, text: str) -> List[Suggestion]:
        await asyncio.sleep(self.debounce_seconds)
        suggestions = await self.suggest(text)
        if self.on_suggestions is not None:
            self.on_suggestions(text, suggestions)
        return suggestions

    async def flush(self) -> Optional[List[Suggestion]]:
        """Wait for the pending lookup, if any, and return its suggestions."""
        if self._pending is None:
            return None
        try:
            return await self._pending
        except asyncio.CancelledError:
            return None

    async def resolve_query(self, text: str) -> Optional[Suggestion]:
        """Best single match for a manually submitted search."""
        text = (text or "").strip()
        if not text:
            return None
        try:
            results = await asyncio.to_thread(self.client.search, text, 1)
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning("Search failed for %r: %s", text, e)
            return None
        return results[0] if results else None

    async def reverse_resolve(self, point: LatLon) -> str:
        """Short area label for *point* (suburb, neighbourhood or city)."""
        try:
            data = await asyncio.to_thread(self.client.reverse, point)
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning("Reverse geocode failed for %s: %s", point, e)
            return CURRENT_LOCATION_LABEL
        address = data.get("address") or {}
        return (
            address.get("suburb")
            or address.get("neighbourhood")
            or address.get("city")
            or CURRENT_LOCATION_LABEL
        )
