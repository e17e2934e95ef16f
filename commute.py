"""
Commute estimates between listings and the nearest institution.

Two tiers:
  - heuristic_commute(): flat minutes-per-km constants applied to the
    planar distance. Instant, offline, used for the listing cards.
  - CommuteEstimator.estimate_route(): a routed lookup through the Google
    Directions API for one listing and one travel mode. When no API key
    is configured, the provider is down, or it answers with a non-OK
    status, the heuristic answer is returned instead with
    is_estimated=True so the UI can label it.

RouteSession keeps at most one routed lookup live: selecting another
listing or mode supersedes the in-flight one, and its answer is dropped.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple
from urllib.parse import urlencode

import requests

import health_monitor
from config import GOOGLE_MAPS_API_KEY
from epoch import RequestEpoch
from geo import LatLon, planar_distance_km, round_half_up
from institutions import NearestInstitution
from ss_trace import get_trace

logger = logging.getLogger(__name__)

# Minutes per km for the listing-card estimates.
WALK_MIN_PER_KM = 12
CYCLE_MIN_PER_KM = 3
MOTORIZED_MIN_PER_KM = 2

# Minutes per km for routed-lookup fallbacks, keyed by Directions mode.
MINUTES_PER_KM = {
    "walking": 12,
    "bicycling": 3,
    "driving": 2,
    "transit": 2,
}
TRAVEL_MODES = tuple(MINUTES_PER_KM)

_DIRECTIONS_URL = "https://maps.googleapis.com/maps/api/directions/json"
_MAPS_DIR_URL = "https://www.google.com/maps/dir/"
_API_TIMEOUT = 10
_TAG_RE = re.compile(r"<[^>]*>")


class ProviderUnavailable(Exception):
    """A routing or context collaborator could not answer."""


# =============================================================================
# Heuristic estimates
# =============================================================================

@dataclass(frozen=True)
class CommuteTimes:
    distance_km: float
    walk_minutes: int
    cycle_minutes: int
    motorized_minutes: int


def heuristic_commute(distance_km: float) -> CommuteTimes:
    return CommuteTimes(
        distance_km=distance_km,
        walk_minutes=round_half_up(distance_km * WALK_MIN_PER_KM),
        cycle_minutes=round_half_up(distance_km * CYCLE_MIN_PER_KM),
        motorized_minutes=round_half_up(distance_km * MOTORIZED_MIN_PER_KM),
    )


@dataclass(frozen=True)
class ListingCommute:
    listing_id: str
    title: str
    times: CommuteTimes


def commute_summaries(
    listings: Sequence,
    institution: Optional[NearestInstitution],
    limit: int = 3,
) -> Tuple[ListingCommute, ...]:
    """Heuristic commute from each of the first *limit* listings.

    *listings* are anything with id, title and a (lat, lon) ``point``.
    No institution means nothing to commute to.
    """
    if institution is None:
        return ()
    target = institution.place.point
    return tuple(
        ListingCommute(
            listing_id=listing.id,
            title=listing.title,
            times=heuristic_commute(planar_distance_km(listing.point, target)),
        )
        for listing in list(listings)[:limit]
    )


# =============================================================================
# Routed lookups
# =============================================================================

@dataclass(frozen=True)
class RouteStep:
    instruction: str
    distance_text: str
    duration_text: str


@dataclass(frozen=True)
class RouteEstimate:
    distance_text: str
    duration_text: str
    distance_meters: int
    duration_seconds: int
    mode: str
    is_estimated: bool
    maps_url: str
    steps: Tuple[RouteStep, ...] = ()


def maps_directions_url(origin: LatLon, destination: LatLon, mode: str) -> str:
    """Google Maps deep link that opens turn-by-turn directions."""
    params = {
        "api": "1",
        "origin": f"{origin[0]},{origin[1]}",
        "destination": f"{destination[0]},{destination[1]}",
        "travelmode": mode,
    }
    return f"{_MAPS_DIR_URL}?{urlencode(params)}"


def estimated_route(origin: LatLon, destination: LatLon, mode: str) -> RouteEstimate:
    """Heuristic route: planar distance times the mode's minutes-per-km."""
    distance_km = planar_distance_km(origin, destination)
    minutes = round_half_up(distance_km * MINUTES_PER_KM.get(mode, MINUTES_PER_KM["walking"]))
    return RouteEstimate(
        distance_text=f"{distance_km:.1f} km",
        duration_text=f"{minutes} min",
        distance_meters=round_half_up(distance_km * 1000),
        duration_seconds=minutes * 60,
        mode=mode,
        is_estimated=True,
        maps_url=maps_directions_url(origin, destination, mode),
    )


def strip_html(text: str) -> str:
    return _TAG_RE.sub("", text or "").strip()


class GoogleDirectionsClient:
    """Thin blocking client for the Directions API."""

    def __init__(self, api_key: str, timeout: float = _API_TIMEOUT):
        self.api_key = api_key
        self.timeout = timeout

    def route(self, origin: LatLon, destination: LatLon, mode: str) -> RouteEstimate:
        """Fetch one route. Raises ProviderUnavailable on any failure."""
        params = {
            "origin": f"{origin[0]},{origin[1]}",
            "destination": f"{destination[0]},{destination[1]}",
            "mode": mode,
            "key": self.api_key,
        }
        t0 = time.time()
        try:
            # Fresh session per request; route() runs in to_thread workers.
            session = requests.Session()
            session.trust_env = False
            resp = session.get(_DIRECTIONS_URL, params=params, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            self._record(int((time.time() - t0) * 1000), 0, "exception", False, str(e))
            raise ProviderUnavailable(f"Directions request failed: {e}") from e

        elapsed_ms = int((time.time() - t0) * 1000)
        status = data.get("status", "UNKNOWN") if isinstance(data, dict) else "MALFORMED"
        if status != "OK":
            self._record(elapsed_ms, resp.status_code, status, False, status)
            raise ProviderUnavailable(f"Directions API status {status}")
        try:
            route = self._parse_leg(data["routes"][0]["legs"][0], origin, destination, mode)
        except (KeyError, IndexError, TypeError, AttributeError, ValueError) as e:
            self._record(elapsed_ms, resp.status_code, "MALFORMED", False, repr(e))
            raise ProviderUnavailable(f"Malformed Directions response: {e!r}") from e
        self._record(elapsed_ms, resp.status_code, status, True)
        return route

    @staticmethod
    def _parse_leg(leg, origin: LatLon, destination: LatLon, mode: str) -> RouteEstimate:
        steps = tuple(
            RouteStep(
                instruction=strip_html(step.get("html_instructions", "")),
                distance_text=(step.get("distance") or {}).get("text", ""),
                duration_text=(step.get("duration") or {}).get("text", ""),
            )
            for step in leg.get("steps") or []
        )
        return RouteEstimate(
            distance_text=leg["distance"]["text"],
            duration_text=leg["duration"]["text"],
            distance_meters=int(leg["distance"]["value"]),
            duration_seconds=int(leg["duration"]["value"]),
            mode=mode,
            is_estimated=False,
            maps_url=maps_directions_url(origin, destination, mode),
            steps=steps,
        )

    @staticmethod
    def _record(elapsed_ms, status_code, provider_status, success, error=None):
        trace = get_trace()
        if trace:
            trace.record_api_call(
                service="google_directions",
                endpoint="directions",
                elapsed_ms=elapsed_ms,
                status_code=status_code,
                provider_status=provider_status,
            )
        try:
            health_monitor.record_call("google_directions", success, elapsed_ms, error)
        except Exception:
            logger.debug("Health tracking failed for google_directions", exc_info=True)


class CommuteEstimator:
    """Routed commute lookups with a heuristic fallback."""

    def __init__(self, routing: Optional[GoogleDirectionsClient] = None):
        if routing is None and GOOGLE_MAPS_API_KEY:
            routing = GoogleDirectionsClient(GOOGLE_MAPS_API_KEY)
        self.routing = routing

    async def estimate_route(
        self,
        origin: LatLon,
        destination: LatLon,
        mode: str = "walking",
    ) -> RouteEstimate:
        if mode not in TRAVEL_MODES:
            raise ValueError(f"Unsupported travel mode: {mode!r}")
        if self.routing is None:
            return estimated_route(origin, destination, mode)
        try:
            return await asyncio.to_thread(self.routing.route, origin, destination, mode)
        except ProviderUnavailable as e:
            logger.warning("Routing unavailable, using estimate: %s", e)
            return estimated_route(origin, destination, mode)


class RouteSession:
    """One live routed lookup at a time, for the selected listing."""

    def __init__(self, estimator: CommuteEstimator):
        self.estimator = estimator
        self._epoch = RequestEpoch()
        self.current: Optional[RouteEstimate] = None
        self.current_listing_id: Optional[str] = None

    async def request(
        self,
        listing_id: str,
        mode: str,
        origin: LatLon,
        destination: LatLon,
    ) -> Optional[RouteEstimate]:
        """Look up a route; returns None if a newer request superseded it."""
        token = self._epoch.advance()
        route = await self.estimator.estimate_route(origin, destination, mode)
        if token.is_stale:
            logger.debug("Dropping superseded route for listing %s (%s)", listing_id, mode)
            return None
        self.current = route
        self.current_listing_id = listing_id
        return route

    def clear(self) -> None:
        self._epoch.advance()
        self.current = None
        self.current_listing_id = None
