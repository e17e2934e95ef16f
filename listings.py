"""
Listings collaborator client.

The marketplace's property service owns listings; the engine only asks
it which listings fall inside the current search radius and budget.
Listing entities carry GeoJSON coordinates ([lng, lat]); they are flipped to
the engine's (lat, lon) here and nowhere else.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import requests

import health_monitor
from config import LISTINGS_API_BASE_URL
from geo import LatLon, geojson_lnglat
from ss_trace import get_trace

logger = logging.getLogger(__name__)

_API_TIMEOUT = 10
TRENDING_LIMIT = 5


@dataclass(frozen=True)
class Listing:
    id: str
    title: str
    location: str
    price: float
    lat: float
    lon: float

    @property
    def point(self) -> LatLon:
        return (self.lat, self.lon)


def parse_listing(entity: Dict[str, Any]) -> Optional[Listing]:
    """Build a Listing, or None when the entity has no usable coordinates."""
    coords = geojson_lnglat(entity)
    if coords is None:
        return None
    lng, lat = coords
    try:
        price = float(entity.get("price") or 0)
    except (TypeError, ValueError):
        price = 0.0
    return Listing(
        id=str(entity.get("_id") or entity.get("id") or ""),
        title=entity.get("title") or "",
        location=entity.get("location") or "",
        price=price,
        lat=lat,
        lon=lng,
    )


class ListingsClient:
    def __init__(self, base_url: str = LISTINGS_API_BASE_URL, timeout: float = _API_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def fetch(
        self, center: LatLon, radius_meters: int, max_price: int
    ) -> Tuple[Listing, ...]:
        """Listings within *radius_meters* of *center* at or under *max_price*.

        Any failure yields an empty tuple; listings are never critical to
        the insights pipeline.
        """
        try:
            return await asyncio.to_thread(self._fetch_sync, center, radius_meters, max_price)
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning("Listings fetch failed: %s", e)
            return ()

    async def trending_areas(
        self, point: LatLon, limit: int = TRENDING_LIMIT
    ) -> Optional[List[Dict[str, Any]]]:
        """Areas with the most listings, as the collaborator ranks them.

        Areas keep their GeoJSON ``coordinates``; callers that want a
        distance wrap this with refresh.distance_annotated. None on failure.
        """
        params = {"lat": point[0], "lon": point[1], "limit": limit}
        try:
            data = await asyncio.to_thread(self._get_json, "trending-areas", params)
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning("Trending areas fetch failed: %s", e)
            return None
        areas = data.get("areas") if isinstance(data, dict) else data
        if not isinstance(areas, list):
            logger.warning("Unexpected trending areas payload: %s", type(areas).__name__)
            return None
        return [area for area in areas if isinstance(area, dict)]

    def _fetch_sync(self, center, radius_meters, max_price) -> Tuple[Listing, ...]:
        params = {
            "lat": center[0],
            "lng": center[1],
            "radius": radius_meters,
            "maxPrice": max_price,
        }
        data = self._get_json("properties", params)
        if isinstance(data, dict):
            data = data.get("properties") or []
        if not isinstance(data, list):
            raise ValueError(f"unexpected listings payload: {type(data).__name__}")

        listings = []
        for entity in data:
            listing = parse_listing(entity) if isinstance(entity, dict) else None
            if listing is None:
                logger.debug("Skipping listing without coordinates: %r", entity)
                continue
            listings.append(listing)
        return tuple(listings)

    def _get_json(self, endpoint: str, params: Dict[str, Any]) -> Any:
        """GET /api/<endpoint>. Runs in a worker thread."""
        trace = get_trace()
        t0 = time.time()
        status_code = 0
        try:
            session = requests.Session()
            session.trust_env = False
            resp = session.get(
                f"{self.base_url}/api/{endpoint}", params=params, timeout=self.timeout
            )
            status_code = resp.status_code
            resp.raise_for_status()
            data = resp.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            self._record(trace, endpoint, int((time.time() - t0) * 1000), status_code, False, str(e))
            raise
        self._record(trace, endpoint, int((time.time() - t0) * 1000), status_code, True)
        return data

    @staticmethod
    def _record(trace, endpoint, elapsed_ms, status_code, success, error=None):
        if trace:
            trace.record_api_call(
                service="listings",
                endpoint=endpoint,
                elapsed_ms=elapsed_ms,
                status_code=status_code,
                provider_status="OK" if success else "ERROR",
            )
        try:
            health_monitor.record_call("listings", success, elapsed_ms, error)
        except Exception:
            logger.debug("Health tracking failed for listings", exc_info=True)
