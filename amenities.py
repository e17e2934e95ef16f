"""
Amenity aggregation — nearby points of interest from OpenStreetMap.

Given a centre, a radius and the enabled categories, builds one combined
Overpass query, sends it through overpass_http (mirror failover, cache),
and turns the returned elements into immutable Place records.

Parsing rules:
  - Coordinates come from the element itself (nodes) or from the
    ``center`` object that ``out center`` adds to ways. Elements with
    neither are dropped.
  - Display name falls back name -> operator -> "Unnamed". A missing
    name never drops an element.
  - Category is the first enabled category, in declaration order, whose
    tag matchers hit one of the element's tags.

Failures reach the caller as AllEndpointsFailed (every mirror failed;
worth a retry with fewer categories or a smaller radius) or Aborted (the
caller's request was superseded; never shown to the user).
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple

from categories import CategoryFilter, classify
from epoch import EpochToken
from geo import LatLon
from overpass_http import (
    KIND_SERVER_BUSY,
    KIND_TIMEOUT,
    AttemptFailure,
    OverpassHTTPClient,
    OverpassUnavailableError,
    QueryAborted,
)

logger = logging.getLogger(__name__)

UNNAMED_PLACE = "Unnamed"

# Server-side budget embedded in the query; the client budget per
# mirror attempt (config.OVERPASS_ATTEMPT_TIMEOUT) is slightly larger.
_QUERY_TIMEOUT_SECONDS = 20


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class Place:
    """A classified point of interest. Never mutated after parsing."""
    id: str                         # "{element type}-{element id}", e.g. "node-123"
    name: str
    category_id: str
    lat: float
    lon: float
    raw_tags: Mapping[str, str] = field(default_factory=dict, compare=False, hash=False)
    opening_hours: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "raw_tags", MappingProxyType(dict(self.raw_tags)))

    @property
    def point(self) -> LatLon:
        return (self.lat, self.lon)


# =============================================================================
# ERRORS
# =============================================================================

class AmenityFetchError(Exception):
    """Base class for recoverable amenity aggregation failures."""


class AllEndpointsFailed(AmenityFetchError):
    """Every Overpass mirror failed for this query."""

    def __init__(
        self,
        failures: Sequence[AttemptFailure],
        category_count: int,
        radius_meters: int,
    ):
        self.failures = tuple(failures)
        self.attempted = len(self.failures)
        self.category_count = category_count
        self.radius_meters = radius_meters
        super().__init__(
            f"All {self.attempted} map data endpoints failed "
            f"({category_count} categories, {radius_meters}m radius)"
        )

    @property
    def all_timed_out(self) -> bool:
        return bool(self.failures) and all(f.kind == KIND_TIMEOUT for f in self.failures)

    @property
    def server_busy(self) -> bool:
        return any(f.kind == KIND_SERVER_BUSY for f in self.failures)

    def user_message(self) -> str:
        """Summarised, actionable message for the insights panel."""
        radius_km = f"{self.radius_meters / 1000:.1f}km"
        if self.all_timed_out:
            return (
                "Request timed out. Try selecting fewer categories "
                f"(currently {self.category_count} enabled) or reduce the search radius."
            )
        if self.server_busy:
            return (
                "Map data servers are busy. Try: 1) Reduce search radius "
                f"(currently {radius_km}) 2) Disable some categories "
                "3) Wait a moment and refresh"
            )
        return (
            "All map data servers are unavailable. Try again in a moment. "
            f"({self.category_count} categories, {radius_km} radius)"
        )


class Aborted(AmenityFetchError):
    """The request was superseded by a newer one before it completed."""


class MalformedElement(ValueError):
    """A single provider element cannot be turned into a Place."""


# =============================================================================
# QUERY BUILDING
# =============================================================================

def build_amenity_query(
    center: LatLon,
    radius_meters: int,
    categories: Iterable[CategoryFilter],
) -> str:
    """Build one Overpass QL query covering every matcher of *categories*.

    Each ``key=value`` matcher contributes a node clause and a way clause
    bounded by ``around:radius,lat,lon``; ``out center`` gives ways a
    centroid so everything comes back with usable coordinates.
    """
    lat, lon = center
    around = f"(around:{int(radius_meters)},{lat},{lon})"
    clauses = []
    for category in categories:
        for key, value in category.tag_matchers:
            clauses.append(f'  node["{key}"="{value}"]{around};')
            clauses.append(f'  way["{key}"="{value}"]{around};')
    body = "\n".join(clauses)
    return f"[out:json][timeout:{_QUERY_TIMEOUT_SECONDS}];\n(\n{body}\n);\nout center;"


# =============================================================================
# PARSING
# =============================================================================

def parse_element(element: Any, categories: Sequence[CategoryFilter]) -> Place:
    """Convert one Overpass element into a Place.

    Raises MalformedElement when the element is not an object or has no
    usable coordinates.
    """
    if not isinstance(element, dict):
        raise MalformedElement(f"element is {type(element).__name__}, not an object")

    lat = element.get("lat")
    lon = element.get("lon")
    if lat is None or lon is None:
        center = element.get("center") or {}
        lat = center.get("lat") if isinstance(center, dict) else None
        lon = center.get("lon") if isinstance(center, dict) else None
    if lat is None or lon is None:
        raise MalformedElement(
            f"{element.get('type')}-{element.get('id')} has no coordinates"
        )
    try:
        lat = float(lat)
        lon = float(lon)
    except (TypeError, ValueError):
        raise MalformedElement(
            f"{element.get('type')}-{element.get('id')} has non-numeric coordinates"
        )

    raw_tags = element.get("tags") or {}
    tags = {str(k): str(v) for k, v in raw_tags.items()} if isinstance(raw_tags, dict) else {}

    return Place(
        id=f"{element.get('type')}-{element.get('id')}",
        name=tags.get("name") or tags.get("operator") or UNNAMED_PLACE,
        category_id=classify(tags, categories),
        lat=lat,
        lon=lon,
        raw_tags=tags,
        opening_hours=tags.get("opening_hours"),
    )


def parse_elements(
    data: Dict[str, Any],
    categories: Sequence[CategoryFilter],
) -> Tuple[Place, ...]:
    """Parse an Overpass response, dropping malformed elements one by one."""
    places = []
    dropped = 0
    for element in data.get("elements") or []:
        try:
            places.append(parse_element(element, categories))
        except MalformedElement as e:
            dropped += 1
            logger.debug("Dropping malformed Overpass element: %s", e)
    if dropped:
        logger.debug("Dropped %d malformed element(s) of %d", dropped, dropped + len(places))
    return tuple(places)


# =============================================================================
# AGGREGATOR
# =============================================================================

class AmenityAggregator:
    """Fetches and classifies amenities around a point."""

    def __init__(self, client: Optional[OverpassHTTPClient] = None):
        self.client = client or OverpassHTTPClient()

    async def fetch_amenities(
        self,
        center: LatLon,
        radius_meters: int,
        enabled_categories: Sequence[CategoryFilter],
        epoch_token: Optional[EpochToken] = None,
    ) -> Tuple[Place, ...]:
        """Return the classified places around *center*.

        Raises:
            AllEndpointsFailed: every mirror failed.
            Aborted: *epoch_token* went stale before the answer was used.
        """
        categories = tuple(enabled_categories)
        if not categories:
            return ()

        def _superseded() -> bool:
            return epoch_token is not None and epoch_token.is_stale

        query = build_amenity_query(center, radius_meters, categories)
        try:
            data = await self.client.query_async(
                query, caller="amenities", should_abort=_superseded
            )
        except QueryAborted as e:
            raise Aborted(str(e)) from e
        except OverpassUnavailableError as e:
            raise AllEndpointsFailed(e.failures, len(categories), radius_meters) from e

        if _superseded():
            raise Aborted(f"amenity fetch for epoch {epoch_token.value} superseded")

        places = parse_elements(data, categories)
        logger.info(
            "Fetched %d places (%d categories, %dm radius)",
            len(places), len(categories), radius_meters,
        )
        return places
