"""Nearest-institution resolution over a fetched place set."""

from dataclasses import dataclass
from typing import List, Optional, Sequence

from amenities import Place
from categories import INSTITUTION_CATEGORY_ID
from geo import LatLon, planar_distance_km


@dataclass(frozen=True)
class NearestInstitution:
    place: Place
    distance_km: float


def rank_institutions(
    places: Sequence[Place],
    point: LatLon,
    category_id: str = INSTITUTION_CATEGORY_ID,
) -> List[NearestInstitution]:
    """All institutions in *places*, nearest first.

    The sort is stable, so equidistant institutions keep their fetch
    order. *places* itself is never reordered.
    """
    candidates = [
        NearestInstitution(place, planar_distance_km(point, place.point))
        for place in places
        if place.category_id == category_id
    ]
    return sorted(candidates, key=lambda c: c.distance_km)


def nearest_institution(
    places: Sequence[Place],
    point: LatLon,
    category_id: str = INSTITUTION_CATEGORY_ID,
) -> Optional[NearestInstitution]:
    """The closest institution to *point*, or None if there are none."""
    ranked = rank_institutions(places, point, category_id)
    return ranked[0] if ranked else None
