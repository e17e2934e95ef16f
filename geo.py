"""
Planar distance helpers.

All engine distances use the equirectangular shortcut
``sqrt(dLat² + dLon²) * 111`` (degrees to km at the equator). It is not
geodesically exact: away from the equator it overstates east-west
distance. Score thresholds and commute constants were tuned against this
formula, so it is used everywhere, including user-facing distances.
"""

import math
from typing import Any, Dict, Iterable, List, Optional, Tuple

# (lat, lon) is the engine's internal ordering. Collaborators that speak
# GeoJSON ([lng, lat]) are converted at their parse boundary.
LatLon = Tuple[float, float]

KM_PER_DEGREE = 111


def planar_distance_km(a: LatLon, b: LatLon) -> float:
    """Approximate distance in km between two (lat, lon) points."""
    dlat = a[0] - b[0]
    dlon = a[1] - b[1]
    return math.sqrt(dlat * dlat + dlon * dlon) * KM_PER_DEGREE


def round_half_up(value: float) -> int:
    """Round to the nearest integer, .5 away from zero for positives.

    Python's round() uses banker's rounding (round(2.5) -> 2), which
    produces unintuitive scores and minute counts at .5 boundaries.
    """
    return int(math.floor(value + 0.5))


def annotate_distances(areas: Iterable[Dict[str, Any]], point: LatLon) -> List[Dict[str, Any]]:
    """Attach a ``distance`` (km, 1 decimal) to collaborator area dicts.

    Areas carry GeoJSON-style ``coordinates.coordinates = [lng, lat]``.
    Areas without coordinates get ``distance = None``. Inputs are not
    mutated; new dicts are returned in the same order.
    """
    out: List[Dict[str, Any]] = []
    for area in areas:
        coords = geojson_lnglat(area)
        distance: Optional[float] = None
        if coords is not None:
            lng, lat = coords
            distance = round_half_up(planar_distance_km((lat, lng), point) * 10) / 10
        out.append({**area, "distance": distance})
    return out


def geojson_lnglat(entity: Dict[str, Any]) -> Optional[Tuple[float, float]]:
    """Extract [lng, lat] from ``coordinates.coordinates`` or ``coordinates``."""
    coords = entity.get("coordinates")
    if isinstance(coords, dict):
        coords = coords.get("coordinates")
    if not isinstance(coords, (list, tuple)) or len(coords) < 2:
        return None
    try:
        return float(coords[0]), float(coords[1])
    except (TypeError, ValueError):
        return None
