#!/usr/bin/env python3
"""
Evaluate a location from the command line.

Resolves a place name (or takes --lat/--lon), runs one refresh through
the same RefreshCoordinator the app uses, and prints the livability
insights, the nearest institution and commute estimates.

    python evaluate_location.py "Koramangala, Bangalore" --radius 2000
    python evaluate_location.py --lat 12.9352 --lon 77.6245 --json
"""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

from categories import CategoryFilters
from config import DEFAULT_MAX_PRICE, DEFAULT_RADIUS_METERS, configure_logging, init_sentry
from insights import score_band
from refresh import LocationSnapshot, RefreshCoordinator, RefreshParams, RefreshState


def _build_categories(enable: Optional[List[str]]) -> CategoryFilters:
    categories = CategoryFilters()
    if enable:
        categories.set_all(False)
        for category_id in enable:
            categories.set_enabled(category_id, True)
    return categories


def snapshot_to_dict(snapshot: LocationSnapshot) -> dict:
    """Plain-dict view of a snapshot for JSON output."""
    insights = snapshot.insights
    nearest = snapshot.nearest_institution
    weather = snapshot.context.get("weather")
    return {
        "location": snapshot.params.location_name,
        "coordinates": {"lat": snapshot.params.center[0], "lon": snapshot.params.center[1]},
        "radius_meters": snapshot.params.radius_meters,
        "state": snapshot.state.value,
        "error": snapshot.error_message,
        "place_count": len(snapshot.places),
        "counts": dict(insights.counts) if insights else None,
        "scores": dict(insights.scores) if insights else None,
        "score_band": score_band(insights.overall) if insights else None,
        "cost_estimate": {
            "food": insights.cost_estimate.food,
            "transport": insights.cost_estimate.transport,
            "misc": insights.cost_estimate.misc,
            "total": insights.cost_estimate.total,
        } if insights else None,
        "is_24x7_available": insights.is_24x7_available if insights else None,
        "nearest_institution": {
            "name": nearest.place.name,
            "distance_km": round(nearest.distance_km, 2),
        } if nearest else None,
        "commute": [
            {
                "listing_id": c.listing_id,
                "title": c.title,
                "distance_km": round(c.times.distance_km, 2),
                "walk_min": c.times.walk_minutes,
                "cycle_min": c.times.cycle_minutes,
                "auto_min": c.times.motorized_minutes,
            }
            for c in snapshot.commute
        ],
        "weather": {
            "temperature_c": weather.temperature_c,
            "description": weather.description,
        } if weather else None,
        "trending_areas": [
            {"name": area.get("name"), "distance_km": area.get("distance")}
            for area in snapshot.context.get("trending") or []
        ],
    }


def format_snapshot(snapshot: LocationSnapshot) -> str:
    lines = []
    name = snapshot.params.location_name or "{:.4f}, {:.4f}".format(*snapshot.params.center)
    lines.append("=" * 60)
    lines.append(f"LOCATION: {name}  (radius {snapshot.params.radius_meters / 1000:.1f} km)")
    lines.append("=" * 60)

    if snapshot.state == RefreshState.FAILED:
        lines.append(f"\n  {snapshot.error_message}")
        return "\n".join(lines)

    insights = snapshot.insights
    lines.append(f"\nOverall: {insights.overall}/100  ({score_band(insights.overall)})")
    lines.append(f"Places found: {len(snapshot.places)}")
    lines.append("\nSub-scores:")
    for key, value in insights.scores.items():
        if key == "overall":
            continue
        lines.append(f"  {key.replace('_', ' ').title():<16} {value:>3}")
    if insights.is_24x7_available:
        lines.append("  (24/7 services nearby)")

    cost = insights.cost_estimate
    lines.append("\nEstimated monthly costs (excl. rent):")
    lines.append(f"  Food       ₹{cost.food:,}")
    lines.append(f"  Transport  ₹{cost.transport:,}")
    lines.append(f"  Misc       ₹{cost.misc:,}")
    lines.append(f"  Total      ₹{cost.total:,}")

    nearest = snapshot.nearest_institution
    if nearest:
        lines.append(f"\nNearest institution: {nearest.place.name} ({nearest.distance_km:.1f} km)")
    else:
        lines.append("\nNo institution within the search radius.")

    if snapshot.commute:
        lines.append("\nCommute from listings:")
        for c in snapshot.commute:
            t = c.times
            lines.append(
                f"  {c.title[:30]:<30} walk {t.walk_minutes} min, "
                f"bike {t.cycle_minutes} min, auto {t.motorized_minutes} min"
            )

    weather = snapshot.context.get("weather")
    if weather:
        lines.append(f"\nWeather now: {weather.temperature_c:.0f}°C, {weather.description}")

    trending = snapshot.context.get("trending")
    if trending:
        lines.append("\nTrending areas:")
        for area in trending:
            distance = area.get("distance")
            suffix = f" ({distance} km)" if distance is not None else ""
            lines.append(f"  {area.get('name') or 'Unnamed'}{suffix}")
    return "\n".join(lines)


async def _evaluate(args, categories: CategoryFilters) -> Optional[LocationSnapshot]:
    params = RefreshParams(radius_meters=args.radius, max_price=args.budget)
    coordinator = RefreshCoordinator(categories=categories, params=params)
    if args.lat is not None and args.lon is not None:
        return await coordinator.use_current_location((args.lat, args.lon))
    return await coordinator.search(args.query)


def main():
    parser = argparse.ArgumentParser(
        description="Score a location for student living: amenities, nearest college, commute"
    )
    parser.add_argument("query", nargs="?", help="Place name to search for")
    parser.add_argument("--lat", type=float, help="Latitude (use with --lon instead of a query)")
    parser.add_argument("--lon", type=float, help="Longitude")
    parser.add_argument(
        "--radius", type=int, default=DEFAULT_RADIUS_METERS,
        help=f"Search radius in meters (default {DEFAULT_RADIUS_METERS})",
    )
    parser.add_argument(
        "--budget", type=int, default=DEFAULT_MAX_PRICE,
        help=f"Maximum monthly rent for listings (default {DEFAULT_MAX_PRICE})",
    )
    parser.add_argument(
        "--categories", nargs="+", metavar="ID",
        help="Enable only these categories (colleges are always on)",
    )
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    parser.add_argument("--log-level", default=None, help="Logging level (default from LOG_LEVEL)")

    args = parser.parse_args()

    if not args.query and (args.lat is None or args.lon is None):
        parser.print_help()
        sys.exit(1)

    configure_logging(args.log_level.upper() if args.log_level else None)
    init_sentry()

    try:
        categories = _build_categories(args.categories)
    except KeyError as e:
        print(f"Error: unknown category {e}")
        sys.exit(1)

    snapshot = asyncio.run(_evaluate(args, categories))
    if snapshot is None:
        print(f"Error: no location found for {args.query!r}")
        sys.exit(1)

    if args.json:
        print(json.dumps(snapshot_to_dict(snapshot), indent=2, ensure_ascii=False))
    else:
        print(format_snapshot(snapshot))

    if snapshot.state == RefreshState.FAILED:
        sys.exit(2)


if __name__ == "__main__":
    main()
