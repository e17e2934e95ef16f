"""
Location insights — the composite livability score for a set of places.

compute_insights() is a pure function of the place tuple: same places
(in the same order) in, same LocationInsights out. It performs no I/O
and never suspends, so the refresh coordinator can call it inline once
an amenity fetch has been accepted.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Sequence

from amenities import Place
from categories import DEFAULT_CATEGORIES
from geo import round_half_up
from scoring_config import SCORING_MODEL, SUB_SCORE_NAMES, ScoringModel

# Counted per category id, plus two tag-derived extras.
COUNT_KEYS = tuple(c.id for c in DEFAULT_CATEGORIES) + ("cafes", "laundries")


@dataclass(frozen=True)
class CostEstimate:
    """Estimated monthly living costs (INR), excluding rent."""
    food: int
    transport: int
    misc: int
    total: int


@dataclass(frozen=True)
class LocationInsights:
    """Aggregate result of one scoring pass."""
    counts: Mapping[str, int]
    scores: Mapping[str, int]   # nine sub-scores + "overall", each 0-100
    cost_estimate: CostEstimate
    is_24x7_available: bool
    model_version: str = ""

    def __post_init__(self):
        # Published to subscribers; read-only views over private copies.
        object.__setattr__(self, "counts", MappingProxyType(dict(self.counts)))
        object.__setattr__(self, "scores", MappingProxyType(dict(self.scores)))

    @property
    def overall(self) -> int:
        return self.scores["overall"]


def count_places(places: Iterable[Place]) -> Dict[str, int]:
    """Tally places per category id, plus cafes and laundries."""
    counts = {key: 0 for key in COUNT_KEYS}
    for place in places:
        if place.category_id in counts:
            counts[place.category_id] += 1
        if place.category_id == "restaurant" and place.raw_tags.get("cuisine") == "cafe":
            counts["cafes"] += 1
        if place.raw_tags.get("shop") == "laundry" or place.raw_tags.get("amenity") == "laundry":
            counts["laundries"] += 1
    return counts


def is_always_open(opening_hours, model: ScoringModel = SCORING_MODEL) -> bool:
    """True if *opening_hours* is one of the canonical 24/7 encodings."""
    if not opening_hours:
        return False
    return opening_hours.strip() in model.always_open_encodings


def ramp_score(count: float, threshold: float) -> float:
    """Saturating linear ramp, capped at exactly 100."""
    return min(100.0, (count / threshold) * 100)


def compute_insights(
    places: Sequence[Place],
    model: ScoringModel = SCORING_MODEL,
) -> LocationInsights:
    """Score *places* into a LocationInsights."""
    counts = count_places(places)
    always_open = any(is_always_open(p.opening_hours, model) for p in places)

    raw: Dict[str, float] = {}
    for name, ramp in model.ramps.items():
        raw[name] = ramp_score(sum(counts[k] for k in ramp.count_keys), ramp.threshold)

    ns = model.night_safety
    raw["night_safety"] = min(
        100.0,
        (
            counts["police"] * ns.police_weight
            + (ns.always_open_bonus if always_open else 0)
            + counts["restaurant"] * ns.food_weight
        ) / ns.divisor,
    )

    # overall is weighted from the unrounded sub-scores
    overall = round_half_up(sum(raw[name] * model.weights[name] for name in SUB_SCORE_NAMES))

    scores = {name: round_half_up(raw[name]) for name in SUB_SCORE_NAMES}
    scores["overall"] = overall

    cost = model.cost
    food_cost = max(
        cost.food_floor,
        cost.food_baseline - counts["restaurant"] * cost.food_discount_per_restaurant,
    )
    transport_cost = max(
        cost.transport_floor,
        cost.transport_baseline - counts["transport"] * cost.transport_discount_per_stop,
    )

    return LocationInsights(
        counts=counts,
        scores=scores,
        cost_estimate=CostEstimate(
            food=food_cost,
            transport=transport_cost,
            misc=cost.misc,
            total=food_cost + transport_cost + cost.misc,
        ),
        is_24x7_available=always_open,
        model_version=model.version,
    )


def score_band(overall: int) -> str:
    """Short verdict for the headline score."""
    if overall >= 80:
        return "Perfect for students"
    if overall >= 60:
        return "Great location"
    if overall >= 40:
        return "Average facilities"
    return "Limited facilities"
