"""
Scoring model configuration for the StayScout insights panel.

Owns every numeric constant that affects the livability score and the
monthly cost estimate. Category definitions live in categories.py;
search parameters live in config.py.

Frozen dataclasses provide type checking and IDE support without
the indirection of YAML/JSON config files.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Tuple


# =============================================================================
# Dataclasses
# =============================================================================

@dataclass(frozen=True)
class RampConfig:
    """A saturating linear sub-score: min(100, count / threshold * 100).

    *count_keys* are summed before ramping, so a composite sub-score
    (e.g. health = hospitals + pharmacies) is just a ramp over two keys.
    """
    count_keys: Tuple[str, ...]
    threshold: float  # count at which the area is "fully served"


@dataclass(frozen=True)
class NightSafetyConfig:
    """night_safety = min(100, (police*w + open_bonus + food*w) / divisor)."""
    police_weight: float = 30
    always_open_bonus: float = 20
    food_weight: float = 2
    divisor: float = 2


@dataclass(frozen=True)
class CostConfig:
    """Monthly cost estimate (INR).

    Each line starts from a baseline and is discounted per unit of
    nearby supply, floored at a minimum.
    """
    food_baseline: int = 6000
    food_discount_per_restaurant: int = 100
    food_floor: int = 3000
    transport_baseline: int = 2000
    transport_discount_per_stop: int = 50
    transport_floor: int = 500
    misc: int = 2000


@dataclass(frozen=True)
class ScoringModel:
    """Top-level container for all scoring parameters.

    A single module-level instance (SCORING_MODEL) is the source of truth.
    Bump `version` on every change that alters score outputs.
    """
    version: str
    ramps: Dict[str, RampConfig]
    night_safety: NightSafetyConfig
    weights: Dict[str, float]
    cost: CostConfig
    always_open_encodings: FrozenSet[str]


# =============================================================================
# SCORING_MODEL: current production values
# =============================================================================

# Sub-score order is the order the insights panel lists them in.
_RAMPS = {
    "food": RampConfig(("restaurant",), 10),
    "health": RampConfig(("hospital", "pharmacy"), 5),
    "connectivity": RampConfig(("transport",), 15),
    "safety": RampConfig(("police",), 2),
    "convenience": RampConfig(("grocery", "atm"), 10),
    "fitness": RampConfig(("gym",), 3),
    "walkability": RampConfig(("restaurant", "grocery", "atm"), 15),
    "wifi": RampConfig(("cafes", "restaurant"), 8),
}

_WEIGHTS = {
    "food": 0.20,
    "health": 0.10,
    "connectivity": 0.20,
    "safety": 0.15,
    "convenience": 0.15,
    "fitness": 0.05,
    "walkability": 0.05,
    "night_safety": 0.05,
    "wifi": 0.05,
}

# Canonical OSM opening_hours values meaning "always open". Matched
# exactly after trimming whitespace; anything else (including day-range
# variants not listed here) counts as not round-the-clock.
_ALWAYS_OPEN_ENCODINGS = frozenset({
    "24/7",
    "00:00-24:00",
    "Mo-Su 00:00-24:00",
    "Mo-Su 0:00-24:00",
})

SUB_SCORE_NAMES = (
    "food",
    "health",
    "connectivity",
    "safety",
    "convenience",
    "fitness",
    "walkability",
    "night_safety",
    "wifi",
)

SCORING_MODEL = ScoringModel(
    version="1.0.0",
    ramps=_RAMPS,
    night_safety=NightSafetyConfig(),
    weights=_WEIGHTS,
    cost=CostConfig(),
    always_open_encodings=_ALWAYS_OPEN_ENCODINGS,
)


# Validate at import time (ValueError, not assert, so validation is
# never stripped by python -O).
if set(SCORING_MODEL.weights) != set(SUB_SCORE_NAMES):
    raise ValueError(
        f"Scoring weights cover {sorted(SCORING_MODEL.weights)}, "
        f"expected {sorted(SUB_SCORE_NAMES)}"
    )
if abs(sum(SCORING_MODEL.weights.values()) - 1.0) >= 0.001:
    raise ValueError(
        f"Scoring weights sum to {sum(SCORING_MODEL.weights.values())}, expected 1.0"
    )
for _name, _ramp in SCORING_MODEL.ramps.items():
    if _ramp.threshold <= 0:
        raise ValueError(f"Ramp {_name!r} threshold must be positive")
