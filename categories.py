"""
Amenity category filters.

A category maps a set of OSM ``key=value`` tags to one of the buckets the
insights panel counts. Declaration order is significant: an element
whose tags match two enabled categories is classified into whichever
appears first in DEFAULT_CATEGORIES.

The institution category (colleges) is what the product exists for, so
it is locked on. CategoryFilters enforces that at every mutation method;
UI code cannot switch it off by going around a toggle button.
"""

import logging
from dataclasses import dataclass, replace
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

INSTITUTION_CATEGORY_ID = "college"
UNCLASSIFIED_CATEGORY_ID = "other"

TagMatcher = Tuple[str, str]


@dataclass(frozen=True)
class CategoryFilter:
    """One toggleable amenity category."""
    id: str
    display_name: str
    tag_matchers: Tuple[TagMatcher, ...]
    enabled: bool = False

    def matches(self, tags: Dict[str, str]) -> bool:
        """True if any of the element's tags equals one of our matchers."""
        return any(tags.get(key) == value for key, value in self.tag_matchers)


DEFAULT_CATEGORIES: Tuple[CategoryFilter, ...] = (
    CategoryFilter(
        "restaurant", "Restaurants",
        (("amenity", "restaurant"), ("amenity", "fast_food")),
        enabled=True,
    ),
    # Off by default: hospitals and clinics roughly double query time.
    CategoryFilter(
        "hospital", "Hospitals",
        (("amenity", "hospital"), ("amenity", "clinic")),
    ),
    CategoryFilter(
        "transport", "Transport",
        (("highway", "bus_stop"), ("public_transport", "station")),
        enabled=True,
    ),
    CategoryFilter(
        INSTITUTION_CATEGORY_ID, "Colleges",
        (
            ("amenity", "university"),
            ("amenity", "college"),
            ("building", "university"),
            ("building", "college"),
        ),
        enabled=True,
    ),
    CategoryFilter("atm", "ATMs", (("amenity", "atm"), ("amenity", "bank"))),
    CategoryFilter(
        "gym", "Gyms",
        (("leisure", "fitness_centre"), ("leisure", "sports_centre")),
    ),
    CategoryFilter(
        "grocery", "Grocery",
        (("shop", "supermarket"), ("shop", "convenience"), ("shop", "grocery")),
    ),
    CategoryFilter("pharmacy", "Pharmacy", (("amenity", "pharmacy"),)),
    CategoryFilter("police", "Police", (("amenity", "police"),)),
)


def classify(tags: Dict[str, str], categories: Sequence[CategoryFilter]) -> str:
    """Return the id of the first category whose matchers hit *tags*.

    *categories* is searched in order; returns UNCLASSIFIED_CATEGORY_ID when
    nothing matches.
    """
    for category in categories:
        if category.matches(tags):
            return category.id
    return UNCLASSIFIED_CATEGORY_ID


class CategoryFilters:
    """Ordered, mutable set of category toggles.

    Each mutator returns True if the enabled set changed, so callers know
    whether a refresh is warranted.
    """

    def __init__(
        self,
        categories: Sequence[CategoryFilter] = DEFAULT_CATEGORIES,
        locked_id: Optional[str] = INSTITUTION_CATEGORY_ID,
    ):
        self._locked_id = locked_id
        self._categories: List[CategoryFilter] = [
            replace(c, enabled=True) if c.id == locked_id else c
            for c in categories
        ]

    def __iter__(self) -> Iterator[CategoryFilter]:
        return iter(tuple(self._categories))

    def __len__(self) -> int:
        return len(self._categories)

    def get(self, category_id: str) -> CategoryFilter:
        for category in self._categories:
            if category.id == category_id:
                return category
        raise KeyError(category_id)

    def enabled(self) -> Tuple[CategoryFilter, ...]:
        """Enabled categories, in declaration order."""
        return tuple(c for c in self._categories if c.enabled)

    def set_enabled(self, category_id: str, enabled: bool) -> bool:
        current = self.get(category_id)
        if category_id == self._locked_id and not enabled:
            logger.info("Ignoring attempt to disable locked category %s", category_id)
            return False
        if current.enabled == enabled:
            return False
        self._categories = [
            replace(c, enabled=enabled) if c.id == category_id else c
            for c in self._categories
        ]
        return True

    def toggle(self, category_id: str) -> bool:
        return self.set_enabled(category_id, not self.get(category_id).enabled)

    def set_all(self, enabled: bool) -> bool:
        """Enable or disable every category; the locked one stays enabled."""
        before = self.enabled()
        self._categories = [
            replace(c, enabled=True if c.id == self._locked_id else enabled)
            for c in self._categories
        ]
        return self.enabled() != before
