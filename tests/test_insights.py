"""Tests for insights.py — livability sub-scores, overall score and costs."""

import pytest

from amenities import Place
from insights import compute_insights, count_places, is_always_open, ramp_score, score_band
from scoring_config import SUB_SCORE_NAMES


def _place(category_id, n=0, tags=None, hours=None):
    tags = dict(tags or {})
    if hours is not None:
        tags["opening_hours"] = hours
    return Place(
        id=f"node-{category_id}-{n}",
        name=f"{category_id} {n}",
        category_id=category_id,
        lat=12.97,
        lon=77.59,
        raw_tags=tags,
        opening_hours=hours,
    )


def _many(category_id, count, **kwargs):
    return [_place(category_id, i, **kwargs) for i in range(count)]


class TestCounts:
    def test_cafes_and_laundries(self):
        places = [
            _place("restaurant", 1, tags={"amenity": "restaurant", "cuisine": "cafe"}),
            _place("restaurant", 2, tags={"amenity": "restaurant"}),
            _place("other", 3, tags={"shop": "laundry"}),
            _place("other", 4, tags={"amenity": "laundry"}),
        ]
        counts = count_places(places)
        assert counts["restaurant"] == 2
        assert counts["cafes"] == 1
        assert counts["laundries"] == 2
        assert counts["police"] == 0

    def test_cafe_outside_restaurant_category_not_counted(self):
        counts = count_places([_place("other", 1, tags={"cuisine": "cafe"})])
        assert counts["cafes"] == 0


class TestScores:
    def test_published_scores_are_read_only(self):
        insights = compute_insights(_many("restaurant", 3))
        with pytest.raises(TypeError):
            insights.scores["overall"] = 999
        with pytest.raises(TypeError):
            insights.counts["restaurant"] = 0
        assert insights.overall != 999
        assert insights.counts["restaurant"] == 3

    def test_empty_area(self):
        insights = compute_insights(())
        assert all(insights.scores[name] == 0 for name in SUB_SCORE_NAMES)
        assert insights.overall == 0
        assert insights.is_24x7_available is False
        cost = insights.cost_estimate
        assert (cost.food, cost.transport, cost.misc, cost.total) == (6000, 2000, 2000, 10000)

    def test_ten_restaurants(self):
        insights = compute_insights(_many("restaurant", 10))
        s = insights.scores
        assert s["food"] == 100
        assert s["walkability"] == 67
        assert s["wifi"] == 100
        assert s["night_safety"] == 10
        # 20 + 66.67*.05 + 10*.05 + 100*.05 = 28.83
        assert s["overall"] == 29
        assert insights.cost_estimate.food == 5000

    def test_rounding_is_half_up(self):
        # wifi = 1/8*100 = 12.5 exactly
        insights = compute_insights([_place("restaurant")])
        assert insights.scores["wifi"] == 13
        assert insights.scores["food"] == 10

    def test_scores_cap_at_100(self):
        places = (
            _many("restaurant", 60) + _many("police", 10) + _many("transport", 100)
            + _many("hospital", 20) + _many("grocery", 30) + _many("gym", 9)
        )
        insights = compute_insights(places)
        assert all(0 <= v <= 100 for v in insights.scores.values())
        assert insights.scores["food"] == 100
        assert insights.scores["night_safety"] == 100
        assert insights.scores["connectivity"] == 100

    def test_composite_health(self):
        insights = compute_insights(_many("hospital", 2) + _many("pharmacy", 1))
        assert insights.scores["health"] == 60

    def test_all_categories_saturated_overall_100(self):
        places = (
            _many("restaurant", 15) + _many("hospital", 5) + _many("transport", 15)
            + _many("police", 7) + _many("grocery", 10) + _many("gym", 3)
        )
        assert compute_insights(places).overall == 100

    def test_deterministic(self):
        places = _many("restaurant", 3) + _many("atm", 2) + [_place("police", hours="24/7")]
        assert compute_insights(places) == compute_insights(list(places))

    @pytest.mark.parametrize("category", ["restaurant", "transport", "police", "grocery", "gym"])
    def test_monotonic_in_counts(self, category):
        previous = None
        for n in range(0, 40):
            insights = compute_insights(_many(category, n))
            if previous is not None:
                assert insights.overall >= previous.overall
                for name in SUB_SCORE_NAMES:
                    assert insights.scores[name] >= previous.scores[name]
            previous = insights


class TestNightSafety:
    def test_always_open_bonus(self):
        insights = compute_insights([_place("pharmacy", hours="24/7")])
        assert insights.is_24x7_available is True
        assert insights.scores["night_safety"] == 10
        assert insights.scores["health"] == 20

    def test_police_weight(self):
        insights = compute_insights(_many("police", 2) + _many("restaurant", 5))
        # (2*30 + 5*2) / 2 = 35
        assert insights.scores["night_safety"] == 35


class TestAlwaysOpen:
    @pytest.mark.parametrize("hours", [
        "24/7", " 24/7 ", "00:00-24:00", "Mo-Su 00:00-24:00", "Mo-Su 0:00-24:00",
    ])
    def test_canonical_encodings(self, hours):
        assert is_always_open(hours) is True

    @pytest.mark.parametrize("hours", [
        None, "", "Mo-Fr 00:00-24:00", "24/7; PH off", "09:00-21:00", "24x7",
    ])
    def test_everything_else(self, hours):
        assert is_always_open(hours) is False


class TestCosts:
    def test_floors(self):
        insights = compute_insights(_many("restaurant", 50) + _many("transport", 60))
        cost = insights.cost_estimate
        assert cost.food == 3000
        assert cost.transport == 500
        assert cost.total == 3000 + 500 + 2000

    def test_transport_discount(self):
        assert compute_insights(_many("transport", 10)).cost_estimate.transport == 1500


class TestHelpers:
    def test_ramp_score(self):
        assert ramp_score(5, 10) == 50
        assert ramp_score(30, 10) == 100

    def test_score_band(self):
        assert score_band(85) == "Perfect for students"
        assert score_band(60) == "Great location"
        assert score_band(45) == "Average facilities"
        assert score_band(10) == "Limited facilities"
