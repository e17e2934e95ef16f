"""Tests for institutions.py and the planar distance it relies on."""

import pytest

from amenities import Place
from geo import KM_PER_DEGREE, annotate_distances, geojson_lnglat, planar_distance_km, round_half_up
from institutions import nearest_institution, rank_institutions

ORIGIN = (12.0, 77.0)


def _college(name, km_north):
    """A college *km_north* planar km due north of ORIGIN."""
    return Place(
        id=f"node-{name}",
        name=name,
        category_id="college",
        lat=ORIGIN[0] + km_north / KM_PER_DEGREE,
        lon=ORIGIN[1],
    )


class TestNearestInstitution:
    def test_picks_closest(self):
        places = [_college("A", 0.5), _college("B", 2.0), _college("C", 0.1)]
        nearest = nearest_institution(places, ORIGIN)
        assert nearest.place.name == "C"
        assert nearest.distance_km == pytest.approx(0.1)

    def test_input_not_reordered(self):
        places = [_college("A", 0.5), _college("B", 2.0), _college("C", 0.1)]
        before = list(places)
        nearest_institution(places, ORIGIN)
        assert places == before

    def test_none_without_institutions(self):
        restaurant = Place("node-1", "R", "restaurant", 12.0, 77.0)
        assert nearest_institution([restaurant], ORIGIN) is None
        assert nearest_institution([], ORIGIN) is None

    def test_ignores_other_categories(self):
        close_restaurant = Place("node-1", "R", "restaurant", 12.0, 77.0)
        far_college = _college("Far", 3.0)
        nearest = nearest_institution([close_restaurant, far_college], ORIGIN)
        assert nearest.place.name == "Far"

    def test_rank_is_stable_for_ties(self):
        places = [_college("First", 1.0), _college("Second", 1.0), _college("Near", 0.2)]
        ranked = rank_institutions(places, ORIGIN)
        assert [r.place.name for r in ranked] == ["Near", "First", "Second"]


class TestGeo:
    def test_planar_distance_uses_111_km_per_degree(self):
        assert planar_distance_km((0.0, 0.0), (1.0, 0.0)) == pytest.approx(111)
        assert planar_distance_km((0.0, 0.0), (0.0, 1.0)) == pytest.approx(111)
        assert planar_distance_km((0.0, 0.0), (3.0, 4.0)) == pytest.approx(555)

    def test_round_half_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(0.5) == 1
        assert round_half_up(2.49) == 2

    def test_geojson_is_lng_first(self):
        assert geojson_lnglat({"coordinates": {"coordinates": [77.5, 12.9]}}) == (77.5, 12.9)
        assert geojson_lnglat({"coordinates": [77.5, 12.9]}) == (77.5, 12.9)
        assert geojson_lnglat({"coordinates": {}}) is None
        assert geojson_lnglat({}) is None

    def test_annotate_distances(self):
        areas = [
            {"name": "Near", "coordinates": {"coordinates": [77.0, 12.01]}},
            {"name": "Nowhere"},
        ]
        out = annotate_distances(areas, ORIGIN)
        assert out[0]["distance"] == 1.1
        assert out[1]["distance"] is None
        assert "distance" not in areas[0]
