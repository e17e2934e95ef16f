"""Tests for listings.py — the listings collaborator client."""

import asyncio
from unittest.mock import MagicMock, patch

import requests

import health_monitor
from listings import Listing, ListingsClient, parse_listing


def _mock_response(status_code=200, json_data=None):
    resp = MagicMock(spec=requests.Response)
    resp.status_code = status_code
    resp.ok = 200 <= status_code < 300
    if status_code >= 400:
        resp.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status_code}")
    resp.json.return_value = json_data
    return resp


ENTITY = {
    "_id": "abc123",
    "title": "Sunrise PG",
    "location": "HSR Layout",
    "price": 9500,
    "coordinates": {"type": "Point", "coordinates": [77.64, 12.91]},
}


class TestParseListing:
    def test_lng_lat_converted(self):
        listing = parse_listing(ENTITY)
        assert listing == Listing("abc123", "Sunrise PG", "HSR Layout", 9500.0, 12.91, 77.64)
        assert listing.point == (12.91, 77.64)

    def test_plain_id_field(self):
        entity = dict(ENTITY)
        del entity["_id"]
        entity["id"] = 7
        assert parse_listing(entity).id == "7"

    def test_missing_coordinates(self):
        assert parse_listing({"_id": "x", "title": "No map pin"}) is None


class TestListingsClient:
    def test_fetch_list_payload(self):
        client = ListingsClient(base_url="http://listings.example/")
        with patch.object(
            requests.Session, "get", return_value=_mock_response(200, [ENTITY, {"_id": "nopin"}])
        ) as mock_get:
            listings = asyncio.run(client.fetch((12.9, 77.6), 1500, 20000))

        assert [l.id for l in listings] == ["abc123"]
        args, kwargs = mock_get.call_args
        assert args[0] == "http://listings.example/api/properties"
        assert kwargs["params"] == {"lat": 12.9, "lng": 77.6, "radius": 1500, "maxPrice": 20000}

    def test_fetch_wrapped_payload(self):
        client = ListingsClient(base_url="http://listings.example")
        with patch.object(
            requests.Session, "get", return_value=_mock_response(200, {"properties": [ENTITY]})
        ):
            listings = asyncio.run(client.fetch((12.9, 77.6), 1500, 20000))
        assert len(listings) == 1

    def test_failure_is_empty(self):
        client = ListingsClient(base_url="http://listings.example")
        with patch.object(requests.Session, "get", return_value=_mock_response(500)):
            assert asyncio.run(client.fetch((12.9, 77.6), 1500, 20000)) == ()

        status = health_monitor._monitor.compute_status("listings")
        assert status.status == "down"

    def test_connection_error_is_empty(self):
        client = ListingsClient(base_url="http://listings.example")
        with patch.object(
            requests.Session, "get", side_effect=requests.exceptions.ConnectionError("refused")
        ):
            assert asyncio.run(client.fetch((12.9, 77.6), 1500, 20000)) == ()


class TestTrendingAreas:
    AREA = {"name": "Koramangala", "propertyCount": 12, "coordinates": {"coordinates": [77.62, 12.93]}}

    def test_areas_unwrapped(self):
        client = ListingsClient(base_url="http://listings.example")
        with patch.object(
            requests.Session, "get", return_value=_mock_response(200, {"areas": [self.AREA], "total": 1})
        ) as mock_get:
            areas = asyncio.run(client.trending_areas((12.9, 77.6)))

        assert areas == [self.AREA]
        args, kwargs = mock_get.call_args
        assert args[0] == "http://listings.example/api/trending-areas"
        assert kwargs["params"] == {"lat": 12.9, "lon": 77.6, "limit": 5}

    def test_failure_is_none(self):
        client = ListingsClient(base_url="http://listings.example")
        with patch.object(requests.Session, "get", return_value=_mock_response(502)):
            assert asyncio.run(client.trending_areas((12.9, 77.6))) is None

    def test_unexpected_payload_is_none(self):
        client = ListingsClient(base_url="http://listings.example")
        with patch.object(requests.Session, "get", return_value=_mock_response(200, {"areas": "x"})):
            assert asyncio.run(client.trending_areas((12.9, 77.6))) is None
