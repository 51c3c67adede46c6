"""
Tests for great-circle distance and the distance fee schedule.
"""

import math

import pytest

from app.services.geo.base import GeoPoint
from app.services.geo.distance import (
    BASE_FEE_CENTS,
    distance_fee_cents,
    haversine_km,
)


class TestHaversine:
    """Tests for haversine_km."""

    def test_same_point_is_zero(self):
        p = GeoPoint(43.6532, -79.3832)
        assert haversine_km(p, p) == 0.0

    def test_symmetric(self):
        a = GeoPoint(43.6532, -79.3832)
        b = GeoPoint(45.5017, -73.5673)
        assert haversine_km(a, b) == pytest.approx(haversine_km(b, a))

    def test_downtown_to_midtown_toronto(self):
        d = haversine_km(GeoPoint(43.6532, -79.3832), GeoPoint(43.7, -79.4))
        assert 5.0 < d < 6.0

    def test_one_degree_of_latitude(self):
        d = haversine_km(GeoPoint(0.0, 0.0), GeoPoint(1.0, 0.0))
        assert d == pytest.approx(111.19, abs=0.01)

    def test_toronto_to_montreal(self):
        d = haversine_km(GeoPoint(43.6532, -79.3832), GeoPoint(45.5017, -73.5673))
        assert d == pytest.approx(504, abs=5)

    def test_missing_point(self):
        assert haversine_km(None, GeoPoint(1.0, 1.0)) is None
        assert haversine_km(GeoPoint(1.0, 1.0), None) is None

    def test_non_finite_coordinates(self):
        assert haversine_km(GeoPoint(math.nan, 0.0), GeoPoint(1.0, 1.0)) is None
        assert haversine_km(GeoPoint(0.0, 0.0), GeoPoint(math.inf, 1.0)) is None


class TestDistanceFee:
    """Tests for distance_fee_cents."""

    @pytest.mark.parametrize("distance,expected", [
        (0.5, 800),
        (5.38, 800),
        (7.99, 800),
        (8, 800),
        (8.0001, 900),
        (8.1, 900),
        (9, 900),
        (12.3, 1300),
        (20, 2000),
    ])
    def test_schedule(self, distance, expected):
        assert distance_fee_cents(distance) == expected

    @pytest.mark.parametrize("distance", [None, 0, -3.2, math.nan, math.inf, True, "far"])
    def test_unusable_distance_gets_base_fee(self, distance):
        assert distance_fee_cents(distance) == BASE_FEE_CENTS

    def test_monotonic(self):
        fees = [distance_fee_cents(d / 4) for d in range(1, 120)]
        assert fees == sorted(fees)

    def test_end_to_end_example(self):
        d = haversine_km(GeoPoint(43.6532, -79.3832), GeoPoint(43.7, -79.4))
        assert distance_fee_cents(d) == 800
