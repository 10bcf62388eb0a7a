"""
test_radius_utils.py — Tests for the great-circle helpers used by fan-out
and scoring.

Run:
    pytest backend/tests/test_radius_utils.py -v

Covers:
    1. Haversine distance calculations
    2. Inclusive point-in-radius checks
    3. Bounding-box pre-filter
    4. Edge cases (NaN, antipodes, poles, invalid coordinates)
"""

from __future__ import annotations

import math

import pytest

from backend.app.spatial.radius_utils import (
    EARTH_RADIUS_M,
    Coordinate,
    bounding_box,
    distance_m,
    format_distance,
    haversine_m,
    is_within_radius,
)

WINDHOEK = Coordinate(-22.5609, 17.0832)
SWAKOPMUND = Coordinate(-22.6784, 14.5266)


# =========================================================================
# Haversine distance
# =========================================================================

class TestDistance:
    def test_same_point_is_zero(self):
        assert haversine_m(WINDHOEK, WINDHOEK) == 0.0

    def test_known_city_pair(self):
        # Windhoek → Swakopmund is roughly 263 km as the crow flies
        assert haversine_m(WINDHOEK, SWAKOPMUND) == pytest.approx(263_000, rel=0.02)

    def test_symmetric(self):
        assert haversine_m(WINDHOEK, SWAKOPMUND) == pytest.approx(haversine_m(SWAKOPMUND, WINDHOEK))

    def test_one_degree_on_equator(self):
        expected = EARTH_RADIUS_M * math.pi / 180
        assert distance_m(0.0, 0.0, 0.0, 1.0) == pytest.approx(expected)

    def test_antipodes_do_not_blow_up(self):
        assert distance_m(0.0, 0.0, 0.0, 180.0) == pytest.approx(math.pi * EARTH_RADIUS_M)

    def test_nan_propagates(self):
        assert math.isnan(distance_m(float("nan"), 0.0, 0.0, 0.0))


# =========================================================================
# Point-in-radius
# =========================================================================

class TestWithinRadius:
    def test_boundary_inclusive(self):
        point = Coordinate(0.0, 0.01)
        exact = haversine_m(Coordinate(0.0, 0.0), point)
        assert is_within_radius(Coordinate(0.0, 0.0), point, exact) is True

    def test_just_outside(self):
        point = Coordinate(0.0, 0.01)
        exact = haversine_m(Coordinate(0.0, 0.0), point)
        assert is_within_radius(Coordinate(0.0, 0.0), point, exact - 0.01) is False

    def test_zero_radius_same_point(self):
        assert is_within_radius(WINDHOEK, WINDHOEK, 0.0) is True


# =========================================================================
# Bounding box
# =========================================================================

class TestBoundingBox:
    def test_contains_circle(self):
        box = bounding_box(WINDHOEK, 10_000)
        (min_lng, max_lng), = box.lng_ranges
        north = distance_m(WINDHOEK.latitude, WINDHOEK.longitude, box.max_lat, WINDHOEK.longitude)
        east = distance_m(WINDHOEK.latitude, WINDHOEK.longitude, WINDHOEK.latitude, max_lng)
        assert north == pytest.approx(10_000, rel=1e-6)
        assert east >= 10_000 * 0.999
        assert box.min_lat < WINDHOEK.latitude < box.max_lat
        assert min_lng < WINDHOEK.longitude < max_lng

    def test_covering_pole_spans_all_longitudes(self):
        box = bounding_box(Coordinate(89.9, 0.0), 50_000)
        assert box.max_lat == 90.0
        assert box.lng_ranges == ((-180.0, 180.0),)
        assert box.contains(89.95, 179.0)

    @pytest.mark.parametrize("center_lng,other_lng", [(179.995, -179.995), (-179.995, 179.995)])
    def test_wraps_across_antimeridian(self, center_lng, other_lng):
        center = Coordinate(-17.0, center_lng)
        other = Coordinate(-17.0, other_lng)
        box = bounding_box(center, 10_000)
        assert len(box.lng_ranges) == 2
        assert haversine_m(center, other) < 10_000
        assert box.contains(other.latitude, other.longitude)
        assert not box.contains(-17.0, 0.0)

    def test_every_point_in_radius_is_in_box(self):
        center = Coordinate(60.0, 179.9)
        box = bounding_box(center, 25_000)
        for bearing in range(0, 360, 15):
            rad = math.radians(bearing)
            # Point just inside the circle along this bearing
            d = 24_999 / EARTH_RADIUS_M
            lat1, lng1 = math.radians(center.latitude), math.radians(center.longitude)
            lat2 = math.asin(math.sin(lat1) * math.cos(d) + math.cos(lat1) * math.sin(d) * math.cos(rad))
            lng2 = lng1 + math.atan2(
                math.sin(rad) * math.sin(d) * math.cos(lat1),
                math.cos(d) - math.sin(lat1) * math.sin(lat2),
            )
            lng_deg = (math.degrees(lng2) + 540.0) % 360.0 - 180.0
            assert box.contains(math.degrees(lat2), lng_deg), bearing


# =========================================================================
# Coordinates & formatting
# =========================================================================

class TestCoordinate:
    @pytest.mark.parametrize("lat,lng", [(91.0, 0.0), (-91.0, 0.0), (0.0, 181.0)])
    def test_out_of_range(self, lat, lng):
        with pytest.raises(ValueError):
            Coordinate(lat, lng)

    def test_maybe(self):
        assert Coordinate.maybe(None, 17.0) is None
        assert Coordinate.maybe(-22.5, "east") is None
        assert Coordinate.maybe(200.0, 0.0) is None
        assert Coordinate.maybe("-22.5", 17) == Coordinate(-22.5, 17.0)


class TestFormatDistance:
    def test_metres(self):
        assert format_distance(450) == "450m"

    def test_kilometres(self):
        assert format_distance(2340) == "2.3km"
