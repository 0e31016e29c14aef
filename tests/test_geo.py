import math

import pytest

from geoselfie.geo import EARTH_RADIUS_METERS, distance_meters


POINTS = [
    (0.0, 0.0),
    (12.9716, 77.5946),
    (-33.8688, 151.2093),
    (51.5074, -0.1278),
    (89.9, 179.9),
    (-90.0, -180.0),
]


@pytest.mark.parametrize("a", POINTS)
@pytest.mark.parametrize("b", POINTS)
def test_distance_is_symmetric(a, b):
    forward = distance_meters(a[0], a[1], b[0], b[1])
    backward = distance_meters(b[0], b[1], a[0], a[1])
    assert forward == pytest.approx(backward, rel=1e-6, abs=1e-6)


@pytest.mark.parametrize("point", POINTS)
def test_distance_to_self_is_zero(point):
    assert distance_meters(point[0], point[1], point[0], point[1]) == 0


def test_one_degree_of_latitude():
    expected = EARTH_RADIUS_METERS * math.pi / 180
    assert distance_meters(0, 0, 1, 0) == pytest.approx(expected, rel=1e-9)


def test_one_degree_of_longitude_on_equator_matches_latitude():
    assert distance_meters(0, 0, 0, 1) == pytest.approx(distance_meters(0, 0, 1, 0), rel=1e-9)


def test_antipodal_points_are_half_circumference():
    assert distance_meters(0, 0, 0, 180) == pytest.approx(math.pi * EARTH_RADIUS_METERS, rel=1e-9)
    assert distance_meters(90, 0, -90, 0) == pytest.approx(math.pi * EARTH_RADIUS_METERS, rel=1e-9)


def test_short_distance_is_accurate():
    offset = math.degrees(1000 / EARTH_RADIUS_METERS)
    assert distance_meters(10.0, 20.0, 10.0 + offset, 20.0) == pytest.approx(1000, abs=0.01)
