"""Tests for distance, interpolation and easing."""

from __future__ import annotations

import pytest

from dronetrack.core.geo import distance_km, distance_m, ease_in_out, interpolate, planar_distance_deg
from dronetrack.core.models import Coordinate

A = Coordinate(10.7769, 106.7009)
B = Coordinate(10.7500, 106.6500)
POINTS = [
    A,
    B,
    Coordinate(0.0, 0.0),
    Coordinate(-33.8688, 151.2093),
    Coordinate(89.9, -179.9),
]


@pytest.mark.parametrize("point", POINTS)
def test_distance_to_self_is_zero(point):
    assert distance_km(point, point) == 0


def test_distance_is_symmetric():
    for a in POINTS:
        for b in POINTS:
            assert distance_km(a, b) == pytest.approx(distance_km(b, a), abs=1e-9)


def test_distance_known_pair():
    # Paris to London is about 344 km.
    paris = Coordinate(48.8566, 2.3522)
    london = Coordinate(51.5074, -0.1278)
    assert distance_km(paris, london) == pytest.approx(343.5, abs=1.0)


def test_distance_m_scales_km():
    assert distance_m(A, B) == pytest.approx(distance_km(A, B) * 1000)


def test_planar_distance_in_degrees():
    assert planar_distance_deg(Coordinate(0, 0), Coordinate(0.0003, 0.0004)) == pytest.approx(0.0005)


def test_interpolate_endpoints_are_exact():
    assert interpolate(A, B, 0) is A
    assert interpolate(A, B, 1) is B


def test_interpolate_midpoint():
    mid = interpolate(A, B, 0.5)
    assert mid.latitude == pytest.approx((A.latitude + B.latitude) / 2)
    assert mid.longitude == pytest.approx((A.longitude + B.longitude) / 2)


def test_ease_fixed_points():
    assert ease_in_out(0) == 0
    assert ease_in_out(0.5) == 0.5
    assert ease_in_out(1) == 1


def test_ease_is_monotonic():
    values = [ease_in_out(i / 100) for i in range(101)]
    assert all(b >= a for a, b in zip(values, values[1:]))
