import pytest

from chatmap.geo import (
    circle_ring,
    distance_between,
    distance_to_line_meters,
    estimate_travel_minutes,
    haversine_meters,
    offset_location,
    point_in_polygon,
    reachable_radius_meters,
)
from chatmap.models import BoundingBox, Location, TransportMode


def test_haversine_london_paris():
    meters = haversine_meters(51.5074, -0.1278, 48.8566, 2.3522)
    assert meters == pytest.approx(343_500, rel=0.01)


def test_offset_location_keeps_requested_distance():
    origin = Location(40.0, -73.0)
    for bearing in (0, 90, 180, 270):
        moved = offset_location(origin, 750, bearing)
        assert distance_between(origin, moved) == pytest.approx(750, abs=1)


def test_point_in_polygon_respects_holes():
    outer = [(0, 0), (10, 0), (10, 10), (0, 10), (0, 0)]
    hole = [(4, 4), (6, 4), (6, 6), (4, 6), (4, 4)]
    assert point_in_polygon(Location(2, 2), [outer, hole])
    assert not point_in_polygon(Location(5, 5), [outer, hole])
    assert not point_in_polygon(Location(20, 20), [outer])
    assert not point_in_polygon(Location(1, 1), [])


def test_circle_ring_contains_inner_points_only():
    center = Location(48.85, 2.35)
    ring = list(circle_ring(center, 500, 64))
    assert ring[0] == ring[-1]
    assert point_in_polygon(offset_location(center, 400, 45), [ring])
    assert not point_in_polygon(offset_location(center, 600, 45), [ring])


def test_distance_to_line():
    start = Location(0.0, 0.0)
    end = offset_location(start, 10_000, 90)
    line = [start.to_coordinate(), end.to_coordinate()]
    beside = offset_location(offset_location(start, 5_000, 90), 300, 0)
    assert distance_to_line_meters(beside, line) == pytest.approx(300, abs=5)
    assert distance_to_line_meters(beside, []) is None


def test_speed_estimates():
    assert reachable_radius_meters(10, TransportMode.WALKING) == pytest.approx(840)
    assert estimate_travel_minutes(840, TransportMode.WALKING) == pytest.approx(10)
    assert estimate_travel_minutes(0, TransportMode.DRIVING) == 0


def test_bounding_box_around_contains_circle():
    center = Location(51.5, -0.12)
    box = BoundingBox.around(center, 1000)
    for bearing in range(0, 360, 30):
        assert box.contains(offset_location(center, 999, bearing))
    assert not box.contains(offset_location(center, 1500, 0))
