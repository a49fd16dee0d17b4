"""
Planar and spherical geometry helpers used by the spatial use cases.

Distances are great-circle (haversine) in meters. Point-in-polygon and
point-to-line tests work on (lng, lat) coordinates and are accurate enough
for city-scale isochrones and route corridors.
"""

import math
from typing import Iterable, Optional, Sequence

from chatmap.models import Coordinate, Location, TransportMode, EARTH_RADIUS_METERS


# Reference speeds in meters per second
SPEED_MPS = {
    TransportMode.WALKING: 1.4,
    TransportMode.CYCLING: 4.2,
    TransportMode.DRIVING: 13.9,
    TransportMode.PUBLIC_TRANSPORT: 8.3,
}


def haversine_meters(lat1, lon1, lat2, lon2):
    # returns distance in meters
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = (
        math.sin(dphi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    )
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_between(a: Location, b: Location) -> float:
    return haversine_meters(a.lat, a.lng, b.lat, b.lng)


def speed_for(transport: TransportMode) -> float:
    return SPEED_MPS[TransportMode.parse(transport)]


def estimate_travel_minutes(distance_meters: float, transport: TransportMode) -> float:
    """Straight-line travel time at the reference speed for `transport`."""
    return distance_meters / speed_for(transport) / 60.0


def reachable_radius_meters(time_minutes: float, transport: TransportMode) -> float:
    """Distance covered in `time_minutes` at the reference speed."""
    return speed_for(transport) * time_minutes * 60.0


def offset_location(origin: Location, distance_meters: float, bearing_degrees: float) -> Location:
    """Destination point `distance_meters` away from `origin` along a bearing."""
    delta = distance_meters / EARTH_RADIUS_METERS
    theta = math.radians(bearing_degrees)
    phi1 = math.radians(origin.lat)
    lambda1 = math.radians(origin.lng)
    phi2 = math.asin(
        math.sin(phi1) * math.cos(delta) + math.cos(phi1) * math.sin(delta) * math.cos(theta)
    )
    lambda2 = lambda1 + math.atan2(
        math.sin(theta) * math.sin(delta) * math.cos(phi1),
        math.cos(delta) - math.sin(phi1) * math.sin(phi2),
    )
    lng = (math.degrees(lambda2) + 540) % 360 - 180
    return Location(math.degrees(phi2), lng)


def point_in_ring(lng: float, lat: float, ring: Sequence[Coordinate]) -> bool:
    """Even-odd ray casting test against a closed or open ring."""
    inside = False
    n = len(ring)
    if n < 3:
        return False
    j = n - 1
    for i in range(n):
        xi, yi = ring[i][0], ring[i][1]
        xj, yj = ring[j][0], ring[j][1]
        if (yi > lat) != (yj > lat):
            x_cross = (xj - xi) * (lat - yi) / (yj - yi) + xi
            if lng < x_cross:
                inside = not inside
        j = i
    return inside


def point_in_polygon(location: Location, rings: Sequence[Sequence[Coordinate]]) -> bool:
    """Inside the outer ring and outside every hole."""
    if not rings:
        return False
    if not point_in_ring(location.lng, location.lat, rings[0]):
        return False
    return not any(point_in_ring(location.lng, location.lat, hole) for hole in rings[1:])


def _project(origin_lat: float, lng: float, lat: float):
    # Equirectangular projection to meters around origin_lat
    x = math.radians(lng) * EARTH_RADIUS_METERS * math.cos(math.radians(origin_lat))
    y = math.radians(lat) * EARTH_RADIUS_METERS
    return x, y


def distance_to_segment_meters(location: Location, start: Coordinate, end: Coordinate) -> float:
    px, py = _project(location.lat, location.lng, location.lat)
    ax, ay = _project(location.lat, start[0], start[1])
    bx, by = _project(location.lat, end[0], end[1])
    dx, dy = bx - ax, by - ay
    seg_len_sq = dx * dx + dy * dy
    if seg_len_sq == 0:
        return math.hypot(px - ax, py - ay)
    t = max(0.0, min(1.0, ((px - ax) * dx + (py - ay) * dy) / seg_len_sq))
    return math.hypot(px - (ax + t * dx), py - (ay + t * dy))


def distance_to_line_meters(location: Location, line: Sequence[Coordinate]) -> Optional[float]:
    """Shortest distance from `location` to a polyline, or None for an empty line."""
    if not line:
        return None
    if len(line) == 1:
        return haversine_meters(location.lat, location.lng, line[0][1], line[0][0])
    return min(
        distance_to_segment_meters(location, line[i], line[i + 1])
        for i in range(len(line) - 1)
    )


def circle_ring(center: Location, radius_meters: float, segments: int = 32) -> Iterable[Coordinate]:
    """Approximate a circle as a closed (lng, lat) ring."""
    ring = []
    for i in range(segments):
        point = offset_location(center, radius_meters, 360.0 * i / segments)
        ring.append((point.lng, point.lat))
    ring.append(ring[0])
    return ring
