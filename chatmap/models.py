"""
Domain types shared by providers, use cases and agents.

Coordinates are stored as `lat`/`lng` on value objects; geometry coming from
GeoJSON services keeps the GeoJSON `(lng, lat)` ordering.
"""

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple


Coordinate = Tuple[float, float]  # (lng, lat)

EARTH_RADIUS_METERS = 6371000.0


class TransportMode(str, Enum):
    WALKING = "walking"
    DRIVING = "driving"
    CYCLING = "cycling"
    PUBLIC_TRANSPORT = "public_transport"

    @classmethod
    def parse(cls, value: Any) -> "TransportMode":
        """Coerce a string (or member) into a TransportMode.

        Raises:
            ValueError: If the value is not a known transport mode
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower().replace("-", "_"))
        except ValueError:
            raise ValueError(f"Unknown transport mode: {value!r}")


class POIType(str, Enum):
    RESTAURANT = "restaurant"
    CAFE = "cafe"
    GROCERY = "grocery"
    PHARMACY = "pharmacy"
    HOSPITAL = "hospital"
    SCHOOL = "school"
    PARK = "park"
    GYM = "gym"
    BANK = "bank"
    ATM = "atm"
    GAS_STATION = "gas_station"
    SHOPPING = "shopping"
    ENTERTAINMENT = "entertainment"
    TRANSPORT = "transport"
    ACCOMMODATION = "accommodation"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> "POIType":
        """Coerce a string (or member) into a POIType.

        Raises:
            ValueError: If the value is not a known POI type
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower().replace("-", "_").replace(" ", "_"))
        except ValueError:
            raise ValueError(f"Unknown POI type: {value!r}")


@dataclass(frozen=True)
class Location:
    lat: float
    lng: float
    display_name: str = ""

    def is_valid(self) -> bool:
        return (
            isinstance(self.lat, (int, float))
            and isinstance(self.lng, (int, float))
            and not math.isnan(self.lat)
            and not math.isnan(self.lng)
            and -90 <= self.lat <= 90
            and -180 <= self.lng <= 180
        )

    def to_coordinate(self) -> Coordinate:
        return (self.lng, self.lat)

    def to_dict(self) -> Dict[str, Any]:
        data = {"lat": self.lat, "lng": self.lng}
        if self.display_name:
            data["display_name"] = self.display_name
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Location":
        """Build a Location from a mapping with lat and lng (or lon) keys.

        Raises:
            ValueError: If coordinates are missing or not numeric
        """
        if not isinstance(data, dict):
            raise ValueError("location must be an object with lat and lng")
        lat = data.get("lat")
        lng = data.get("lng", data.get("lon"))
        if lat is None or lng is None:
            raise ValueError("location requires lat and lng")
        try:
            return cls(float(lat), float(lng), str(data.get("display_name") or ""))
        except (TypeError, ValueError):
            raise ValueError(f"Invalid coordinates: lat={lat!r}, lng={lng!r}")


@dataclass(frozen=True)
class BoundingBox:
    south: float
    west: float
    north: float
    east: float

    @classmethod
    def around(cls, center: Location, radius_meters: float) -> "BoundingBox":
        """Square box that fully contains a circle of `radius_meters`."""
        lat_delta = math.degrees(radius_meters / EARTH_RADIUS_METERS)
        cos_lat = max(math.cos(math.radians(center.lat)), 1e-6)
        lng_delta = math.degrees(radius_meters / (EARTH_RADIUS_METERS * cos_lat))
        return cls(
            south=max(-90.0, center.lat - lat_delta),
            west=max(-180.0, center.lng - lng_delta),
            north=min(90.0, center.lat + lat_delta),
            east=min(180.0, center.lng + lng_delta),
        )

    @classmethod
    def around_points(cls, points: Iterable[Coordinate], buffer_meters: float = 0.0) -> "BoundingBox":
        """Box around (lng, lat) points, grown by `buffer_meters` on each side."""
        pts = list(points)
        if not pts:
            raise ValueError("at least one point is required")
        lngs = [p[0] for p in pts]
        lats = [p[1] for p in pts]
        south, north = min(lats), max(lats)
        west, east = min(lngs), max(lngs)
        lat_delta = math.degrees(buffer_meters / EARTH_RADIUS_METERS)
        mid_lat = (south + north) / 2
        cos_lat = max(math.cos(math.radians(mid_lat)), 1e-6)
        lng_delta = math.degrees(buffer_meters / (EARTH_RADIUS_METERS * cos_lat))
        return cls(
            south=max(-90.0, south - lat_delta),
            west=max(-180.0, west - lng_delta),
            north=min(90.0, north + lat_delta),
            east=min(180.0, east + lng_delta),
        )

    def contains(self, location: Location) -> bool:
        return self.south <= location.lat <= self.north and self.west <= location.lng <= self.east

    def to_overpass(self) -> str:
        """Overpass QL bbox filter order: south,west,north,east."""
        return f"{self.south},{self.west},{self.north},{self.east}"

    def to_list(self) -> List[float]:
        return [self.south, self.west, self.north, self.east]


@dataclass(frozen=True)
class POI:
    id: str
    name: str
    type: POIType
    lat: float
    lng: float
    tags: Dict[str, str] = field(default_factory=dict, compare=False, hash=False)
    distance: Optional[float] = None
    durations: Dict[str, float] = field(default_factory=dict, compare=False, hash=False)
    detour_minutes: Optional[float] = None
    distance_from_anchor: Optional[float] = None
    travel_time_from_anchor: Optional[float] = None

    @property
    def location(self) -> Location:
        return Location(self.lat, self.lng, self.name)

    def derive(self, **changes) -> "POI":
        """Return a copy carrying search-time fields; the source is left untouched."""
        if "durations" in changes:
            merged = dict(self.durations)
            merged.update(changes["durations"])
            changes["durations"] = merged
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "location": {"lat": self.lat, "lng": self.lng},
            "tags": dict(self.tags),
        }
        if self.distance is not None:
            data["distance"] = self.distance
        if self.durations:
            data["durations"] = dict(self.durations)
        if self.detour_minutes is not None:
            data["detour_minutes"] = self.detour_minutes
        if self.distance_from_anchor is not None:
            data["distance_from_anchor"] = self.distance_from_anchor
        if self.travel_time_from_anchor is not None:
            data["travel_time_from_anchor"] = self.travel_time_from_anchor
        return data


@dataclass(frozen=True)
class IsochronePolygon:
    value_seconds: float
    transport: TransportMode
    rings: Tuple[Tuple[Coordinate, ...], ...]  # first ring is the outer boundary


@dataclass(frozen=True)
class Isochrone:
    center: Location
    transport: TransportMode
    polygons: Tuple[IsochronePolygon, ...]
    bbox: BoundingBox

    def contains(self, location: Location) -> bool:
        from chatmap.geo import point_in_polygon

        return any(point_in_polygon(location, polygon.rings) for polygon in self.polygons)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "center": self.center.to_dict(),
            "transport": self.transport.value,
            "bbox": self.bbox.to_list(),
            "polygons": [
                {"value_seconds": p.value_seconds, "rings": [list(map(list, r)) for r in p.rings]}
                for p in self.polygons
            ],
        }


@dataclass(frozen=True)
class RouteStep:
    instruction: str
    distance: float
    duration: float
    type: int = 0


@dataclass(frozen=True)
class RouteResult:
    distance: float  # meters
    duration: float  # seconds
    geometry: Tuple[Coordinate, ...] = ()
    steps: Tuple[RouteStep, ...] = ()

    @property
    def duration_minutes(self) -> float:
        return self.duration / 60.0

    def to_dict(self, include_geometry: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "distance": round(self.distance),
            "duration": round(self.duration),
            "duration_minutes": round(self.duration_minutes, 1),
            "steps": [
                {"instruction": s.instruction, "distance": s.distance, "duration": s.duration}
                for s in self.steps
            ],
        }
        if include_geometry:
            data["geometry"] = [list(c) for c in self.geometry]
        return data


@dataclass(frozen=True)
class MatrixResult:
    durations: Sequence[Sequence[Optional[float]]]  # seconds, None when unreachable
    distances: Sequence[Sequence[Optional[float]]] = ()


@dataclass(frozen=True)
class ConversationMessage:
    role: str
    content: str


@dataclass
class ConversationContext:
    messages: List[ConversationMessage] = field(default_factory=list)
    last_query: Optional[Any] = None  # ClassifiedQuery of the previous turn
    last_results: List[POI] = field(default_factory=list)

    def recent(self, count: int = 3) -> List[ConversationMessage]:
        return self.messages[-count:]


@dataclass(frozen=True)
class MemoryContext:
    user_id: str
    favorite_transport_modes: Tuple[TransportMode, ...] = ()
    favorite_poi_types: Tuple[POIType, ...] = ()
