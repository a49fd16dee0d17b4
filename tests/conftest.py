import os
import sys

import pytest

# Ensure tests work when run from repository root by adding project root to sys.path
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from chatmap.config import reset_config
from chatmap.geo import circle_ring, offset_location
from chatmap.models import (
    BoundingBox,
    Isochrone,
    IsochronePolygon,
    Location,
    MatrixResult,
    POI,
    POIType,
    RouteResult,
)
from chatmap.providers.base import (
    GeoProvider,
    IsochroneProvider,
    LLMProvider,
    POIProvider,
    ProviderMetadata,
    RoutingProvider,
)

ORIGIN = Location(40.7580, -73.9855, "Times Square")


def poi_at(poi_id, poi_type, distance_m, bearing=0.0, origin=ORIGIN, name=None):
    """A POI placed `distance_m` from `origin` along `bearing`."""
    spot = offset_location(origin, distance_m, bearing)
    return POI(
        id=poi_id,
        name=name or poi_id,
        type=POIType.parse(poi_type),
        lat=spot.lat,
        lng=spot.lng,
        tags={'amenity': POIType.parse(poi_type).value},
    )


def _meta(name, capability):
    return ProviderMetadata(name=name, version="test", description="fake", capabilities=[capability])


class FakePOIProvider(POIProvider):
    name = "fake-poi"

    def __init__(self, pois=(), error=None):
        super().__init__()
        self.pois = list(pois)
        self.error = error
        self.calls = []

    async def get_metadata(self):
        return _meta(self.name, "pois")

    async def find_pois(self, bbox, poi_type, cuisine=None, max_results=100):
        self.calls.append({'bbox': bbox, 'poi_type': poi_type, 'cuisine': cuisine, 'max_results': max_results})
        if self.error is not None:
            raise self.error
        return [p for p in self.pois if p.type == poi_type and bbox.contains(p.location)][:max_results]


class FakeIsochroneProvider(IsochroneProvider):
    """Circular isochrone of a fixed radius, or an error."""
    name = "fake-isochrone"

    def __init__(self, radius_m=500.0, error=None):
        super().__init__()
        self.radius_m = radius_m
        self.error = error
        self.calls = []

    async def get_metadata(self):
        return _meta(self.name, "isochrones")

    async def isochrone(self, location, ranges_seconds, transport):
        self.calls.append((location, list(ranges_seconds), transport))
        if self.error is not None:
            raise self.error
        ring = tuple(circle_ring(location, self.radius_m, 64))
        return Isochrone(
            center=location,
            transport=transport,
            polygons=(IsochronePolygon(ranges_seconds[0], transport, (ring,)),),
            bbox=BoundingBox.around(location, self.radius_m),
        )


class FakeRoutingProvider(RoutingProvider):
    """`route_minutes(waypoints)` decides each route's duration (it may return an
    exception to raise); `matrix_minutes(origin, destination)` each matrix cell.
    """
    name = "fake-routing"

    def __init__(self, route_minutes=None, matrix_minutes=None, error=None, matrix_error=None):
        super().__init__()
        self.route_minutes = route_minutes
        self.matrix_minutes = matrix_minutes
        self.error = error
        self.matrix_error = matrix_error
        self.route_calls = []
        self.matrix_calls = []

    async def get_metadata(self):
        return _meta(self.name, "routing")

    async def route(self, waypoints, transport):
        self.route_calls.append((list(waypoints), transport))
        if self.error is not None:
            raise self.error
        minutes = self.route_minutes(list(waypoints)) if self.route_minutes else 10.0
        if isinstance(minutes, BaseException):
            raise minutes
        line = tuple(w.to_coordinate() for w in waypoints)
        return RouteResult(distance=1000.0, duration=minutes * 60.0, geometry=line)

    async def matrix(self, locations, transport, sources=None, destinations=None):
        self.matrix_calls.append((list(locations), transport, sources, destinations))
        if self.matrix_error is not None:
            raise self.matrix_error
        sources = sources if sources is not None else range(len(locations))
        destinations = destinations if destinations is not None else range(len(locations))
        durations = []
        for s in sources:
            row = []
            for d in destinations:
                minutes = self.matrix_minutes(locations[s], locations[d]) if self.matrix_minutes else 5.0
                row.append(None if minutes is None else minutes * 60.0)
            durations.append(row)
        return MatrixResult(durations=durations)


class FakeGeoProvider(GeoProvider):
    name = "fake-geo"

    def __init__(self, places=None, error=None):
        super().__init__()
        self.places = dict(places or {})
        self.error = error
        self.calls = []

    async def get_metadata(self):
        return _meta(self.name, "geocode")

    async def geocode(self, query, limit=5, country_code=None, bounds=None):
        self.calls.append(query)
        if self.error is not None:
            raise self.error
        match = self.places.get(query.lower())
        return [match][:limit] if match else []

    async def reverse_geocode(self, location):
        return None


class FakeLLMProvider(LLMProvider):
    name = "fake-llm"

    def __init__(self, reply="", error=None):
        super().__init__()
        self.reply = reply
        self.error = error
        self.messages = []

    async def get_metadata(self):
        return _meta(self.name, "chat")

    async def chat(self, messages, temperature=0.1, max_tokens=512):
        self.messages.append(messages)
        if self.error is not None:
            raise self.error
        return self.reply


class FakeRedis:
    def __init__(self, fail=False):
        self.store = {}
        self.fail = fail
        self.closed = False

    def _check(self):
        if self.fail:
            raise ConnectionError("redis down")

    async def ping(self):
        self._check()
        return True

    async def aclose(self):
        self.closed = True

    async def incrby(self, key, amount):
        self._check()
        self.store[key] = int(self.store.get(key, 0)) + amount

    async def lpush(self, key, value):
        self._check()
        self.store.setdefault(key, []).insert(0, float(value))

    async def ltrim(self, key, start, stop):
        self._check()
        if key in self.store:
            self.store[key] = self.store[key][start:stop+1]

    async def keys(self, pattern):
        self._check()
        prefix = pattern.rstrip('*')
        return [k for k in self.store.keys() if k.startswith(prefix)]

    async def get(self, key):
        self._check()
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self._check()
        self.store[key] = value

    async def lrange(self, key, start, stop):
        self._check()
        values = self.store.get(key, [])
        return values[start:] if stop == -1 else values[start:stop+1]


@pytest.fixture(autouse=True)
def clean_config(monkeypatch):
    """Keep tests independent of the developer's environment and .env."""
    for key in ('ORS_API_KEY', 'GROQ_API_KEY', 'REDIS_URL', 'LOG_FILE'):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv('ENVIRONMENT', 'testing')
    reset_config()
    yield
    reset_config()


@pytest.fixture
def origin():
    return ORIGIN
