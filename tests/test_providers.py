import asyncio
import json

import pytest

from chatmap.models import BoundingBox, Location, POIType, TransportMode
from chatmap.providers.base import (
    ProviderError,
    ProviderNotAvailableError,
    ProviderRateLimitError,
    ProviderStatus,
    ProviderTimeoutError,
)
from chatmap.providers.groq_provider import GroqLLMProvider
from chatmap.providers.nominatim_provider import NominatimGeoProvider
from chatmap.providers.ors_provider import ORSProvider, ors_profile, parse_route
from chatmap.providers.overpass_provider import OverpassPOIProvider, build_query, element_to_poi
from chatmap.services.session_manager import SessionManager
from chatmap.utils.async_utils import RetryPolicy


NO_WAIT = RetryPolicy(max_retries=2, initial_delay=0.0, jitter=False)
BBOX = BoundingBox(south=40.75, west=-74.0, north=40.77, east=-73.97)


class FakeResponse:
    def __init__(self, status=200, payload=None, body=None):
        self.status = status
        self.payload = payload
        self.body = body if body is not None else json.dumps(payload)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def text(self):
        return self.body

    async def json(self, **kwargs):
        if self.payload is None:
            raise ValueError("not json")
        return self.payload


class FakeSession:
    """Replays `responses` in order; an exception in the list is raised instead."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def _next(self, method, url, kwargs):
        self.requests.append({'method': method, 'url': url, **kwargs})
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, BaseException):
            raise item
        return item

    def get(self, url, **kwargs):
        return self._next("GET", url, kwargs)

    def post(self, url, **kwargs):
        return self._next("POST", url, kwargs)


# --- Overpass ---------------------------------------------------------------

def test_overpass_query_uses_tag_filter_and_bbox():
    query = build_query(BBOX, POIType.PHARMACY, max_results=20)

    assert query.startswith('[out:json]')
    assert 'node[amenity=pharmacy](40.75,-74.0,40.77,-73.97)' in query
    assert 'way[amenity=pharmacy]' in query
    assert query.endswith('out center 20;')


def test_overpass_cuisine_only_for_eating_places_and_sanitised():
    assert '[cuisine~"thai",i]' in build_query(BBOX, POIType.RESTAURANT, cuisine='Thai"];out;')
    assert 'cuisine' not in build_query(BBOX, POIType.PHARMACY, cuisine="thai")


def test_overpass_element_mapping():
    way = element_to_poi({'type': 'way', 'id': 7, 'center': {'lat': 40.76, 'lon': -73.98},
                          'tags': {'operator': 'City Parks'}}, POIType.PARK)
    assert way.id == "osm-way-7"
    assert way.name == "City Parks"
    assert (way.lat, way.lng) == (40.76, -73.98)
    assert element_to_poi({'type': 'way', 'id': 8}, POIType.PARK) is None
    unnamed = element_to_poi({'type': 'node', 'id': 9, 'lat': 1, 'lon': 2}, POIType.CAFE)
    assert unnamed.name == "Unnamed cafe"


@pytest.mark.asyncio
async def test_overpass_find_pois_dedupes():
    node = {'type': 'node', 'id': 1, 'lat': 40.76, 'lon': -73.98, 'tags': {'name': 'Joe'}}
    session = FakeSession(FakeResponse(payload={'elements': [node, node, {'type': 'node', 'id': 2}]}))
    provider = OverpassPOIProvider(session=session, retry_policy=NO_WAIT)

    pois = await provider.find_pois(BBOX, "cafe")

    assert [p.name for p in pois] == ["Joe"]
    assert session.requests[0]['method'] == "POST"
    assert '[amenity=cafe]' in session.requests[0]['data']['data']


# --- shared HTTP error mapping and retries ----------------------------------

@pytest.mark.asyncio
async def test_server_errors_are_retried():
    session = FakeSession(
        FakeResponse(503, body="busy"),
        FakeResponse(429, body="slow down"),
        FakeResponse(payload={'elements': []}),
    )
    provider = OverpassPOIProvider(session=session, retry_policy=NO_WAIT)

    assert await provider.find_pois(BBOX, POIType.CAFE) == []
    assert len(session.requests) == 3


@pytest.mark.asyncio
async def test_client_errors_are_not_retried():
    session = FakeSession(FakeResponse(400, body="syntax error"))
    provider = OverpassPOIProvider(session=session, retry_policy=NO_WAIT)

    with pytest.raises(ProviderError) as info:
        await provider.find_pois(BBOX, POIType.CAFE)

    assert info.value.status_code == 400
    assert info.value.retryable is False
    assert len(session.requests) == 1


@pytest.mark.asyncio
async def test_rate_limit_surfaces_after_retries():
    session = FakeSession(FakeResponse(429, body="slow down"))
    provider = OverpassPOIProvider(session=session, retry_policy=NO_WAIT)

    with pytest.raises(ProviderRateLimitError):
        await provider.find_pois(BBOX, POIType.CAFE)
    assert len(session.requests) == 3


@pytest.mark.asyncio
async def test_timeouts_become_provider_timeouts():
    session = FakeSession(asyncio.TimeoutError())
    provider = OverpassPOIProvider(session=session, retry_policy=RetryPolicy(max_retries=0))

    with pytest.raises(ProviderTimeoutError):
        await provider.find_pois(BBOX, POIType.CAFE)


@pytest.mark.asyncio
async def test_invalid_json_is_permanent():
    session = FakeSession(FakeResponse(200, payload=None, body="<html>"))
    provider = OverpassPOIProvider(session=session, retry_policy=NO_WAIT)

    with pytest.raises(ProviderError) as info:
        await provider.find_pois(BBOX, POIType.CAFE)
    assert not info.value.retryable
    assert len(session.requests) == 1


# --- OpenRouteService -------------------------------------------------------

ISOCHRONE = {
    'bbox': [-74.0, 40.75, -73.97, 40.77],
    'features': [{
        'properties': {'value': 600},
        'geometry': {'type': 'MultiPolygon', 'coordinates': [
            [[[-74.0, 40.75], [-73.97, 40.75], [-73.97, 40.77], [-74.0, 40.75]]],
            [[[-73.99, 40.76], [-73.98, 40.76], [-73.98, 40.765], [-73.99, 40.76]]],
        ]},
    }],
}


@pytest.mark.asyncio
async def test_ors_requires_api_key():
    session = FakeSession(FakeResponse(payload=ISOCHRONE))
    provider = ORSProvider(api_key=None, session=session)

    with pytest.raises(ProviderNotAvailableError):
        await provider.isochrone(Location(40.76, -73.98), [600], TransportMode.WALKING)
    assert session.requests == []
    assert (await provider.health_check()).status == ProviderStatus.DEGRADED


@pytest.mark.asyncio
async def test_ors_isochrone_request_and_multipolygon():
    session = FakeSession(FakeResponse(payload=ISOCHRONE))
    provider = ORSProvider(api_key="key", session=session, retry_policy=NO_WAIT)

    iso = await provider.isochrone(Location(40.76, -73.98), [600], "cycling")

    sent = session.requests[0]
    assert sent['url'] == "https://api.openrouteservice.org/v2/isochrones/cycling-regular"
    assert sent['json'] == {'locations': [[-73.98, 40.76]], 'range': [600], 'range_type': 'time'}
    assert sent['headers']['Authorization'] == "key"
    assert len(iso.polygons) == 2
    assert iso.polygons[0].value_seconds == 600
    assert iso.bbox.north == 40.77


def test_public_transport_uses_walking_profile():
    assert ors_profile(TransportMode.PUBLIC_TRANSPORT) == "foot-walking"
    assert ors_profile("driving") == "driving-car"


def test_ors_route_parsing():
    route = parse_route({'features': [{
        'properties': {
            'summary': {'distance': 1200.5, 'duration': 900},
            'segments': [{'steps': [{'instruction': "Head north", 'distance': 1200.5, 'duration': 900, 'type': 11}]}],
        },
        'geometry': {'coordinates': [[-73.98, 40.76], [-73.97, 40.77]]},
    }]})

    assert route.distance == 1200.5
    assert route.duration == 900
    assert route.geometry == ((-73.98, 40.76), (-73.97, 40.77))
    assert route.steps[0].instruction == "Head north"
    with pytest.raises(ProviderError):
        parse_route({'features': []})


@pytest.mark.asyncio
async def test_ors_matrix_passes_sources_and_destinations():
    session = FakeSession(FakeResponse(payload={'durations': [[0, 120.0]], 'distances': [[0, 150.0]]}))
    provider = ORSProvider(api_key="key", session=session, retry_policy=NO_WAIT)

    matrix = await provider.matrix(
        [Location(40.76, -73.98), Location(40.761, -73.981)], TransportMode.WALKING,
        sources=[0], destinations=[1],
    )

    assert session.requests[0]['json']['sources'] == [0]
    assert session.requests[0]['json']['destinations'] == [1]
    assert matrix.durations == [[0, 120.0]]


# --- Nominatim --------------------------------------------------------------

@pytest.mark.asyncio
async def test_nominatim_geocode_params_and_parsing():
    payload = [
        {'lat': "40.7812", 'lon': "-73.9665", 'display_name': "Central Park"},
        {'lat': "not a number", 'lon': "0"},
    ]
    session = FakeSession(FakeResponse(payload=payload))
    provider = NominatimGeoProvider(session=session, retry_policy=NO_WAIT)

    results = await provider.geocode("central park", limit=3, country_code="US", bounds=BBOX)

    assert results == [Location(40.7812, -73.9665, "Central Park")]
    params = session.requests[0]['params']
    assert params['q'] == "central park"
    assert params['countrycodes'] == "us"
    assert params['viewbox'] == "-74.0,40.75,-73.97,40.77"
    assert session.requests[0]['headers']['User-Agent'] == "ChatMap/1.0"


@pytest.mark.asyncio
async def test_nominatim_reverse_geocode_error_payload():
    session = FakeSession(FakeResponse(payload={'error': "Unable to geocode"}))
    provider = NominatimGeoProvider(session=session, retry_policy=NO_WAIT)

    assert await provider.reverse_geocode(Location(0.0, 0.0)) is None


# --- Groq -------------------------------------------------------------------

@pytest.mark.asyncio
async def test_groq_chat_returns_message_content():
    session = FakeSession(FakeResponse(payload={'choices': [{'message': {'content': '{"intent": "find-nearest"}'}}]}))
    provider = GroqLLMProvider(api_key="key", session=session, retry_policy=NO_WAIT)

    reply = await provider.chat([{'role': 'user', 'content': "nearest cafe"}])

    assert json.loads(reply)['intent'] == "find-nearest"
    assert session.requests[0]['headers']['Authorization'] == "Bearer key"
    assert session.requests[0]['json']['model'] == provider.model


@pytest.mark.asyncio
async def test_groq_without_key_or_content():
    with pytest.raises(ProviderNotAvailableError):
        await GroqLLMProvider(api_key=None).chat([])

    session = FakeSession(FakeResponse(payload={'choices': []}))
    provider = GroqLLMProvider(api_key="key", session=session, retry_policy=NO_WAIT)
    with pytest.raises(ProviderError):
        await provider.chat([{'role': 'user', 'content': "hi"}])


@pytest.mark.asyncio
async def test_health_check_reports_unhealthy_on_probe_failure():
    session = FakeSession(FakeResponse(500, body="down"))
    provider = OverpassPOIProvider(session=session, retry_policy=RetryPolicy(max_retries=0))

    health = await provider.health_check()

    assert health.status == ProviderStatus.UNHEALTHY
    assert "server error 500" in health.message


@pytest.mark.asyncio
async def test_session_manager_shares_and_reopens_session():
    manager = SessionManager(timeout=5.0, user_agent="ChatMap-test/1.0")

    first = await manager.get_session()
    assert await manager.get_session() is first
    assert first.headers['User-Agent'] == "ChatMap-test/1.0"

    await manager.close()
    assert first.closed
    second = await manager.get_session()
    assert second is not first
    await manager.close()
