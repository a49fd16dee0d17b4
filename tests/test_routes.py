import pytest

from chatmap import app as app_module
from chatmap.config import get_config, reset_config
from chatmap.providers.container import ProviderContainer
from chatmap.services import wiring
from chatmap.services.wiring import build_services

from conftest import (
    ORIGIN,
    FakeGeoProvider,
    FakeIsochroneProvider,
    FakePOIProvider,
    FakeRedis,
    FakeRoutingProvider,
    poi_at,
)


LOCATION = {'lat': ORIGIN.lat, 'lng': ORIGIN.lng}


def fake_container():
    container = ProviderContainer()
    container.register("geo", FakeGeoProvider({'central park': poi_at("cp", "park", 1500).location}))
    container.register("pois", FakePOIProvider([
        poi_at("cafe-100", "cafe", 100),
        poi_at("cafe-400", "cafe", 400, bearing=180),
        poi_at("cafe-far", "cafe", 3000),
    ]))
    container.register("isochrones", FakeIsochroneProvider(radius_m=500))
    container.register("routing", FakeRoutingProvider())
    return container


async def call(services, method, path, json=None):
    quart_app = app_module.create_app(services=services)
    async with quart_app.test_app() as test_app:
        async with test_app.test_client() as client:
            if method == 'GET':
                resp = await client.get(path)
            else:
                resp = await client.post(path, json=json)
            return resp.status_code, await resp.get_json()


@pytest.fixture
def services():
    return build_services(get_config(), container=fake_container())


@pytest.mark.asyncio
async def test_health_lists_providers(services):
    status, data = await call(services, 'GET', '/api/health')

    assert status == 200
    assert data['status'] == 'ok'
    assert set(data['providers']) == {'geo', 'pois', 'isochrones', 'routing'}
    assert data['llm'] is False
    assert data['redis'] is False


@pytest.mark.asyncio
async def test_within_time_endpoint(services):
    status, data = await call(services, 'POST', '/api/poi/within-time', {
        'location': LOCATION, 'poi_type': 'cafe', 'time_minutes': 10,
    })

    assert status == 200
    assert data['success'] is True
    assert [p['id'] for p in data['data']['pois']] == ["cafe-100", "cafe-400"]
    assert data['metadata']['api_calls_count'] == 2


@pytest.mark.asyncio
async def test_use_case_validation_is_400(services):
    status, data = await call(services, 'POST', '/api/poi/nearest', {
        'poi_type': 'cafe', 'user_location': {'lat': 91, 'lng': 0},
    })

    assert status == 400
    assert data['error']['code'] == "VALIDATION_ERROR"
    assert data['error']['details']['field'] == "user_location"


@pytest.mark.asyncio
async def test_geocode_requires_address(services):
    status, data = await call(services, 'POST', '/api/geocode', {})
    assert status == 400

    status, data = await call(services, 'POST', '/api/geocode', {'address': "Central Park"})
    assert status == 200
    assert len(data['data']['locations']) == 1


@pytest.mark.asyncio
async def test_classify_endpoint(services):
    status, data = await call(services, 'POST', '/api/classify', {'query': "nearest cafe"})
    assert status == 200
    assert data['intent'] == "find-nearest"
    assert data['entities']['poi_type'] == "cafe"

    status, data = await call(services, 'POST', '/api/classify', {'query': "  "})
    assert status == 400


@pytest.mark.asyncio
async def test_agent_endpoint_and_metrics(services):
    status, data = await call(services, 'POST', '/api/agent', {
        'query': "cafes within 10 minutes walk", 'user_id': "u1", 'user_location': LOCATION,
    })
    assert status == 200
    assert data['agent_used'] == "SimpleQueryAgent"
    assert data['state'] == "completed"
    assert data['result']['success'] is True

    status, data = await call(services, 'POST', '/api/agent', {
        'query': "find food", 'user_id': "u1", 'user_location': LOCATION,
    })
    assert status == 422
    assert data['result']['error']['code'] == "CLASSIFICATION_LOW_CONFIDENCE"

    status, data = await call(services, 'GET', '/api/metrics')
    assert data['counters']['orchestrate.find-within-time'] == 1
    assert data['latencies']['orchestrate']['count'] == 2


@pytest.mark.asyncio
async def test_agent_follow_up_over_http(services):
    status, first = await call(services, 'POST', '/api/classify', {'query': "cafes within 10 minutes walk"})

    status, data = await call(services, 'POST', '/api/agent', {
        'query': "how about 3 minutes instead",
        'user_id': "u1",
        'user_location': LOCATION,
        'conversation_history': [
            {'role': 'user', 'content': "cafes within 10 minutes walk", 'classification': first},
        ],
    })

    assert status == 200
    assert data['classification']['entities']['time_minutes'] == 3


@pytest.mark.asyncio
async def test_startup_connects_redis_and_records_metrics(monkeypatch):
    fake_redis = FakeRedis()
    monkeypatch.setenv('REDIS_URL', 'redis://localhost:6379/0')
    reset_config()
    monkeypatch.setattr(app_module.aioredis, 'from_url', lambda url, **kwargs: fake_redis)
    monkeypatch.setattr(wiring, 'build_container', lambda config: fake_container())

    quart_app = app_module.create_app()
    async with quart_app.test_app() as test_app:
        async with test_app.test_client() as client:
            resp = await client.get('/api/health')
            assert (await resp.get_json())['redis'] is True
            await client.post('/api/agent', json={
                'query': "nearest cafe", 'user_id': "u1", 'user_location': LOCATION,
            })
            resp = await client.get('/api/metrics')
            data = await resp.get_json()
            assert data['counters']['orchestrate.find-nearest'] == 1

    assert fake_redis.store['metrics:counter:orchestrate.find-nearest'] == 1
    assert fake_redis.closed
