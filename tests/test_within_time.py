import pytest

from chatmap.geo import distance_between
from chatmap.models import Location
from chatmap.providers.base import ProviderError, ProviderNotAvailableError
from chatmap.usecases.types import ErrorCode
from chatmap.usecases.within_time import FindPOIsWithinTime, WithinTimeRequest

from conftest import FakeIsochroneProvider, FakePOIProvider, FakeRoutingProvider, poi_at


def cafes():
    return [
        poi_at("cafe-900", "cafe", 900),
        poi_at("cafe-400", "cafe", 400, bearing=200),
        poi_at("cafe-100", "cafe", 100, bearing=90),
        poi_at("cafe-corner", "cafe", 600, bearing=45),  # inside the bbox, outside the polygon
        poi_at("park-50", "park", 50),
    ]


@pytest.mark.asyncio
async def test_isochrone_containment_and_distance_order(origin):
    pois = FakePOIProvider(cafes())
    use_case = FindPOIsWithinTime(FakeIsochroneProvider(radius_m=500), pois)

    result = await use_case.execute(WithinTimeRequest(origin, "cafe", 10, "walking"))

    assert result.success
    assert [p.id for p in result.data.pois] == ["cafe-100", "cafe-400"]
    assert result.data.strategy == "isochrone"
    assert result.data.isochrone is not None
    assert result.metadata.api_calls_count == 2
    assert result.metadata.warnings == []
    assert result.data.pois[0].distance == pytest.approx(100, abs=1)


@pytest.mark.asyncio
async def test_radius_fallback_when_isochrone_service_fails(origin):
    isochrones = FakeIsochroneProvider(error=ProviderNotAvailableError("no key", "ors"))
    use_case = FindPOIsWithinTime(isochrones, FakePOIProvider(cafes()))

    # 5 minutes walking at 1.4 m/s -> 420 m
    result = await use_case.execute(WithinTimeRequest(origin, "cafe", 5, "walking"))

    assert result.success
    assert result.data.strategy == "radius"
    assert [p.id for p in result.data.pois] == ["cafe-100", "cafe-400"]
    assert any("Isochrone service unavailable" in w and "420m" in w for w in result.metadata.warnings)


@pytest.mark.asyncio
async def test_routed_duration_over_limit_is_dropped(origin):
    routing = FakeRoutingProvider(matrix_minutes=lambda o, d: distance_between(o, d) / 50)
    use_case = FindPOIsWithinTime(FakeIsochroneProvider(radius_m=500), FakePOIProvider(cafes()), routing=routing)

    result = await use_case.execute(WithinTimeRequest(
        origin, "cafe", 5, "walking", duration_modes=["walking", "driving"],
    ))

    assert [p.id for p in result.data.pois] == ["cafe-100"]
    assert set(result.data.pois[0].durations) == {"walking", "driving"}
    assert len(routing.matrix_calls) == 2
    assert any("dropped" in w for w in result.metadata.warnings)


@pytest.mark.asyncio
async def test_matrix_failure_falls_back_to_estimates(origin):
    routing = FakeRoutingProvider(matrix_error=ProviderError("down", "ors", status_code=503, retryable=True))
    use_case = FindPOIsWithinTime(FakeIsochroneProvider(radius_m=500), FakePOIProvider(cafes()), routing=routing)

    result = await use_case.execute(WithinTimeRequest(origin, "cafe", 10, duration_modes=["cycling"]))

    assert result.success
    assert all("cycling" in p.durations for p in result.data.pois)
    assert any("durations estimated" in w for w in result.metadata.warnings)


@pytest.mark.asyncio
async def test_truncates_to_max_results_closest_first(origin):
    many = [poi_at(f"cafe-{d}", "cafe", d, bearing=d) for d in (50, 150, 250, 350, 450)]
    use_case = FindPOIsWithinTime(FakeIsochroneProvider(radius_m=500), FakePOIProvider(many))

    result = await use_case.execute(WithinTimeRequest(origin, "cafe", 10, max_results=2))

    assert [p.id for p in result.data.pois] == ["cafe-50", "cafe-150"]
    assert result.data.total_found == 5
    assert any("Found 5 results" in w for w in result.metadata.warnings)


@pytest.mark.asyncio
async def test_empty_result_is_success_with_advisory(origin):
    use_case = FindPOIsWithinTime(FakeIsochroneProvider(), FakePOIProvider([]))

    result = await use_case.execute(WithinTimeRequest(origin, "pharmacy", 10))

    assert result.success
    assert result.is_empty
    assert result.data.pois == []
    assert result.to_dict()['advisory']['code'] == "NO_RESULTS_FOUND"


@pytest.mark.asyncio
@pytest.mark.parametrize("request_kwargs, field", [
    ({'location': Location(95.0, 0.0), 'poi_type': "cafe", 'time_minutes': 10}, "location"),
    ({'location': Location(40.0, -73.0), 'poi_type': "cafe", 'time_minutes': 0}, "time_minutes"),
    ({'location': Location(40.0, -73.0), 'poi_type': "cafe", 'time_minutes': 121}, "time_minutes"),
    ({'location': Location(40.0, -73.0), 'poi_type': "spaceport", 'time_minutes': 10}, "poi_type"),
    ({'location': Location(40.0, -73.0), 'poi_type': "cafe", 'time_minutes': 10, 'transport': "teleport"},
     "transport"),
])
async def test_validation_errors_make_no_calls(request_kwargs, field):
    pois = FakePOIProvider(cafes())
    isochrones = FakeIsochroneProvider()
    use_case = FindPOIsWithinTime(isochrones, pois)

    result = await use_case.execute(WithinTimeRequest(**request_kwargs))

    assert not result.success
    assert result.error.code == ErrorCode.VALIDATION_ERROR
    assert result.error.details['field'] == field
    assert pois.calls == [] and isochrones.calls == []


@pytest.mark.asyncio
async def test_poi_source_failure_is_upstream_error(origin):
    pois = FakePOIProvider(error=ProviderError("overpass 504", "overpass", status_code=504, retryable=True))
    use_case = FindPOIsWithinTime(FakeIsochroneProvider(), pois)

    result = await use_case.execute(WithinTimeRequest(origin, "cafe", 10))

    assert not result.success
    assert result.error.code == ErrorCode.UPSTREAM_SERVICE_ERROR
    assert result.error.details == {'provider': 'overpass', 'status_code': 504}
    assert result.error.retryable
    assert result.metadata.api_calls_count == 2
