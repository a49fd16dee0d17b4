import pytest

from chatmap.providers.base import ProviderError
from chatmap.usecases.nearest import FindNearestPOI, NearestRequest
from chatmap.usecases.types import ErrorCode

from conftest import FakePOIProvider, FakeRoutingProvider, poi_at


@pytest.mark.asyncio
async def test_nearest_with_alternatives_in_distance_order(origin):
    pois = FakePOIProvider([
        poi_at("ph-700", "pharmacy", 700),
        poi_at("ph-300", "pharmacy", 300, bearing=120),
        poi_at("ph-500", "pharmacy", 500, bearing=240),
    ])
    result = await FindNearestPOI(pois).execute(NearestRequest("pharmacy", origin))

    assert result.success
    assert result.data.nearest.id == "ph-300"
    assert [p.id for p in result.data.alternatives] == ["ph-500", "ph-700"]
    assert result.data.search_radius == 1000
    assert result.data.travel_time_estimated
    assert result.data.nearest.durations["walking"] == pytest.approx(300 / 1.4 / 60, abs=0.1)
    assert result.metadata.api_calls_count == 1


@pytest.mark.asyncio
async def test_radius_expands_until_something_is_found(origin):
    pois = FakePOIProvider([poi_at("atm-far", "atm", 3500)])
    result = await FindNearestPOI(pois, initial_radius=1000, expansion_factor=2, max_expansions=3).execute(
        NearestRequest("atm", origin)
    )

    assert result.data.nearest.id == "atm-far"
    assert result.data.radii_tried == [1000, 2000, 4000]
    assert result.metadata.api_calls_count == 3
    assert "Search radius widened to 4000m" in result.metadata.warnings


@pytest.mark.asyncio
async def test_poi_outside_circle_but_inside_box_is_not_nearest(origin):
    # 1200 m at 45 degrees lies inside the 1000 m box corner but outside the circle
    pois = FakePOIProvider([poi_at("gym-corner", "gym", 1200, bearing=45), poi_at("gym-1100", "gym", 1100)])
    result = await FindNearestPOI(pois).execute(NearestRequest("gym", origin))

    assert result.data.nearest.id == "gym-1100"
    assert result.data.radii_tried == [1000, 2000]


@pytest.mark.asyncio
async def test_nothing_found_after_all_expansions(origin):
    result = await FindNearestPOI(FakePOIProvider([]), max_expansions=2).execute(
        NearestRequest("hospital", origin)
    )

    assert result.success
    assert result.data.nearest is None
    assert result.advisory == "No hospital found within 4000m"
    assert result.metadata.api_calls_count == 3


@pytest.mark.asyncio
async def test_routing_travel_time_and_fallback(origin):
    pois = FakePOIProvider([poi_at("cafe-1", "cafe", 200)])
    routed = await FindNearestPOI(pois, routing=FakeRoutingProvider(route_minutes=lambda w: 4.0)).execute(
        NearestRequest("cafe", origin, use_routing=True)
    )
    assert routed.data.travel_time_minutes == 4.0
    assert not routed.data.travel_time_estimated
    assert routed.metadata.api_calls_count == 2

    failing = FakeRoutingProvider(error=ProviderError("down", "ors", status_code=502, retryable=True))
    estimated = await FindNearestPOI(pois, routing=failing).execute(
        NearestRequest("cafe", origin, use_routing=True)
    )
    assert estimated.success
    assert estimated.data.travel_time_estimated
    assert any("Routing unavailable" in w for w in estimated.metadata.warnings)


@pytest.mark.asyncio
async def test_provider_failure_is_reported(origin):
    pois = FakePOIProvider(error=ProviderError("bad query", "overpass", status_code=400, retryable=False))
    result = await FindNearestPOI(pois).execute(NearestRequest("cafe", origin))

    assert result.error.code == ErrorCode.UPSTREAM_SERVICE_ERROR
    assert not result.error.retryable


@pytest.mark.asyncio
@pytest.mark.parametrize("order", [("atm-1", "atm-2"), ("atm-2", "atm-1")])
async def test_equal_distances_keep_source_order(origin, order):
    atms = [poi_at(atm_id, "atm", 250, bearing=120, origin=origin) for atm_id in order]

    result = await FindNearestPOI(FakePOIProvider(atms)).execute(NearestRequest("atm", origin))

    assert result.data.nearest.id == order[0]
    assert [p.id for p in result.data.alternatives] == [order[1]]
