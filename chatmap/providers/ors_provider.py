"""
OpenRouteService provider: isochrones, directions and travel-time matrices.

ORS expects coordinates as [lng, lat]. Public transport has no ORS profile
and is approximated with the walking profile.
"""

from typing import Any, Dict, List, Optional, Sequence

from chatmap.models import (
    BoundingBox,
    Isochrone,
    IsochronePolygon,
    Location,
    MatrixResult,
    RouteResult,
    RouteStep,
    TransportMode,
)
from chatmap.providers.base import (
    IsochroneProvider,
    ProviderError,
    ProviderMetadata,
    ProviderNotAvailableError,
    RoutingProvider,
)
from chatmap.providers.utils import request_json


ORS_PROFILES = {
    TransportMode.WALKING: "foot-walking",
    TransportMode.DRIVING: "driving-car",
    TransportMode.CYCLING: "cycling-regular",
    TransportMode.PUBLIC_TRANSPORT: "foot-walking",
}


def ors_profile(transport: TransportMode) -> str:
    return ORS_PROFILES.get(TransportMode.parse(transport), "foot-walking")


def _coordinate(location: Location) -> List[float]:
    return [location.lng, location.lat]


def parse_isochrone(data: Dict[str, Any], center: Location, transport: TransportMode) -> Isochrone:
    """Build an Isochrone from an ORS GeoJSON FeatureCollection."""
    polygons = []
    for feature in data.get("features") or []:
        geometry = feature.get("geometry") or {}
        props = feature.get("properties") or {}
        value = float(props.get("value", 0))
        if geometry.get("type") == "Polygon":
            parts = [geometry.get("coordinates") or []]
        elif geometry.get("type") == "MultiPolygon":
            parts = geometry.get("coordinates") or []
        else:
            continue
        for rings in parts:
            polygons.append(IsochronePolygon(
                value_seconds=value,
                transport=transport,
                rings=tuple(tuple((float(c[0]), float(c[1])) for c in ring) for ring in rings),
            ))

    if not polygons:
        raise ProviderError("ORS isochrone response contained no polygons", "ors", retryable=False)

    bbox_raw = data.get("bbox")
    if bbox_raw and len(bbox_raw) >= 4:
        # GeoJSON bbox is [min_lng, min_lat, max_lng, max_lat]
        bbox = BoundingBox(south=bbox_raw[1], west=bbox_raw[0], north=bbox_raw[3], east=bbox_raw[2])
    else:
        bbox = BoundingBox.around_points(c for p in polygons for c in p.rings[0])

    return Isochrone(center=center, transport=transport, polygons=tuple(polygons), bbox=bbox)


def parse_route(data: Dict[str, Any]) -> RouteResult:
    """Build a RouteResult from an ORS GeoJSON directions response."""
    features = data.get("features") or []
    if not features:
        raise ProviderError("ORS directions response contained no route", "ors", retryable=False)
    feature = features[0]
    props = feature.get("properties") or {}
    summary = props.get("summary") or {}
    steps = []
    for segment in props.get("segments") or []:
        for step in segment.get("steps") or []:
            steps.append(RouteStep(
                instruction=step.get("instruction", ""),
                distance=float(step.get("distance", 0)),
                duration=float(step.get("duration", 0)),
                type=int(step.get("type", 0)),
            ))
    coords = (feature.get("geometry") or {}).get("coordinates") or []
    return RouteResult(
        distance=float(summary.get("distance", 0)),
        duration=float(summary.get("duration", 0)),
        geometry=tuple((float(c[0]), float(c[1])) for c in coords),
        steps=tuple(steps),
    )


class ORSProvider(IsochroneProvider, RoutingProvider):
    """Isochrone and routing adapter for api.openrouteservice.org."""

    name = "ors"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = "https://api.openrouteservice.org",
        timeout: float = 30.0,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def _post(self, path: str, body: Dict[str, Any]) -> Any:
        if not self.api_key:
            raise ProviderNotAvailableError("ORS_API_KEY is not configured", provider_name=self.name)
        session = await self._get_session()
        url = f"{self.base_url}{path}"
        headers = {
            "Authorization": self.api_key,
            "Content-Type": "application/json",
            "Accept": "application/json, application/geo+json",
        }
        return await self._call(
            lambda: request_json(
                session, "POST", url, self.name,
                json_data=body, headers=headers, timeout=self.timeout,
            )
        )

    async def isochrone(
        self,
        location: Location,
        ranges_seconds: Sequence[float],
        transport: TransportMode,
    ) -> Isochrone:
        transport = TransportMode.parse(transport)
        profile = ors_profile(transport)
        data = await self._post(f"/v2/isochrones/{profile}", {
            "locations": [_coordinate(location)],
            "range": [int(r) for r in ranges_seconds],
            "range_type": "time",
        })
        return parse_isochrone(data, location, transport)

    async def route(self, waypoints: Sequence[Location], transport: TransportMode) -> RouteResult:
        if len(waypoints) < 2:
            raise ValueError("a route needs at least two waypoints")
        profile = ors_profile(transport)
        data = await self._post(f"/v2/directions/{profile}/geojson", {
            "coordinates": [_coordinate(w) for w in waypoints],
            "instructions": True,
            "geometry": True,
        })
        return parse_route(data)

    async def matrix(
        self,
        locations: Sequence[Location],
        transport: TransportMode,
        sources: Optional[Sequence[int]] = None,
        destinations: Optional[Sequence[int]] = None,
    ) -> MatrixResult:
        profile = ors_profile(transport)
        body: Dict[str, Any] = {
            "locations": [_coordinate(loc) for loc in locations],
            "metrics": ["duration", "distance"],
        }
        if sources is not None:
            body["sources"] = list(sources)
        if destinations is not None:
            body["destinations"] = list(destinations)
        data = await self._post(f"/v2/matrix/{profile}", body)
        return MatrixResult(
            durations=data.get("durations") or [],
            distances=data.get("distances") or [],
        )

    async def probe(self) -> None:
        if not self.api_key:
            raise ProviderNotAvailableError("ORS_API_KEY is not configured", provider_name=self.name)
        origin = Location(52.52, 13.405)
        await self.matrix([origin, Location(52.521, 13.406)], TransportMode.WALKING)

    async def get_metadata(self) -> ProviderMetadata:
        return ProviderMetadata(
            name=self.name,
            version="2",
            description="OpenRouteService isochrones, directions and matrix",
            capabilities=["isochrone", "route", "matrix"],
            rate_limit=40,
        )
