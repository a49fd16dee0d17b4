"""
Point-to-point directions, with an optional free-text destination.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from chatmap.cache import GeocodeCache
from chatmap.models import Location, RouteResult, TransportMode
from chatmap.providers.base import GeoProvider, RoutingProvider
from chatmap.usecases.geocode import resolve_address
from chatmap.usecases.types import (
    ExecutionTracker,
    UseCase,
    UseCaseResult,
    ValidationError,
    parse_transport,
    validate_location,
)

MAX_WAYPOINTS = 25


@dataclass
class RouteRequest:
    start: Location
    destination: Union[Location, str]
    transport: Any = TransportMode.WALKING
    waypoints: Sequence[Location] = field(default_factory=list)


@dataclass
class RouteResponse:
    start: Location
    destination: Location
    transport: TransportMode
    route: RouteResult

    def to_dict(self) -> Dict[str, Any]:
        return {
            'start': self.start.to_dict(),
            'destination': self.destination.to_dict(),
            'transport': self.transport.value,
            'route': self.route.to_dict(include_geometry=True),
        }


class GetRoute(UseCase[RouteRequest, RouteResponse]):

    name = "get-route"

    def __init__(self, routing: RoutingProvider, geocoder: Optional[GeoProvider] = None,
                 cache: Optional[GeocodeCache] = None):
        super().__init__()
        self.routing = routing
        self.geocoder = geocoder
        self.cache = cache

    async def _run(self, request: RouteRequest, tracker: ExecutionTracker) -> UseCaseResult[RouteResponse]:
        start = validate_location(request.start, "start")
        transport = parse_transport(request.transport)
        waypoints: List[Location] = [validate_location(w, "waypoints") for w in request.waypoints]
        if len(waypoints) + 2 > MAX_WAYPOINTS:
            raise ValidationError(f"at most {MAX_WAYPOINTS} points per route", "waypoints")

        destination = request.destination
        if isinstance(destination, str):
            if not destination.strip():
                raise ValidationError("destination is required", "destination")
            if self.geocoder is None:
                raise ValidationError("destination must be a location when no geocoder is configured",
                                      "destination")
            matches = await resolve_address(self.geocoder, self.cache, destination.strip(), tracker, limit=1)
            if not matches:
                raise ValidationError(f"Could not find destination '{destination}'", "destination")
            destination = matches[0]
        destination = validate_location(destination, "destination")

        route = await tracker.call(self.routing.route([start] + waypoints + [destination], transport))
        return tracker.ok(RouteResponse(start, destination, transport, route))
