"""
Find the nearest POI of a type, widening the search radius progressively.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from chatmap.geo import distance_between, estimate_travel_minutes
from chatmap.models import BoundingBox, Location, POI, TransportMode
from chatmap.providers.base import POIProvider, ProviderError, RoutingProvider
from chatmap.usecases.types import (
    ExecutionTracker,
    UseCase,
    UseCaseResult,
    parse_poi_type,
    parse_transport,
    validate_location,
)


@dataclass
class NearestRequest:
    poi_type: Any
    user_location: Location
    transport: Any = TransportMode.WALKING
    cuisine: Optional[str] = None
    use_routing: bool = False


@dataclass
class NearestResult:
    nearest: Optional[POI]
    alternatives: List[POI]
    transport: TransportMode
    search_radius: float
    radii_tried: List[float] = field(default_factory=list)
    travel_time_minutes: Optional[float] = None
    travel_time_estimated: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'nearest': self.nearest.to_dict() if self.nearest else None,
            'alternatives': [p.to_dict() for p in self.alternatives],
            'transport': self.transport.value,
            'search_radius': round(self.search_radius),
            'radii_tried': [round(r) for r in self.radii_tried],
            'travel_time_minutes': self.travel_time_minutes,
            'travel_time_estimated': self.travel_time_estimated,
        }


class FindNearestPOI(UseCase[NearestRequest, NearestResult]):
    """Nearest POI by straight-line distance plus up to N alternatives.

    Candidates are only accepted inside the circle of the current radius so
    that a closer POI cannot hide just outside the queried box.
    """

    name = "find-nearest"

    def __init__(
        self,
        pois: POIProvider,
        routing: Optional[RoutingProvider] = None,
        initial_radius: float = 1000.0,
        expansion_factor: float = 2.0,
        max_expansions: int = 3,
        max_alternatives: int = 3,
        candidates_per_query: int = 50,
    ):
        super().__init__()
        self.pois = pois
        self.routing = routing
        self.initial_radius = initial_radius
        self.expansion_factor = expansion_factor
        self.max_expansions = max_expansions
        self.max_alternatives = max_alternatives
        self.candidates_per_query = candidates_per_query

    def radii(self) -> List[float]:
        return [self.initial_radius * self.expansion_factor ** i for i in range(self.max_expansions + 1)]

    async def _travel_time(self, origin: Location, poi: POI, transport: TransportMode,
                           use_routing: bool, tracker: ExecutionTracker):
        if use_routing and self.routing is not None:
            try:
                route = await tracker.call(self.routing.route([origin, poi.location], transport))
                return round(route.duration_minutes, 1), False
            except (ProviderError, asyncio.TimeoutError) as e:
                self.logger.warning("Route to %s failed: %s", poi.id, e)
                tracker.warn("Routing unavailable; travel time estimated from distance")
        return round(estimate_travel_minutes(poi.distance or 0.0, transport), 1), True

    async def _run(self, request: NearestRequest, tracker: ExecutionTracker) -> UseCaseResult[NearestResult]:
        origin = validate_location(request.user_location, "user_location")
        poi_type = parse_poi_type(request.poi_type)
        transport = parse_transport(request.transport)

        tried: List[float] = []
        found: List[POI] = []
        radius = self.initial_radius
        for radius in self.radii():
            tried.append(radius)
            candidates = await tracker.call(self.pois.find_pois(
                BoundingBox.around(origin, radius), poi_type, request.cuisine, self.candidates_per_query,
            ))
            ranked = []
            for rank, poi in enumerate(candidates):
                distance = distance_between(origin, poi.location)
                if distance <= radius:
                    ranked.append((distance, rank, poi))
            if ranked:
                # ties keep source order
                ranked.sort(key=lambda item: (item[0], item[1]))
                found = [poi.derive(distance=round(distance)) for distance, _, poi in ranked]
                break
            self.logger.debug("No %s within %.0fm, widening", poi_type.value, radius)

        if not found:
            result = NearestResult(None, [], transport, radius, tried)
            return tracker.ok(result, advisory=(
                f"No {poi_type.value} found within {round(radius)}m"
            ))

        if len(tried) > 1:
            tracker.warn(f"Search radius widened to {round(radius)}m")

        nearest = found[0]
        minutes, estimated = await self._travel_time(origin, nearest, transport, request.use_routing, tracker)
        nearest = nearest.derive(durations={transport.value: minutes})
        alternatives = [
            p.derive(durations={transport.value: round(estimate_travel_minutes(p.distance, transport), 1)})
            for p in found[1:1 + self.max_alternatives]
        ]
        return tracker.ok(NearestResult(
            nearest=nearest,
            alternatives=alternatives,
            transport=transport,
            search_radius=radius,
            radii_tried=tried,
            travel_time_minutes=minutes,
            travel_time_estimated=estimated,
        ))
