"""
Find POIs of one type close (in travel time) to the nearest POI of another.

"cafes near the nearest park": the park is the anchor, the cafes are the
primary results, ranked by travel time from the anchor.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from chatmap.geo import distance_between, estimate_travel_minutes, reachable_radius_meters
from chatmap.models import BoundingBox, Location, POI, TransportMode
from chatmap.providers.base import POIProvider, ProviderError, RoutingProvider
from chatmap.usecases.nearest import FindNearestPOI, NearestRequest
from chatmap.usecases.types import (
    ExecutionTracker,
    UseCase,
    UseCaseResult,
    parse_poi_type,
    parse_transport,
    validate_location,
    validate_positive_int,
    validate_time,
)


@dataclass
class NearPOIRequest:
    primary_poi_type: Any
    secondary_poi_type: Any
    user_location: Location
    transport: Any = TransportMode.WALKING
    max_time_from_secondary: float = 15
    cuisine: Optional[str] = None
    max_results: int = 20
    anchor: Optional[POI] = None  # pre-resolved secondary POI


@dataclass
class NearPOIResult:
    anchor: Optional[POI]
    pois: List[POI]
    transport: TransportMode
    max_time_from_secondary: float
    search_radius: float

    @property
    def count(self) -> int:
        return len(self.pois)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'anchor': self.anchor.to_dict() if self.anchor else None,
            'pois': [p.to_dict() for p in self.pois],
            'count': self.count,
            'transport': self.transport.value,
            'max_time_from_secondary': self.max_time_from_secondary,
            'search_radius': round(self.search_radius),
        }


class FindPOIsNearPOI(UseCase[NearPOIRequest, NearPOIResult]):

    name = "find-near-poi"

    def __init__(
        self,
        pois: POIProvider,
        nearest: FindNearestPOI,
        routing: Optional[RoutingProvider] = None,
        min_minutes: float = 1,
        max_minutes: float = 120,
    ):
        super().__init__()
        self.pois = pois
        self.nearest = nearest
        self.routing = routing
        self.min_minutes = min_minutes
        self.max_minutes = max_minutes

    async def _resolve_anchor(self, request: NearPOIRequest, origin: Location, transport: TransportMode,
                              tracker: ExecutionTracker):
        """Returns (anchor, early_result); early_result is set when no anchor exists."""
        if request.anchor is not None:
            return request.anchor, None
        found = await self.nearest.execute(NearestRequest(
            poi_type=request.secondary_poi_type,
            user_location=origin,
            transport=transport,
        ))
        tracker.absorb(found.metadata)
        if not found.success:
            return None, tracker.fail(found.error)
        return found.data.nearest, None

    async def _durations_from_anchor(self, anchor: POI, candidates: List[POI], transport: TransportMode,
                                     tracker: ExecutionTracker):
        """(minutes, meters) per candidate; estimated from distance when routing fails."""
        if self.routing is not None:
            try:
                matrix = await tracker.call(self.routing.matrix(
                    [anchor.location] + [c.location for c in candidates], transport,
                    sources=[0], destinations=list(range(1, len(candidates) + 1)),
                ))
                durations = matrix.durations[0] if matrix.durations else []
                distances = matrix.distances[0] if matrix.distances else []
                if len(durations) == len(candidates):
                    out = []
                    for i, seconds in enumerate(durations):
                        meters = distances[i] if i < len(distances) and distances[i] is not None \
                            else distance_between(anchor.location, candidates[i].location)
                        out.append((None if seconds is None else seconds / 60.0, meters))
                    return out
                tracker.warn("Routing matrix was incomplete; travel times from anchor estimated")
            except (ProviderError, asyncio.TimeoutError) as e:
                self.logger.warning("Matrix from anchor %s failed: %s", anchor.id, e)
                tracker.warn("Routing unavailable; travel times from anchor estimated")
        else:
            tracker.warn("No routing provider; travel times from anchor estimated")
        out = []
        for candidate in candidates:
            meters = distance_between(anchor.location, candidate.location)
            out.append((estimate_travel_minutes(meters, transport), meters))
        return out

    async def _run(self, request: NearPOIRequest, tracker: ExecutionTracker) -> UseCaseResult[NearPOIResult]:
        origin = validate_location(request.user_location, "user_location")
        primary = parse_poi_type(request.primary_poi_type, "primary_poi_type")
        secondary = parse_poi_type(request.secondary_poi_type, "secondary_poi_type")
        transport = parse_transport(request.transport)
        max_time = validate_time(request.max_time_from_secondary, self.min_minutes, self.max_minutes,
                                 "max_time_from_secondary")
        max_results = validate_positive_int(request.max_results, "max_results", 200)

        anchor, early = await self._resolve_anchor(request, origin, transport, tracker)
        if early is not None:
            return early
        radius = reachable_radius_meters(max_time, transport)
        if anchor is None:
            return tracker.ok(
                NearPOIResult(None, [], transport, max_time, radius),
                advisory=f"No {secondary.value} found near you to search around",
            )

        candidates = await tracker.call(self.pois.find_pois(
            BoundingBox.around(anchor.location, radius), primary, request.cuisine, max_results * 2,
        ))
        candidates = [c for c in candidates if c.id != anchor.id]

        results: List[POI] = []
        if candidates:
            measured = await self._durations_from_anchor(anchor, candidates, transport, tracker)
            for candidate, (minutes, meters) in zip(candidates, measured):
                if minutes is None or minutes > max_time:
                    continue
                results.append(candidate.derive(
                    distance=round(distance_between(origin, candidate.location)),
                    distance_from_anchor=round(meters),
                    travel_time_from_anchor=round(minutes, 1),
                ))
        results.sort(key=lambda p: (p.travel_time_from_anchor, p.distance_from_anchor, p.id))
        if len(results) > max_results:
            tracker.warn(f"Found {len(results)} results; returning the closest {max_results}")
            results = results[:max_results]

        payload = NearPOIResult(anchor, results, transport, max_time, radius)
        if not results:
            return tracker.ok(payload, advisory=(
                f"No {primary.value} within {max_time} minutes of {anchor.name}"
            ))
        return tracker.ok(payload)
