"""
Find POIs reachable from a location within a travel-time budget.

Reachability is decided once per call by one of two strategies:

- IsochroneArea: containment in the polygon returned by the isochrone
  service for the requested transport and time.
- RadiusArea: fallback when the isochrone call fails; a circle whose radius
  is the distance covered at the transport's reference speed.

The chosen strategy is reported in the payload and, for the fallback, in
the result warnings.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from chatmap.geo import distance_between, estimate_travel_minutes, reachable_radius_meters
from chatmap.models import BoundingBox, Isochrone, Location, POI, TransportMode
from chatmap.providers.base import IsochroneProvider, POIProvider, ProviderError, RoutingProvider
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

MAX_RESULTS_LIMIT = 200
CLUSTER_HINT_THRESHOLD = 20


class ReachableArea(ABC):
    strategy = ""

    @property
    @abstractmethod
    def bbox(self) -> BoundingBox:
        pass

    @abstractmethod
    def contains(self, location: Location) -> bool:
        pass


class IsochroneArea(ReachableArea):
    strategy = "isochrone"

    def __init__(self, isochrone: Isochrone):
        self.isochrone = isochrone

    @property
    def bbox(self) -> BoundingBox:
        return self.isochrone.bbox

    def contains(self, location: Location) -> bool:
        return self.isochrone.contains(location)


class RadiusArea(ReachableArea):
    strategy = "radius"

    def __init__(self, center: Location, radius_meters: float):
        self.center = center
        self.radius_meters = radius_meters

    @property
    def bbox(self) -> BoundingBox:
        return BoundingBox.around(self.center, self.radius_meters)

    def contains(self, location: Location) -> bool:
        return distance_between(self.center, location) <= self.radius_meters


@dataclass
class WithinTimeRequest:
    location: Location
    poi_type: Any
    time_minutes: float
    transport: Any = TransportMode.WALKING
    cuisine: Optional[str] = None
    max_results: int = 50
    duration_modes: Sequence[Any] = ()


@dataclass
class WithinTimeResult:
    pois: List[POI]
    transport: TransportMode
    time_minutes: float
    strategy: str
    total_found: int
    isochrone: Optional[Isochrone] = None
    hints: List[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.pois)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'pois': [p.to_dict() for p in self.pois],
            'count': self.count,
            'total_found': self.total_found,
            'transport': self.transport.value,
            'time_minutes': self.time_minutes,
            'strategy': self.strategy,
            'hints': list(self.hints),
        }
        if self.isochrone is not None:
            data['isochrone'] = self.isochrone.to_dict()
        return data


class FindPOIsWithinTime(UseCase[WithinTimeRequest, WithinTimeResult]):
    """Isochrone-bounded POI search with optional per-mode travel durations."""

    name = "find-within-time"

    def __init__(
        self,
        isochrones: IsochroneProvider,
        pois: POIProvider,
        routing: Optional[RoutingProvider] = None,
        min_minutes: float = 1,
        max_minutes: float = 120,
    ):
        super().__init__()
        self.isochrones = isochrones
        self.pois = pois
        self.routing = routing
        self.min_minutes = min_minutes
        self.max_minutes = max_minutes

    async def _select_area(self, location: Location, time_minutes: float, transport: TransportMode,
                           tracker: ExecutionTracker) -> ReachableArea:
        try:
            isochrone = await tracker.call(
                self.isochrones.isochrone(location, [time_minutes * 60], transport)
            )
            return IsochroneArea(isochrone)
        except (ProviderError, asyncio.TimeoutError) as e:
            radius = reachable_radius_meters(time_minutes, transport)
            self.logger.warning("Isochrone unavailable (%s); using %.0fm radius", e, radius)
            tracker.warn(
                f"Isochrone service unavailable; reachability estimated with a "
                f"{round(radius)}m radius at {transport.value} speed"
            )
            return RadiusArea(location, radius)

    async def _mode_durations(self, origin: Location, pois: List[POI], mode: TransportMode,
                              tracker: ExecutionTracker) -> List[Optional[float]]:
        """Minutes from origin to each POI for one mode; estimates when routing fails."""
        if self.routing is not None:
            try:
                matrix = await tracker.call(self.routing.matrix(
                    [origin] + [p.location for p in pois], mode,
                    sources=[0], destinations=list(range(1, len(pois) + 1)),
                ))
                row = matrix.durations[0] if matrix.durations else []
                if len(row) == len(pois):
                    return [None if s is None else round(s / 60.0, 1) for s in row]
                tracker.warn(f"Routing matrix for {mode.value} was incomplete; durations estimated")
            except (ProviderError, asyncio.TimeoutError) as e:
                self.logger.warning("Matrix for %s failed: %s", mode.value, e)
                tracker.warn(f"Routing unavailable for {mode.value}; durations estimated")
        return [round(estimate_travel_minutes(p.distance or 0.0, mode), 1) for p in pois]

    async def _run(self, request: WithinTimeRequest, tracker: ExecutionTracker) -> UseCaseResult[WithinTimeResult]:
        location = validate_location(request.location)
        poi_type = parse_poi_type(request.poi_type)
        transport = parse_transport(request.transport)
        time_minutes = validate_time(request.time_minutes, self.min_minutes, self.max_minutes)
        max_results = validate_positive_int(request.max_results, "max_results", MAX_RESULTS_LIMIT)
        modes = [parse_transport(m, "duration_modes") for m in request.duration_modes]

        area = await self._select_area(location, time_minutes, transport, tracker)

        candidates = await tracker.call(
            self.pois.find_pois(area.bbox, poi_type, request.cuisine, max_results * 2)
        )
        reachable = [
            p.derive(distance=round(distance_between(location, p.location)))
            for p in candidates
            if area.contains(p.location)
        ]
        reachable.sort(key=lambda p: (p.distance, p.id))
        total_found = len(reachable)

        if total_found > max_results:
            tracker.warn(f"Found {total_found} results; returning the closest {max_results}")
            reachable = reachable[:max_results]

        if reachable and modes:
            unique_modes = list(dict.fromkeys(modes))
            tables = await asyncio.gather(*(
                self._mode_durations(location, reachable, mode, tracker) for mode in unique_modes
            ))
            enriched = []
            for index, poi in enumerate(reachable):
                durations = {
                    mode.value: table[index]
                    for mode, table in zip(unique_modes, tables)
                    if table[index] is not None
                }
                requested = durations.get(transport.value)
                if requested is not None and requested > time_minutes:
                    continue
                enriched.append(poi.derive(durations=durations))
            if len(enriched) < len(reachable):
                tracker.warn(
                    f"{len(reachable) - len(enriched)} result(s) dropped: routed "
                    f"{transport.value} time exceeds {time_minutes} minutes"
                )
            reachable = enriched

        hints = []
        if len(reachable) > CLUSTER_HINT_THRESHOLD:
            hints.append("clustered")

        result = WithinTimeResult(
            pois=reachable,
            transport=transport,
            time_minutes=time_minutes,
            strategy=area.strategy,
            total_found=total_found,
            isochrone=area.isochrone if isinstance(area, IsochroneArea) else None,
            hints=hints,
        )
        if not reachable:
            return tracker.ok(result, advisory=(
                f"No {poi_type.value} found within {time_minutes} minutes by {transport.value}"
            ))
        return tracker.ok(result)
