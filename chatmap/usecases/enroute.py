"""
Find a stop along the way to a destination that keeps the detour small.

detour = duration(user -> stop -> destination) - duration(user -> destination)

Only stops within the detour cap (and, when given, the total travel cap)
are returned, best detour first.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from chatmap.cache import GeocodeCache
from chatmap.geo import distance_between, distance_to_line_meters
from chatmap.models import BoundingBox, Location, POI, RouteResult, TransportMode
from chatmap.providers.base import GeoProvider, POIProvider, RoutingProvider
from chatmap.usecases.geocode import resolve_address
from chatmap.usecases.types import (
    ErrorCode,
    ExecutionTracker,
    UseCase,
    UseCaseError,
    UseCaseResult,
    ValidationError,
    parse_poi_type,
    parse_transport,
    validate_location,
    validate_time,
)


@dataclass
class EnrouteRequest:
    poi_type: Any
    user_location: Location
    destination: Union[Location, str]
    transport: Any = TransportMode.DRIVING
    max_total_time_minutes: Optional[float] = None
    max_detour_minutes: float = 10
    cuisine: Optional[str] = None


@dataclass
class EnrouteResult:
    pois: List[POI]
    destination: Location
    direct_route: RouteResult
    transport: TransportMode
    best_route: Optional[RouteResult] = None
    candidates_checked: int = 0

    @property
    def stopover(self) -> Optional[POI]:
        return self.pois[0] if self.pois else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'stopover': self.stopover.to_dict() if self.stopover else None,
            'pois': [p.to_dict() for p in self.pois],
            'destination': self.destination.to_dict(),
            'transport': self.transport.value,
            'direct_route': self.direct_route.to_dict(),
            'best_route': self.best_route.to_dict(include_geometry=True) if self.best_route else None,
            'candidates_checked': self.candidates_checked,
        }


class FindPOIEnroute(UseCase[EnrouteRequest, EnrouteResult]):

    name = "find-enroute"

    def __init__(
        self,
        pois: POIProvider,
        routing: RoutingProvider,
        geocoder: Optional[GeoProvider] = None,
        cache: Optional[GeocodeCache] = None,
        corridor_meters: float = 2000.0,
        max_candidates: int = 5,
        min_total_minutes: float = 5,
        max_total_minutes: float = 180,
    ):
        super().__init__()
        self.pois = pois
        self.routing = routing
        self.geocoder = geocoder
        self.cache = cache
        self.corridor_meters = corridor_meters
        self.max_candidates = max_candidates
        self.min_total_minutes = min_total_minutes
        self.max_total_minutes = max_total_minutes

    async def _resolve_destination(self, destination, tracker: ExecutionTracker) -> Location:
        if not isinstance(destination, str):
            return validate_location(destination, "destination")
        text = destination.strip()
        if not text:
            raise ValidationError("destination is required", "destination")
        if self.geocoder is None:
            raise ValidationError("destination must be a location when no geocoder is configured",
                                  "destination")
        matches = await resolve_address(self.geocoder, self.cache, text, tracker, limit=1)
        if not matches:
            raise ValidationError(f"Could not find destination '{text}'", "destination")
        return matches[0]

    def _corridor_candidates(self, candidates: List[POI], line) -> List[POI]:
        scored = []
        for poi in candidates:
            offset = distance_to_line_meters(poi.location, line)
            if offset is not None and offset <= self.corridor_meters:
                scored.append((offset, poi.id, poi))
        scored.sort(key=lambda item: (item[0], item[1]))
        return [poi for _, _, poi in scored[:self.max_candidates]]

    async def _run(self, request: EnrouteRequest, tracker: ExecutionTracker) -> UseCaseResult[EnrouteResult]:
        origin = validate_location(request.user_location, "user_location")
        poi_type = parse_poi_type(request.poi_type)
        transport = parse_transport(request.transport)
        max_detour = validate_time(request.max_detour_minutes, 0, self.max_total_minutes, "max_detour_minutes")
        max_total = None
        if request.max_total_time_minutes is not None:
            max_total = validate_time(request.max_total_time_minutes, self.min_total_minutes,
                                      self.max_total_minutes, "max_total_time_minutes")

        destination = await self._resolve_destination(request.destination, tracker)

        direct = await tracker.call(self.routing.route([origin, destination], transport))
        direct_minutes = direct.duration_minutes
        if max_total is not None and direct_minutes > max_total:
            return tracker.fail(UseCaseError(
                ErrorCode.TIME_CONSTRAINT_EXCEEDED,
                f"The direct trip already takes {round(direct_minutes)} minutes, "
                f"over the {max_total} minute limit",
                {'direct_minutes': round(direct_minutes, 1), 'max_total_time_minutes': max_total},
            ))

        line = list(direct.geometry) or [origin.to_coordinate(), destination.to_coordinate()]
        bbox = BoundingBox.around_points(line, self.corridor_meters)
        found = await tracker.call(self.pois.find_pois(bbox, poi_type, request.cuisine, 30))
        candidates = self._corridor_candidates(found, line)

        empty = EnrouteResult([], destination, direct, transport)
        if not candidates:
            return tracker.ok(empty, advisory=(
                f"No {poi_type.value} found within {round(self.corridor_meters)}m of the route"
            ))

        legs = await asyncio.gather(*(
            tracker.call(self.routing.route([origin, c.location, destination], transport))
            for c in candidates
        ), return_exceptions=True)

        feasible = []
        failures = []
        for candidate, leg in zip(candidates, legs):
            if isinstance(leg, asyncio.CancelledError):
                raise leg
            if isinstance(leg, BaseException):
                failures.append(leg)
                self.logger.warning("Stopover route via %s failed: %s", candidate.id, leg)
                continue
            with_stop = leg.duration_minutes
            detour = with_stop - direct_minutes
            if detour > max_detour:
                continue
            if max_total is not None and with_stop > max_total:
                continue
            # reported detour equals reported total minus reported direct time
            shown_total = round(with_stop, 1)
            feasible.append((candidate.derive(
                distance=round(distance_between(origin, candidate.location)),
                detour_minutes=round(shown_total - round(direct_minutes, 1), 1),
                durations={transport.value: shown_total},
            ), leg, detour))

        if failures and len(failures) == len(candidates):
            raise failures[0]
        if failures:
            tracker.warn(f"{len(failures)} stopover route(s) could not be computed")

        if not feasible:
            return tracker.fail(UseCaseError(
                ErrorCode.TIME_CONSTRAINT_EXCEEDED,
                f"No {poi_type.value} along the way fits a {max_detour} minute detour",
                {
                    'candidates_checked': len(candidates),
                    'direct_minutes': round(direct_minutes, 1),
                    'max_detour_minutes': max_detour,
                },
            ))

        feasible.sort(key=lambda item: (item[2], item[0].id))
        pois = [poi for poi, _, _ in feasible]
        return tracker.ok(EnrouteResult(
            pois=pois,
            destination=destination,
            direct_route=direct,
            transport=transport,
            best_route=feasible[0][1],
            candidates_checked=len(candidates),
        ))
