"""
Sequential multi-step plans.

A plan is an ordered list of named steps. Each step receives the data of the
steps before it and returns a UseCaseResult. The plan stops at the first
step that fails or comes back empty (success with an advisory); that step's
result becomes the plan's result.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from chatmap.agents.entities import EnrouteEntities, NearPOIEntities
from chatmap.models import Location
from chatmap.usecases.enroute import EnrouteRequest, FindPOIEnroute
from chatmap.usecases.geocode import Geocode, GeocodeRequest
from chatmap.usecases.near_poi import FindPOIsNearPOI, NearPOIRequest
from chatmap.usecases.nearest import FindNearestPOI, NearestRequest
from chatmap.usecases.types import ErrorCode, UseCaseError, UseCaseResult

StepFn = Callable[[Dict[str, Any]], Awaitable[UseCaseResult]]


@dataclass
class PlanStep:
    name: str
    run: StepFn


@dataclass
class StepRecord:
    name: str
    success: bool
    api_calls_count: int
    execution_time_ms: float
    stopped_plan: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'success': self.success,
            'api_calls_count': self.api_calls_count,
            'execution_time_ms': round(self.execution_time_ms, 1),
            'stopped_plan': self.stopped_plan,
        }


@dataclass
class PlanOutcome:
    result: UseCaseResult
    steps: List[StepRecord] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def api_calls_count(self) -> int:
        return sum(step.api_calls_count for step in self.steps)


async def execute_plan(steps: List[PlanStep]) -> PlanOutcome:
    """Run `steps` in order, feeding each one the data of its predecessors."""
    if not steps:
        raise ValueError("a plan needs at least one step")

    outputs: Dict[str, Any] = {}
    records: List[StepRecord] = []
    warnings: List[str] = []
    result: Optional[UseCaseResult] = None

    for index, step in enumerate(steps):
        result = await step.run(outputs)
        warnings.extend(result.metadata.warnings)
        is_last = index == len(steps) - 1
        stop = not is_last and (not result.success or result.is_empty)
        records.append(StepRecord(
            name=step.name,
            success=result.success,
            api_calls_count=result.metadata.api_calls_count,
            execution_time_ms=result.metadata.execution_time_ms,
            stopped_plan=stop,
        ))
        if stop:
            break
        outputs[step.name] = result.data

    return PlanOutcome(result=result, steps=records, warnings=warnings)


def near_poi_plan(
    nearest: FindNearestPOI,
    near_poi: FindPOIsNearPOI,
    entities: NearPOIEntities,
    location: Location,
) -> List[PlanStep]:
    """Nearest secondary POI becomes the anchor for the primary search."""

    async def find_anchor(outputs):
        return await nearest.execute(NearestRequest(
            poi_type=entities.secondary_type,
            user_location=location,
            transport=entities.transport,
        ))

    async def search_around_anchor(outputs):
        return await near_poi.execute(NearPOIRequest(
            primary_poi_type=entities.primary_type,
            secondary_poi_type=entities.secondary_type,
            user_location=location,
            transport=entities.transport,
            max_time_from_secondary=entities.max_time_from_secondary,
            cuisine=entities.cuisine,
            anchor=outputs['find-anchor'].nearest,
        ))

    return [PlanStep('find-anchor', find_anchor), PlanStep('search-around-anchor', search_around_anchor)]


def enroute_plan(
    geocode: Geocode,
    enroute: FindPOIEnroute,
    entities: EnrouteEntities,
    location: Location,
) -> List[PlanStep]:
    """Resolve the destination text, then search along the route to it."""

    async def resolve_destination(outputs):
        result = await geocode.execute(GeocodeRequest(address=entities.destination, max_results=1))
        if result.is_empty:
            # nothing to route to: the caller has to rephrase the destination
            return UseCaseResult(
                success=False,
                error=UseCaseError(
                    ErrorCode.VALIDATION_ERROR,
                    f"Could not find destination '{entities.destination}'",
                    {'field': 'destination'},
                ),
                metadata=result.metadata,
            )
        return result

    async def search_along_route(outputs):
        return await enroute.execute(EnrouteRequest(
            poi_type=entities.poi_type,
            user_location=location,
            destination=outputs['resolve-destination'].best,
            transport=entities.transport,
            max_total_time_minutes=entities.max_total_time_minutes,
            max_detour_minutes=entities.max_detour_minutes,
            cuisine=entities.cuisine,
        ))

    return [PlanStep('resolve-destination', resolve_destination),
            PlanStep('search-along-route', search_along_route)]
