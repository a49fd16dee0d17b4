"""
Agent orchestrator: query text -> classification -> use case(s) -> envelope.

State machine per request:

    Received -> Classified -> SingleStepExecuting | MultiStepExecuting
             -> Completed | Failed

The orchestrator never raises and never retries; retries live in the
adapter layer. Use-case errors are forwarded unchanged with timing added.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

from chatmap.agents.classifier import ClassifiedQuery, QueryClassifier, QueryComplexity, QueryIntent
from chatmap.agents.entities import (
    DirectionsEntities,
    EnrouteEntities,
    NearestEntities,
    NearPOIEntities,
    WithinTimeEntities,
    decode_entities,
)
from chatmap.agents.memory import MemoryStore
from chatmap.agents.plans import StepRecord, enroute_plan, execute_plan, near_poi_plan
from chatmap.metrics import Metrics
from chatmap.models import ConversationContext, ConversationMessage, Location, MemoryContext
from chatmap.usecases.enroute import FindPOIEnroute
from chatmap.usecases.geocode import Geocode
from chatmap.usecases.near_poi import FindPOIsNearPOI
from chatmap.usecases.nearest import FindNearestPOI, NearestRequest
from chatmap.usecases.route import GetRoute, RouteRequest
from chatmap.usecases.types import (
    ErrorCode,
    UseCaseError,
    UseCaseMetadata,
    UseCaseResult,
    ValidationError,
    error_from_exception,
    validate_location,
)
from chatmap.usecases.within_time import FindPOIsWithinTime, WithinTimeRequest


logger = logging.getLogger(__name__)

SIMPLE_AGENT = "SimpleQueryAgent"
MULTI_STEP_AGENT = "MultiStepQueryAgent"
DIRECTIONS_AGENT = "DirectionsHandler"
NO_AGENT = "none"


class OrchestrationState(str, Enum):
    RECEIVED = "received"
    CLASSIFIED = "classified"
    SINGLE_STEP_EXECUTING = "single-step-executing"
    MULTI_STEP_EXECUTING = "multi-step-executing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class UseCaseSet:
    """The use cases the orchestrator can dispatch to."""
    within_time: FindPOIsWithinTime
    nearest: FindNearestPOI
    near_poi: FindPOIsNearPOI
    enroute: FindPOIEnroute
    geocode: Geocode
    route: Optional[GetRoute] = None


@dataclass
class OrchestratorResponse:
    success: bool
    classification: Optional[ClassifiedQuery]
    agent_used: str
    result: UseCaseResult
    execution_time_ms: float
    api_calls_count: int
    state: OrchestrationState
    steps: List[StepRecord] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'classification': self.classification.to_dict() if self.classification else None,
            'agent_used': self.agent_used,
            'result': self.result.to_dict(),
            'execution_time_ms': round(self.execution_time_ms, 1),
            'api_calls_count': self.api_calls_count,
            'state': self.state.value,
            'steps': [s.to_dict() for s in self.steps],
            'warnings': list(self.warnings),
            'timestamp': self.timestamp,
        }


def build_context(history: Union[None, ConversationContext, Sequence[Dict[str, Any]]]) -> Optional[ConversationContext]:
    """Accept a ready context or a list of {role, content[, classification]} turns.

    The classification of the latest turn that carries one becomes
    `last_query`, so follow-ups can be resolved.
    """
    if history is None or isinstance(history, ConversationContext):
        return history
    messages = []
    last_query = None
    for turn in history:
        if not isinstance(turn, dict):
            raise ValidationError("conversation history entries must be objects", "conversation_history")
        content = turn.get('content')
        if content:
            messages.append(ConversationMessage(str(turn.get('role') or 'user'), str(content)))
        if turn.get('classification'):
            try:
                last_query = ClassifiedQuery.from_dict(turn['classification'])
            except (KeyError, TypeError, ValueError) as e:
                raise ValidationError(f"Invalid classification in history: {e}", "conversation_history")
    return ConversationContext(messages=messages, last_query=last_query)


class AgentOrchestrator:
    """Drive one query through classification and the matching execution path.

    Args:
        classifier: Query classifier
        use_cases: Use cases to dispatch to
        memory: Optional preference store (read only)
        metrics: Optional metrics sink
        low_confidence_threshold: Below this, ask for clarification instead of executing
    """

    def __init__(
        self,
        classifier: QueryClassifier,
        use_cases: UseCaseSet,
        memory: Optional[MemoryStore] = None,
        metrics: Optional[Metrics] = None,
        low_confidence_threshold: float = 0.5,
    ):
        self.classifier = classifier
        self.use_cases = use_cases
        self.memory = memory
        self.metrics = metrics
        self.low_confidence_threshold = low_confidence_threshold

    async def orchestrate(
        self,
        query: str,
        user_id: str,
        user_location: Any,
        conversation_history: Union[None, ConversationContext, Sequence[Dict[str, Any]]] = None,
        memory_enabled: bool = True,
    ) -> OrchestratorResponse:
        start = time.perf_counter()
        state = OrchestrationState.RECEIVED
        classification: Optional[ClassifiedQuery] = None
        agent = NO_AGENT
        steps: List[StepRecord] = []
        warnings: List[str] = []
        api_calls = 0

        def finish(result: UseCaseResult) -> OrchestratorResponse:
            final = OrchestrationState.COMPLETED if result.success else OrchestrationState.FAILED
            elapsed = (time.perf_counter() - start) * 1000
            return OrchestratorResponse(
                success=result.success,
                classification=classification,
                agent_used=agent,
                result=result,
                execution_time_ms=elapsed,
                api_calls_count=api_calls,
                state=final,
                steps=steps,
                warnings=warnings,
            )

        try:
            if not isinstance(query, str) or not query.strip():
                raise ValidationError("query is required", "query")
            if not isinstance(user_id, str) or not user_id.strip():
                raise ValidationError("user_id is required", "user_id")
            location = validate_location(user_location, "user_location")
            context = build_context(conversation_history)

            classification = await self.classifier.classify(query, context)
            state = OrchestrationState.CLASSIFIED
            logger.info("Classified %r as %s (%.2f)", query, classification.intent.value, classification.confidence)

            if (classification.intent in (QueryIntent.CLARIFICATION, QueryIntent.FOLLOW_UP)
                    or classification.is_low_confidence(self.low_confidence_threshold)):
                response = finish(self._clarification(classification))
                response.state = OrchestrationState.COMPLETED
                return await self._record(response)

            memory_context = await self._load_memory(user_id, memory_enabled, warnings)
            entities = decode_entities(classification, memory_context)

            if isinstance(entities, DirectionsEntities):
                agent = DIRECTIONS_AGENT
                state = OrchestrationState.SINGLE_STEP_EXECUTING
                result = await self._directions(entities, location)
            elif classification.complexity == QueryComplexity.MULTI_STEP:
                agent = MULTI_STEP_AGENT
                state = OrchestrationState.MULTI_STEP_EXECUTING
                outcome = await execute_plan(self._plan(entities, location))
                steps.extend(outcome.steps)
                result = outcome.result
                api_calls = outcome.api_calls_count
                warnings.extend(w for w in outcome.warnings if w not in warnings)
                return await self._record(finish(result))
            else:
                agent = SIMPLE_AGENT
                state = OrchestrationState.SINGLE_STEP_EXECUTING
                result = await self._single(entities, location)

            api_calls = result.metadata.api_calls_count
            warnings.extend(result.metadata.warnings)
            steps.append(StepRecord(
                name=classification.intent.value,
                success=result.success,
                api_calls_count=result.metadata.api_calls_count,
                execution_time_ms=result.metadata.execution_time_ms,
            ))
            return await self._record(finish(result))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if isinstance(e, ValidationError):
                logger.info("Rejected query in state %s: %s", state.value, e)
            else:
                logger.exception("Orchestration failed in state %s", state.value)
            error = error_from_exception(e)
            return await self._record(finish(UseCaseResult(
                success=False,
                error=error,
                metadata=UseCaseMetadata(api_calls_count=api_calls, warnings=list(warnings)),
            )))

    def _clarification(self, classification: ClassifiedQuery) -> UseCaseResult:
        return UseCaseResult(
            success=False,
            error=UseCaseError(
                ErrorCode.CLASSIFICATION_LOW_CONFIDENCE,
                "Could you rephrase? Say what kind of place you want and, optionally, "
                "how far or how long you are willing to travel.",
                {
                    'intent': classification.intent.value,
                    'confidence': round(classification.confidence, 3),
                    'threshold': self.low_confidence_threshold,
                },
            ),
        )

    async def _load_memory(self, user_id: str, enabled: bool, warnings: List[str]) -> Optional[MemoryContext]:
        if not enabled or self.memory is None:
            return None
        try:
            return await self.memory.get_context(user_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Memory lookup failed for %s: %s", user_id, e)
            warnings.append("User preferences unavailable; using defaults")
            return None

    async def _single(self, entities, location: Location) -> UseCaseResult:
        if isinstance(entities, WithinTimeEntities):
            return await self.use_cases.within_time.execute(WithinTimeRequest(
                location=location,
                poi_type=entities.poi_type,
                time_minutes=entities.time_minutes,
                transport=entities.transport,
                cuisine=entities.cuisine,
            ))
        if isinstance(entities, NearestEntities):
            return await self.use_cases.nearest.execute(NearestRequest(
                poi_type=entities.poi_type,
                user_location=location,
                transport=entities.transport,
                cuisine=entities.cuisine,
            ))
        raise ValidationError(f"No single-step handler for {type(entities).__name__}", "intent")

    def _plan(self, entities, location: Location):
        if isinstance(entities, NearPOIEntities):
            return near_poi_plan(self.use_cases.nearest, self.use_cases.near_poi, entities, location)
        if isinstance(entities, EnrouteEntities):
            return enroute_plan(self.use_cases.geocode, self.use_cases.enroute, entities, location)
        raise ValidationError(f"No multi-step plan for {type(entities).__name__}", "intent")

    async def _directions(self, entities: DirectionsEntities, location: Location) -> UseCaseResult:
        if self.use_cases.route is None:
            return UseCaseResult(success=False, error=UseCaseError(
                ErrorCode.UPSTREAM_SERVICE_ERROR, "Routing is not configured", {'provider': 'routing'},
            ))
        return await self.use_cases.route.execute(RouteRequest(
            start=location,
            destination=entities.destination,
            transport=entities.transport,
        ))

    async def _record(self, response: OrchestratorResponse) -> OrchestratorResponse:
        if self.metrics is None:
            return response
        intent = response.classification.intent.value if response.classification else "unclassified"
        await self.metrics.increment(f"orchestrate.{intent}")
        if not response.success:
            code = response.result.error.code.value if response.result.error else "unknown"
            await self.metrics.increment(f"orchestrate.error.{code}")
        await self.metrics.observe_latency("orchestrate", response.execution_time_ms)
        return response
