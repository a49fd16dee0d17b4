"""
Intent-specific entity variants decoded from a ClassifiedQuery.

The classifier produces a loose bag of slots; the orchestrator decodes it
exactly once into the variant for the classified intent. Missing required
slots raise EntityDecodeError (a ValidationError).

Defaults: explicit slot, then the user's favourite transport (memory), then
the intent default (walking, or driving for enroute).
"""

from dataclasses import dataclass
from typing import Optional, Union

from chatmap.agents.classifier import ClassifiedQuery, QueryEntities, QueryIntent
from chatmap.models import MemoryContext, POIType, TransportMode
from chatmap.usecases.types import ValidationError

DEFAULT_NEAR_POI_MINUTES = 15
DEFAULT_DETOUR_MINUTES = 10


class EntityDecodeError(ValidationError):
    """A required slot for the classified intent is missing."""


@dataclass(frozen=True)
class WithinTimeEntities:
    poi_type: POIType
    time_minutes: float
    transport: TransportMode
    cuisine: Optional[str] = None


@dataclass(frozen=True)
class NearestEntities:
    poi_type: POIType
    transport: TransportMode
    cuisine: Optional[str] = None


@dataclass(frozen=True)
class NearPOIEntities:
    primary_type: POIType
    secondary_type: POIType
    max_time_from_secondary: float
    transport: TransportMode
    cuisine: Optional[str] = None


@dataclass(frozen=True)
class EnrouteEntities:
    poi_type: POIType
    destination: str
    transport: TransportMode
    max_detour_minutes: float
    max_total_time_minutes: Optional[float] = None
    cuisine: Optional[str] = None


@dataclass(frozen=True)
class DirectionsEntities:
    destination: str
    transport: TransportMode


DecodedEntities = Union[WithinTimeEntities, NearestEntities, NearPOIEntities, EnrouteEntities, DirectionsEntities]


def _transport(entities: QueryEntities, memory: Optional[MemoryContext], default: TransportMode) -> TransportMode:
    if entities.transport is not None:
        return entities.transport
    if memory is not None and memory.favorite_transport_modes:
        return memory.favorite_transport_modes[0]
    return default


def _poi_type(entities: QueryEntities, memory: Optional[MemoryContext] = None) -> POIType:
    if entities.poi_type is not None:
        return entities.poi_type
    if entities.cuisine:
        return POIType.RESTAURANT
    if memory is not None and memory.favorite_poi_types:
        return memory.favorite_poi_types[0]
    raise EntityDecodeError("Which kind of place are you looking for?", "poi_type")


def _destination(entities: QueryEntities) -> str:
    if not entities.destination or not entities.destination.strip():
        raise EntityDecodeError("Where are you heading?", "destination")
    return entities.destination.strip()


def decode_entities(classified: ClassifiedQuery, memory: Optional[MemoryContext] = None) -> DecodedEntities:
    """Decode the slots of `classified` into the variant for its intent.

    Raises:
        EntityDecodeError: If a required slot is missing
        ValidationError: If the intent is not executable
    """
    intent = classified.intent
    e = classified.entities

    if intent == QueryIntent.FIND_WITHIN_TIME:
        if e.time_minutes is None:
            raise EntityDecodeError("How many minutes are you willing to travel?", "time_minutes")
        return WithinTimeEntities(
            poi_type=_poi_type(e, memory),
            time_minutes=e.time_minutes,
            transport=_transport(e, memory, TransportMode.WALKING),
            cuisine=e.cuisine,
        )

    if intent == QueryIntent.FIND_NEAREST:
        return NearestEntities(
            poi_type=_poi_type(e, memory),
            transport=_transport(e, memory, TransportMode.WALKING),
            cuisine=e.cuisine,
        )

    if intent == QueryIntent.FIND_NEAR_POI:
        if e.secondary_poi_type is None:
            raise EntityDecodeError("Near what kind of place?", "secondary_poi_type")
        return NearPOIEntities(
            primary_type=_poi_type(e, memory),
            secondary_type=e.secondary_poi_type,
            max_time_from_secondary=e.time_minutes if e.time_minutes is not None else DEFAULT_NEAR_POI_MINUTES,
            transport=_transport(e, memory, TransportMode.WALKING),
            cuisine=e.cuisine,
        )

    if intent == QueryIntent.FIND_ENROUTE:
        return EnrouteEntities(
            poi_type=_poi_type(e, memory),
            destination=_destination(e),
            transport=_transport(e, memory, TransportMode.DRIVING),
            max_detour_minutes=(e.max_detour_minutes if e.max_detour_minutes is not None
                                else DEFAULT_DETOUR_MINUTES),
            max_total_time_minutes=e.time_minutes,
            cuisine=e.cuisine,
        )

    if intent == QueryIntent.GET_DIRECTIONS:
        return DirectionsEntities(
            destination=_destination(e),
            transport=_transport(e, memory, TransportMode.WALKING),
        )

    raise ValidationError(f"Intent {intent.value} cannot be executed", "intent")
