"""
Query classifier: free text (+ conversation context) -> ClassifiedQuery.

Two engines share one output contract:

- a rule engine (vocabulary + regular expressions) that always runs;
- an optional LLM (any LLMProvider) whose JSON answer is normalised and
  completed from the rule engine's findings. Any LLM failure degrades to the
  rule engine's answer.

Only empty input is rejected with ValidationError; anything else yields a
classification, possibly a low-confidence `clarification`.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from chatmap.agents.prompts import build_classifier_messages
from chatmap.models import ConversationContext, POIType, TransportMode
from chatmap.providers.base import LLMProvider, ProviderError
from chatmap.usecases.types import ValidationError


logger = logging.getLogger(__name__)

DEFAULT_LOW_CONFIDENCE = 0.5


class QueryIntent(str, Enum):
    FIND_NEAREST = "find-nearest"
    FIND_WITHIN_TIME = "find-within-time"
    FIND_NEAR_POI = "find-near-poi"
    FIND_ENROUTE = "find-enroute"
    GET_DIRECTIONS = "get-directions"
    FOLLOW_UP = "follow-up"
    CLARIFICATION = "clarification"


class QueryComplexity(str, Enum):
    SIMPLE = "simple"
    MULTI_STEP = "multi-step"


MULTI_STEP_INTENTS = (QueryIntent.FIND_NEAR_POI, QueryIntent.FIND_ENROUTE)


@dataclass(frozen=True)
class QueryEntities:
    poi_type: Optional[POIType] = None
    secondary_poi_type: Optional[POIType] = None
    transport: Optional[TransportMode] = None
    time_minutes: Optional[float] = None
    cuisine: Optional[str] = None
    destination: Optional[str] = None
    max_detour_minutes: Optional[float] = None
    keywords: Tuple[str, ...] = ()

    def merged_with(self, fallback: "QueryEntities") -> "QueryEntities":
        """Fill unset slots from `fallback`."""
        changes = {}
        for f in fields(self):
            if f.name == "keywords":
                continue
            if getattr(self, f.name) is None and getattr(fallback, f.name) is not None:
                changes[f.name] = getattr(fallback, f.name)
        if not self.keywords and fallback.keywords:
            changes["keywords"] = fallback.keywords
        return replace(self, **changes) if changes else self

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None or value == ():
                continue
            data[f.name] = value.value if isinstance(value, Enum) else (
                list(value) if isinstance(value, tuple) else value
            )
        return data


@dataclass(frozen=True)
class ClassifiedQuery:
    intent: QueryIntent
    complexity: QueryComplexity
    confidence: float
    entities: QueryEntities = field(default_factory=QueryEntities)
    requires_context: bool = False
    reasoning: str = ""
    source: str = "rules"

    def is_low_confidence(self, threshold: float = DEFAULT_LOW_CONFIDENCE) -> bool:
        return self.confidence < threshold

    def to_dict(self) -> Dict[str, Any]:
        return {
            'intent': self.intent.value,
            'complexity': self.complexity.value,
            'confidence': round(self.confidence, 3),
            'entities': self.entities.to_dict(),
            'requires_context': self.requires_context,
            'reasoning': self.reasoning,
            'source': self.source,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClassifiedQuery":
        """Rebuild a classification echoed back by a client (previous turn).

        Raises:
            ValueError: If intent or entity values are unknown
        """
        raw = data.get('entities') or {}
        entities = QueryEntities(
            poi_type=POIType.parse(raw['poi_type']) if raw.get('poi_type') else None,
            secondary_poi_type=(POIType.parse(raw['secondary_poi_type'])
                                if raw.get('secondary_poi_type') else None),
            transport=TransportMode.parse(raw['transport']) if raw.get('transport') else None,
            time_minutes=_number(raw.get('time_minutes')),
            cuisine=raw.get('cuisine'),
            destination=raw.get('destination'),
            max_detour_minutes=_number(raw.get('max_detour_minutes')),
            keywords=tuple(raw.get('keywords') or ()),
        )
        intent = QueryIntent(data['intent'])
        return cls(
            intent=intent,
            complexity=_complexity_for(intent),
            confidence=_clamp(float(data.get('confidence', 0.0))),
            entities=entities,
            requires_context=bool(data.get('requires_context')),
            reasoning=str(data.get('reasoning') or ""),
            source=str(data.get('source') or "rules"),
        )


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _complexity_for(intent: QueryIntent) -> QueryComplexity:
    return QueryComplexity.MULTI_STEP if intent in MULTI_STEP_INTENTS else QueryComplexity.SIMPLE


# --- vocabulary -------------------------------------------------------------

POI_PHRASES: Dict[POIType, Tuple[str, ...]] = {
    POIType.RESTAURANT: ("restaurant", "restaurants", "diner", "diners", "bistro", "eatery",
                         "eateries", "pizzeria", "steakhouse", "place to eat", "places to eat"),
    POIType.CAFE: ("cafe", "cafes", "café", "cafés", "coffee shop", "coffee shops", "coffee",
                   "espresso", "tea room"),
    POIType.GROCERY: ("grocery", "groceries", "grocery store", "supermarket", "supermarkets",
                      "convenience store", "grocer"),
    POIType.PHARMACY: ("pharmacy", "pharmacies", "drugstore", "drug store", "chemist"),
    POIType.HOSPITAL: ("hospital", "hospitals", "emergency room", "clinic"),
    POIType.SCHOOL: ("school", "schools"),
    POIType.PARK: ("park", "parks", "playground", "gardens"),
    POIType.GYM: ("gym", "gyms", "fitness center", "fitness centre", "sports centre", "sports center"),
    POIType.BANK: ("bank", "banks"),
    POIType.ATM: ("atm", "atms", "cash machine", "cashpoint"),
    POIType.GAS_STATION: ("gas station", "gas stations", "petrol station", "fuel", "gas", "petrol"),
    POIType.SHOPPING: ("shop", "shops", "shopping", "mall", "store", "stores"),
    POIType.ENTERTAINMENT: ("cinema", "cinemas", "movie theater", "theatre", "theater", "nightclub",
                            "nightclubs"),
    POIType.TRANSPORT: ("bus station", "train station", "railway station", "subway station",
                        "metro station"),
    POIType.ACCOMMODATION: ("hotel", "hotels", "hostel", "hostels", "motel", "motels", "place to stay"),
}

BRANDS: Dict[str, POIType] = {
    "starbucks": POIType.CAFE,
    "dunkin": POIType.CAFE,
    "costa": POIType.CAFE,
    "mcdonald's": POIType.RESTAURANT,
    "mcdonalds": POIType.RESTAURANT,
    "burger king": POIType.RESTAURANT,
    "kfc": POIType.RESTAURANT,
    "chipotle": POIType.RESTAURANT,
    "subway": POIType.RESTAURANT,
    "shell": POIType.GAS_STATION,
    "chevron": POIType.GAS_STATION,
    "cvs": POIType.PHARMACY,
    "walgreens": POIType.PHARMACY,
}

CUISINES = (
    "mexican", "italian", "chinese", "japanese", "thai", "indian", "french", "american",
    "mediterranean", "greek", "korean", "vietnamese", "spanish", "turkish", "lebanese",
    "pizza", "sushi", "burger", "kebab", "ramen", "vegan", "vegetarian",
)


def _compile_vocabulary() -> List[Tuple[re.Pattern, POIType, str]]:
    entries = [(phrase, poi_type) for poi_type, phrases in POI_PHRASES.items() for phrase in phrases]
    entries += list(BRANDS.items())
    # longest phrase first so "subway station" beats "subway"
    entries.sort(key=lambda item: -len(item[0]))
    return [(re.compile(r"\b" + re.escape(phrase) + r"\b"), poi_type, phrase) for phrase, poi_type in entries]


_VOCABULARY = _compile_vocabulary()
_CUISINE_RE = re.compile(r"\b(" + "|".join(CUISINES) + r")\b")

_TRANSPORT_PATTERNS: List[Tuple[re.Pattern, TransportMode]] = [
    (re.compile(r"\b(public transport|public transit|transit|by (?:the )?(?:bus|train|metro|subway|tube))\b"),
     TransportMode.PUBLIC_TRANSPORT),
    (re.compile(r"\b(cycl(?:e|ing)|bik(?:e|ing)|bicycle|by bike)\b"), TransportMode.CYCLING),
    (re.compile(r"\b(driv(?:e|ing)|by car|car ride|drive)\b"), TransportMode.DRIVING),
    (re.compile(r"\b(walk(?:ing)?|on foot|stroll)\b"), TransportMode.WALKING),
]

_DETOUR_RE = re.compile(
    r"(?:(\d+(?:\.\d+)?)\s*(?:-\s*)?(?:min|mins|minute|minutes)\s+(?:of\s+)?detour"
    r"|detour\s+of\s+(?:up\s+to\s+)?(\d+(?:\.\d+)?)\s*(?:min|mins|minute|minutes))"
)
_MINUTES_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(?:-\s*)?(?:min|mins|minute|minutes)\b")
_HOURS_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(?:-\s*)?(?:h|hr|hrs|hour|hours)\b")
_WORD_TIMES = (
    (re.compile(r"\bhalf an hour\b"), 30.0),
    (re.compile(r"\bquarter of an hour\b"), 15.0),
    (re.compile(r"\ban hour\b"), 60.0),
)

_ENROUTE_RE = re.compile(
    r"\b(on the way|on my way|along the way|before (?:going|heading)|en ?route|stop(?:over)? on|"
    r"grab .* on (?:the|my) way)\b"
)
_DESTINATION_RE = re.compile(
    r"(?:on (?:the|my) way to|along the way to|before (?:going|heading) to|en ?route to|heading to|"
    r"directions to|route to|take me to|get to|navigate to|going to)\s+"
    r"(?:the\s+)?(.+?)(?:\s+(?:in|within|under|with|by)\s+(?:\d|a\b|an\b|half).*)?[\s?.!]*$"
)
_DIRECTIONS_RE = re.compile(r"\b(directions?|how (?:do|can) i get|take me|navigate|route to)\b")
_NEAR_RE = re.compile(r"\b(near|close to|next to|beside|by the|around)\b")
_NEAREST_RE = re.compile(r"\b(nearest|closest|near me|nearby|close by|around here|around me)\b")
_WITHIN_RE = re.compile(r"\b(within|in under|under|less than|reach in|get to in)\b")
_FOLLOW_UP_RE = re.compile(
    r"^(?:and\b|(?:how|what) about\b)|\binstead\b|\bany (?:closer|other|more)\b|"
    r"\b(?:that|this) one\b|\bsimilar\b|\bthe same\b|\bthose\b|\bmore like\b"
)
_JSON_RE = re.compile(r"\{.*\}", re.DOTALL)


@dataclass
class _Scan:
    """Everything the rule engine found in one query."""
    text: str
    poi_matches: List[Tuple[int, POIType, str]]
    transport: Optional[TransportMode]
    time_minutes: Optional[float]
    max_detour: Optional[float]
    cuisine: Optional[str]
    destination: Optional[str]
    near_at: Optional[int]

    @property
    def poi_types(self) -> List[POIType]:
        seen: List[POIType] = []
        for _, poi_type, _ in self.poi_matches:
            if poi_type not in seen:
                seen.append(poi_type)
        return seen


def _find_pois(text: str, skip_spans: List[Tuple[int, int]]) -> List[Tuple[int, POIType, str]]:
    taken = list(skip_spans)
    found = []
    for pattern, poi_type, phrase in _VOCABULARY:
        for m in pattern.finditer(text):
            if any(m.start() < end and start < m.end() for start, end in taken):
                continue
            taken.append((m.start(), m.end()))
            found.append((m.start(), poi_type, phrase))
    found.sort(key=lambda item: item[0])
    return found


def _parse_time(text: str) -> Tuple[Optional[float], Optional[float], str]:
    """(time_minutes, max_detour_minutes, text without the detour clause)."""
    detour = None
    m = _DETOUR_RE.search(text)
    if m:
        detour = float(m.group(1) or m.group(2))
        text = text[:m.start()] + " " + text[m.end():]

    m = _MINUTES_RE.search(text)
    if m:
        return float(m.group(1)), detour, text
    m = _HOURS_RE.search(text)
    if m:
        return float(m.group(1)) * 60, detour, text
    for pattern, minutes in _WORD_TIMES:
        if pattern.search(text):
            return minutes, detour, text
    return None, detour, text


def _scan(text: str) -> _Scan:
    lowered = " ".join(text.lower().split())
    time_minutes, max_detour, _ = _parse_time(lowered)

    transport = None
    transport_spans: List[Tuple[int, int]] = []
    for pattern, mode in _TRANSPORT_PATTERNS:
        m = pattern.search(lowered)
        if m:
            transport = mode
            transport_spans.append(m.span())
            break

    destination = None
    destination_span: List[Tuple[int, int]] = []
    m = _DESTINATION_RE.search(lowered)
    if m and m.group(1).strip():
        destination = m.group(1).strip()
        destination_span.append(m.span(1))

    poi_matches = _find_pois(lowered, transport_spans + destination_span)
    cuisine_match = _CUISINE_RE.search(lowered)
    near = _NEAR_RE.search(lowered)
    return _Scan(
        text=lowered,
        poi_matches=poi_matches,
        transport=transport,
        time_minutes=time_minutes,
        max_detour=max_detour,
        cuisine=cuisine_match.group(1) if cuisine_match else None,
        destination=destination,
        near_at=near.start() if near else None,
    )


def _split_near(scan: _Scan) -> Tuple[Optional[POIType], Optional[POIType]]:
    """Primary is what comes before the near keyword, secondary what comes after."""
    types = scan.poi_types
    if scan.near_at is None or len(types) < 2:
        return (types[0] if types else None), (types[1] if len(types) > 1 else None)
    before = [t for pos, t, _ in scan.poi_matches if pos < scan.near_at]
    after = [t for pos, t, _ in scan.poi_matches if pos > scan.near_at]
    primary = before[0] if before else types[0]
    secondary = next((t for t in after if t != primary), None)
    if secondary is None:
        secondary = next((t for t in types if t != primary), None)
    return primary, secondary


class QueryClassifier:
    """Rule-based classifier with optional LLM refinement.

    Args:
        llm: Chat provider used first when given
        history_turns: Conversation turns included in the LLM prompt
    """

    def __init__(self, llm: Optional[LLMProvider] = None, history_turns: int = 3):
        self.llm = llm
        self.history_turns = history_turns
        self.logger = logging.getLogger(self.__class__.__name__)

    async def classify(self, text: str, context: Optional[ConversationContext] = None) -> ClassifiedQuery:
        """Classify a query.

        Raises:
            ValidationError: If `text` is empty or whitespace
        """
        if text is None or not str(text).strip():
            raise ValidationError("query text is required", "query")
        text = str(text).strip()

        rules = self.classify_with_rules(text, context)
        if self.llm is None:
            return rules

        try:
            reply = await self.llm.chat(build_classifier_messages(text, context, self.history_turns))
            return self._from_llm(reply, text, rules)
        except (ProviderError, asyncio.TimeoutError, ValueError, KeyError, TypeError, AttributeError) as e:
            self.logger.warning("LLM classification failed, using rules: %s", e)
            return replace(rules, reasoning=f"{rules.reasoning} (LLM unavailable)".strip())

    # --- rule engine --------------------------------------------------------

    def classify_with_rules(self, text: str, context: Optional[ConversationContext] = None) -> ClassifiedQuery:
        scan = _scan(text)
        types = scan.poi_types
        primary, secondary = _split_near(scan)
        if primary is None and scan.cuisine:
            primary = POIType.RESTAURANT
        keywords = tuple(phrase for _, _, phrase in scan.poi_matches)

        entities = QueryEntities(
            poi_type=primary,
            transport=scan.transport,
            time_minutes=scan.time_minutes,
            cuisine=scan.cuisine,
            destination=scan.destination,
            max_detour_minutes=scan.max_detour,
            keywords=keywords,
        )

        previous = context.last_query if context is not None else None
        if _FOLLOW_UP_RE.search(scan.text) or (primary is None and previous is not None
                                               and (scan.time_minutes or scan.transport)):
            return self._follow_up(entities, previous)

        if _ENROUTE_RE.search(scan.text) and (primary or scan.destination):
            confidence = 0.85 if primary and scan.destination else 0.55
            return self._result(QueryIntent.FIND_ENROUTE, confidence, entities,
                                "Mentions a stop on the way to a destination")

        if _DIRECTIONS_RE.search(scan.text) and scan.destination and primary is None:
            return self._result(QueryIntent.GET_DIRECTIONS, 0.8, entities, "Asks how to reach a place")

        if len(types) >= 2 and secondary is not None:
            confidence = 0.85 if scan.near_at is not None else 0.55
            return self._result(
                QueryIntent.FIND_NEAR_POI, confidence,
                replace(entities, poi_type=primary, secondary_poi_type=secondary),
                "Looks for one kind of place near another",
            )

        if primary is not None and scan.time_minutes is not None and not scan.max_detour:
            confidence = 0.9 if _WITHIN_RE.search(scan.text) or scan.transport else 0.8
            return self._result(QueryIntent.FIND_WITHIN_TIME, confidence, entities,
                                "Has a place type and a travel-time budget")

        if primary is not None and _NEAREST_RE.search(scan.text):
            return self._result(QueryIntent.FIND_NEAREST, 0.85, entities, "Asks for the closest place")

        if primary is not None:
            return self._result(QueryIntent.FIND_NEAREST, 0.6, entities,
                                "Names a place type without constraints")

        return self._result(QueryIntent.CLARIFICATION, 0.3 if scan.poi_matches or scan.time_minutes else 0.2,
                            entities, "No recognisable place type")

    def _follow_up(self, entities: QueryEntities, previous: Optional[ClassifiedQuery]) -> ClassifiedQuery:
        if previous is None or previous.intent in (QueryIntent.CLARIFICATION, QueryIntent.FOLLOW_UP):
            return ClassifiedQuery(
                intent=QueryIntent.FOLLOW_UP,
                complexity=QueryComplexity.SIMPLE,
                confidence=0.3,
                entities=entities,
                requires_context=True,
                reasoning="Refers to earlier results but there is no usable context",
            )
        merged = entities.merged_with(previous.entities)
        return ClassifiedQuery(
            intent=previous.intent,
            complexity=_complexity_for(previous.intent),
            confidence=_clamp(min(previous.confidence, 0.8)),
            entities=merged,
            requires_context=True,
            reasoning=f"Follow-up resolved against previous {previous.intent.value} query",
        )

    @staticmethod
    def _result(intent: QueryIntent, confidence: float, entities: QueryEntities, reasoning: str) -> ClassifiedQuery:
        return ClassifiedQuery(
            intent=intent,
            complexity=_complexity_for(intent),
            confidence=_clamp(confidence),
            entities=entities,
            reasoning=reasoning,
        )

    # --- LLM normalisation --------------------------------------------------

    def _from_llm(self, reply: str, text: str, rules: ClassifiedQuery) -> ClassifiedQuery:
        m = _JSON_RE.search(reply or "")
        if not m:
            raise ValueError("LLM reply contained no JSON object")
        payload = json.loads(m.group(0))
        if not isinstance(payload, dict):
            raise ValueError("LLM reply was not a JSON object")

        intent = QueryIntent(payload.get("intent"))
        raw = payload.get("entities") or {}
        if not isinstance(raw, dict):
            raise ValueError("LLM entities were not an object")
        cuisine = raw.get("cuisine")
        cuisine = cuisine.strip().lower() if isinstance(cuisine, str) and cuisine.strip() else None

        primary = _poi_from_label(raw.get("primaryPOI"))
        if primary is None and isinstance(raw.get("primaryPOI"), str):
            label = raw["primaryPOI"].lower()
            embedded = _CUISINE_RE.search(label)
            if embedded:
                cuisine = cuisine or embedded.group(1)
                primary = POIType.RESTAURANT
        if primary is None and cuisine:
            primary = POIType.RESTAURANT
        secondary = _poi_from_label(raw.get("secondaryPOI"))

        # keep the word order the rules saw around "near"
        if (rules.intent == QueryIntent.FIND_NEAR_POI and primary and secondary
                and (primary, secondary) == (rules.entities.secondary_poi_type, rules.entities.poi_type)):
            primary, secondary = secondary, primary

        if _ENROUTE_RE.search(text.lower()) and intent != QueryIntent.FIND_ENROUTE and (primary or raw.get("destination")):
            intent = QueryIntent.FIND_ENROUTE
        elif secondary is not None and intent not in (QueryIntent.FIND_ENROUTE, QueryIntent.FOLLOW_UP):
            intent = QueryIntent.FIND_NEAR_POI

        entities = QueryEntities(
            poi_type=primary,
            secondary_poi_type=secondary if intent == QueryIntent.FIND_NEAR_POI else None,
            transport=_transport_from_label(raw.get("transport")),
            time_minutes=_number(raw.get("timeConstraint")),
            cuisine=cuisine,
            destination=raw.get("destination") if isinstance(raw.get("destination"), str) else None,
            max_detour_minutes=_number(raw.get("maxDetour")),
        ).merged_with(rules.entities)

        requires_context = bool(payload.get("requiresContext")) or rules.requires_context
        if intent == QueryIntent.FOLLOW_UP and rules.requires_context and rules.intent != QueryIntent.FOLLOW_UP:
            # the rules already resolved the reference against context
            intent = rules.intent

        try:
            confidence = _clamp(float(payload.get("confidence", 0.5)))
        except (TypeError, ValueError):
            confidence = 0.5

        return ClassifiedQuery(
            intent=intent,
            complexity=_complexity_for(intent),
            confidence=confidence,
            entities=entities,
            requires_context=requires_context,
            reasoning=str(payload.get("reasoning") or ""),
            source="llm",
        )


def _poi_from_label(label: Any) -> Optional[POIType]:
    if not isinstance(label, str) or not label.strip():
        return None
    try:
        return POIType.parse(label)
    except ValueError:
        pass
    matches = _find_pois(label.lower(), [])
    return matches[0][1] if matches else None


def _transport_from_label(label: Any) -> Optional[TransportMode]:
    if not isinstance(label, str):
        return None
    try:
        return TransportMode.parse(label)
    except ValueError:
        return None


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        m = re.search(r"\d+(?:\.\d+)?", value)
        return float(m.group(0)) if m else None
    return None
