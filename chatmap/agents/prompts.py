"""
Prompt text for the LLM-backed query classifier.
"""

from typing import Dict, List, Optional

from chatmap.models import ConversationContext, POIType, TransportMode


CLASSIFIER_SYSTEM_PROMPT = """You classify requests sent to a map assistant that finds places.

Intents:
- find-nearest: the single closest place of a type ("nearest pharmacy", "closest ATM").
- find-within-time: every place of a type reachable within a time budget ("cafes within 10 minutes walk").
- find-near-poi: places of type X near the nearest place of type Y ("coffee near the nearest park").
- find-enroute: a stop of some type on the way to a destination ("gas station on the way to the airport").
- get-directions: how to get somewhere ("directions to the central station").
- follow-up: refers to earlier results ("how about 20 minutes instead", "any closer ones?").
- clarification: too vague to act on ("find food", "what's around?").

Complexity is "multi-step" for find-near-poi and find-enroute, otherwise "simple".

Allowed POI types: {poi_types}.
Allowed transport modes: {transport_modes}.

Reply with one JSON object and nothing else:
{{"intent": "...", "complexity": "simple|multi-step", "confidence": 0.0-1.0,
  "entities": {{"primaryPOI": "...", "secondaryPOI": "...", "transport": "...",
  "timeConstraint": <minutes>, "destination": "...", "cuisine": "...", "maxDetour": <minutes>}},
  "requiresContext": true|false, "reasoning": "one sentence"}}
Leave out entities that are not mentioned. In find-near-poi, primaryPOI is what the
user wants and secondaryPOI is the place it should be near."""


def build_classifier_messages(
    query: str,
    context: Optional[ConversationContext] = None,
    history_turns: int = 3,
) -> List[Dict[str, str]]:
    """System prompt, the most recent conversation turns, then the query."""
    system = CLASSIFIER_SYSTEM_PROMPT.format(
        poi_types=", ".join(t.value for t in POIType),
        transport_modes=", ".join(m.value for m in TransportMode),
    )
    messages = [{"role": "system", "content": system}]
    if context is not None:
        for message in context.recent(history_turns):
            role = message.role if message.role in ("user", "assistant") else "user"
            messages.append({"role": role, "content": message.content})
    messages.append({"role": "user", "content": query})
    return messages
