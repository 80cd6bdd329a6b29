"""
Applies newly created events to the derived character-state and relationship stores.

Known-event membership is idempotent; trust/tension deltas and relationship history
are not, so each event must be propagated exactly once.
"""

import re
from typing import Callable, Optional, Protocol, Sequence, Tuple

from ..models.core import CharacterState, MemoryEvent, Relationship, RelationshipHistoryEntry, SessionData
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import now_ms

logger = get_logger(__name__)

RELATION_KEY_PATTERN = re.compile(r'^(.+?)\s*->\s*(.+)$')

LEVEL_MIN = 0
LEVEL_MAX = 10


def parse_relationship_key(relation_key: str) -> Optional[Tuple[str, str]]:
    """Parse 'A -> B' (whitespace-tolerant) into (A, B); None when there is no arrow."""
    match = RELATION_KEY_PATTERN.match(relation_key.strip())
    if not match:
        return None
    character_a, character_b = match.group(1).strip(), match.group(2).strip()
    if not character_a or not character_b:
        return None
    return character_a, character_b


def clamp_level(value: int) -> int:
    return max(LEVEL_MIN, min(LEVEL_MAX, value))


class ImpactHeuristic(Protocol):
    """Strategy that adjusts a relationship from a free-text impact description."""

    def apply(self, relationship: Relationship, impact_text: str) -> None:
        ...


class KeywordImpactHeuristic:
    """Keyword matching on the lower-cased impact text, one step per mention."""

    @staticmethod
    def _direction(text: str, topic: str) -> int:
        if topic not in text:
            return 0
        if 'increas' in text:
            return 1
        if 'decreas' in text:
            return -1
        return 0

    def apply(self, relationship: Relationship, impact_text: str) -> None:
        text = impact_text.lower()
        trust_delta = self._direction(text, 'trust')
        tension_delta = self._direction(text, 'tension')
        if trust_delta:
            relationship.trust_level = clamp_level(relationship.trust_level + trust_delta)
        if tension_delta:
            relationship.tension_level = clamp_level(relationship.tension_level + tension_delta)


class StatePropagator:
    """Mutates the in-memory session view; persistence is the caller's job."""

    def __init__(self, heuristic: Optional[ImpactHeuristic] = None, clock: Callable[[], int] = now_ms):
        self.heuristic = heuristic or KeywordImpactHeuristic()
        self.clock = clock

    @staticmethod
    def _get_or_create_state(data: SessionData, name: str) -> CharacterState:
        state = data.character_states.get(name)
        if state is None:
            state = CharacterState(name=name)
            data.character_states[name] = state
        return state

    @staticmethod
    def _get_or_create_relationship(data: SessionData, character_a: str, character_b: str) -> Relationship:
        key = Relationship.make_key(character_a, character_b)
        relationship = data.relationships.get(key)
        if relationship is None:
            # The pair keeps the direction it was first seen in
            relationship = data.relationships.get(Relationship.make_key(character_b, character_a))
        if relationship is None:
            relationship = Relationship(character_a=character_a, character_b=character_b)
            data.relationships[key] = relationship
        return relationship

    def update_character_states(self, events: Sequence[MemoryEvent], data: SessionData) -> None:
        for event in events:
            now = self.clock()
            # Intensity is left as is; only the emotion text follows the event
            for name, emotion in event.emotional_impact.items():
                state = self._get_or_create_state(data, name)
                state.current_emotion = emotion
                state.last_updated = now

            for witness in event.witnesses:
                self._get_or_create_state(data, witness).add_known_event(event.id)

    def update_relationships(self, events: Sequence[MemoryEvent], data: SessionData) -> None:
        for event in events:
            for relation_key, impact in event.relationship_impact.items():
                pair = parse_relationship_key(relation_key)
                if pair is None:
                    logger.debug(f'Skipping relationship impact with unparseable key {relation_key!r}')
                    continue

                relationship = self._get_or_create_relationship(data, *pair)
                self.heuristic.apply(relationship, impact)
                relationship.history.append(RelationshipHistoryEntry(event_id=event.id, impact=impact, timestamp=self.clock()))

    def apply(self, events: Sequence[MemoryEvent], data: SessionData) -> None:
        """Propagate events into character states and relationships."""
        self.update_character_states(events, data)
        self.update_relationships(events, data)
        logger.debug(f'Propagated {len(events)} events: {len(data.character_states)} characters, '
                     f'{len(data.relationships)} relationships')
