"""
Renders selected memories, relationship summaries and the viewer's emotion into an
injectable block that fits a token budget.
"""

from dataclasses import dataclass
from typing import List, Sequence

from ..models.core import DEFAULT_EMOTION, DEFAULT_RELATIONSHIP_TYPE, MemoryEvent, SessionData
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

CHARS_PER_TOKEN = 4
PER_MEMORY_OVERHEAD_TOKENS = 5
MAX_SHRINK_ATTEMPTS = 5


@dataclass
class RelationshipSummary:
    character: str
    trust: int
    tension: int
    relationship_type: str = DEFAULT_RELATIONSHIP_TYPE


def estimate_tokens(text: str) -> float:
    return len(text) / CHARS_PER_TOKEN


def trust_label(trust: int) -> str:
    if trust >= 7:
        return 'high trust'
    if trust <= 3:
        return 'low trust'
    return 'moderate trust'


def tension_label(tension: int) -> str:
    if tension >= 7:
        return 'high tension'
    if tension >= 4:
        return 'some tension'
    return ''


def get_relationship_context(data: SessionData, pov_character: str, active_characters: Sequence[str]) -> List[RelationshipSummary]:
    """Relationships between the POV character and any other active character."""
    relevant = []
    for relationship in data.relationships.values():
        if not relationship.involves(pov_character):
            continue
        if not any(c != pov_character and relationship.involves(c) for c in active_characters):
            continue
        relevant.append(RelationshipSummary(character=relationship.other(pov_character),
                                            trust=relationship.trust_level,
                                            tension=relationship.tension_level,
                                            relationship_type=relationship.relationship_type))
    return relevant


def _render(memories: Sequence[MemoryEvent], relationships: Sequence[RelationshipSummary], emotional_state: str,
            character_name: str) -> str:
    lines = [f"[{character_name}'s Memory & State]", '']

    if emotional_state and emotional_state != DEFAULT_EMOTION:
        lines += [f'Current emotional state: {emotional_state}', '']

    if relationships:
        lines.append('Relationships with present characters:')
        for rel in relationships:
            labels = ', '.join(label for label in (trust_label(rel.trust), tension_label(rel.tension)) if label)
            lines.append(f'- {rel.character}: {rel.relationship_type or DEFAULT_RELATIONSHIP_TYPE} ({labels})')
        lines.append('')

    if memories:
        lines.append('Relevant memories:')
        for memory in memories:
            prefix = '[Secret] ' if memory.is_secret else ''
            lines.append(f'- {prefix}{memory.summary}')

    lines.append(f"[End {character_name}'s Memory]")
    return '\n'.join(lines)


def _fit_memories(memories: Sequence[MemoryEvent], available_tokens: float) -> List[MemoryEvent]:
    """Longest prefix whose estimated cost stays within available_tokens."""
    fitted = []
    used = 0.0
    for memory in memories:
        cost = len(memory.summary) / CHARS_PER_TOKEN + PER_MEMORY_OVERHEAD_TOKENS
        if used + cost > available_tokens:
            break
        fitted.append(memory)
        used += cost
    return fitted


def format_context_for_injection(memories: Sequence[MemoryEvent],
                                 relationships: Sequence[RelationshipSummary],
                                 emotional_state: str,
                                 character_name: str,
                                 token_budget: int) -> str:
    """
    Render the memory block, shrinking the memory list until it fits.

    Each pass that overflows keeps the longest prefix of memories that fits the budget
    minus the header overhead, then re-renders against a doubled ceiling. Passes are
    capped at MAX_SHRINK_ATTEMPTS.

    Args:
        memories: Ranked memories to render, most relevant first
        relationships: Relationship summaries for present characters
        emotional_state: Viewer's current emotion ('neutral' is omitted)
        character_name: Viewer name used in the block headers
        token_budget: Budget in estimated tokens (characters / 4)

    Returns:
        The rendered block
    """
    current = list(memories)
    budget = float(token_budget)
    text = _render(current, relationships, emotional_state, character_name)

    for attempt in range(MAX_SHRINK_ATTEMPTS):
        if estimate_tokens(text) <= budget:
            break

        overhead = estimate_tokens(_render([], relationships, emotional_state, character_name))
        shrunk = _fit_memories(current, budget - overhead)
        logger.debug(f'Context over budget ({estimate_tokens(text):.0f} > {budget:.0f} tokens), '
                     f'keeping {len(shrunk)} of {len(current)} memories')

        if len(shrunk) == len(current) and attempt > 0:
            break
        current = shrunk
        budget *= 2
        text = _render(current, relationships, emotional_state, character_name)

    return text
