"""
Heuristic relevance ranking of candidate memories.

Approximate: recency, participant overlap, keyword overlap with the recent
conversation and an event-type bonus, summed. No embeddings.
"""

from typing import Dict, List, Optional, Sequence

from ..models.core import EventType, MemoryEvent
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import age_hours, now_ms

logger = get_logger(__name__)

RECENCY_WINDOW_HOURS = 10
INVOLVED_BONUS = 5
WITNESS_BONUS = 3
KEYWORD_MIN_LENGTH = 4
EVENT_TYPE_BONUS: Dict[str, int] = {
    EventType.REVELATION.value: 3,
    EventType.RELATIONSHIP_CHANGE.value: 2,
}


def context_keywords(recent_context: str) -> List[str]:
    """Distinct lower-cased words longer than three characters, in first-seen order."""
    words = [w for w in recent_context.lower().split() if len(w) >= KEYWORD_MIN_LENGTH]
    return list(dict.fromkeys(words))


def score_memory(memory: MemoryEvent, keywords: Sequence[str], active_characters: Sequence[str], now: int) -> float:
    score = max(0.0, RECENCY_WINDOW_HOURS - age_hours(memory.created_at, now))

    involved = {name.lower() for name in memory.characters_involved}
    witnesses = {name.lower() for name in memory.witnesses}
    for name in active_characters:
        lowered = name.lower()
        if lowered in involved:
            score += INVOLVED_BONUS
        if lowered in witnesses:
            score += WITNESS_BONUS

    summary = memory.summary.lower()
    score += sum(1 for word in keywords if word in summary)

    score += EVENT_TYPE_BONUS.get(memory.event_type, 0)
    return score


def select_relevant_memories(memories: Sequence[MemoryEvent],
                             recent_context: str,
                             active_characters: Sequence[str],
                             limit: int,
                             now: Optional[int] = None) -> List[MemoryEvent]:
    """
    Rank memories against the recent conversation and return the top `limit`.

    Args:
        memories: Candidate events (already POV-filtered)
        recent_context: Text of the latest turns
        active_characters: Characters currently in the scene
        limit: Maximum number of memories to return
        now: Epoch milliseconds used for recency; current time if None

    Returns:
        Memories by descending score; equal scores keep their input order
    """
    if now is None:
        now = now_ms()
    keywords = context_keywords(recent_context or '')

    scored = [(score_memory(memory, keywords, active_characters, now), memory) for memory in memories]
    # sorted() is stable, so ties keep input order
    ranked = sorted(scored, key=lambda item: item[0], reverse=True)

    selected = [memory for _, memory in ranked[:max(0, limit)]]
    logger.debug(f'Selected {len(selected)} of {len(memories)} memories')
    return selected
