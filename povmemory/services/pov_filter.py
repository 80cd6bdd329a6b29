"""
Point-of-view filtering: which stored events a character could plausibly know.

Name comparison is case-insensitive throughout. An event is visible to a viewer who
witnessed it, who is involved in it while it is not secret, or who has it recorded
in their known events.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from ..models.core import MemoryEvent, SessionData, Turn
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

PRESENT_CHARACTER_SCAN_TURNS = 2


class PovFallbackPolicy(str, Enum):
    FAIL_OPEN = 'fail_open'  # empty result on a non-empty store returns everything
    STRICT = 'strict'


@dataclass
class PovFilterResult:
    memories: List[MemoryEvent]
    fallback_used: bool = False


def _lowered(names: Iterable[str]) -> Set[str]:
    return {name.lower() for name in names if name}


def known_event_ids(data: SessionData, viewers: Iterable[str]) -> Set[str]:
    """Union of known events over every character state matching a viewer, ignoring case."""
    viewers_lower = _lowered(viewers)
    ids = set()
    for name, state in data.character_states.items():
        if name.lower() in viewers_lower:
            ids.update(state.known_events)
    return ids


def is_visible(memory: MemoryEvent, viewers_lower: Set[str], known_ids: Set[str]) -> bool:
    if viewers_lower & _lowered(memory.witnesses):
        return True
    if not memory.is_secret and viewers_lower & _lowered(memory.characters_involved):
        return True
    return memory.id in known_ids


def filter_memories_by_pov(memories: Sequence[MemoryEvent],
                           viewers: Union[str, Sequence[str]],
                           data: SessionData,
                           policy: PovFallbackPolicy = PovFallbackPolicy.FAIL_OPEN,
                           on_fallback: Optional[Callable[[List[str], int], None]] = None) -> PovFilterResult:
    """
    Return the memories visible to the viewing character(s), in store order.

    Args:
        memories: Candidate events
        viewers: Viewing character name, or several (visible to any of them)
        data: Session view holding the character states
        policy: What to do when nothing is visible but the store is not empty
        on_fallback: Called with (viewers, total) when the fail-open fallback fires

    Returns:
        PovFilterResult; fallback_used tells callers the result is unfiltered
    """
    viewer_list = [viewers] if isinstance(viewers, str) else list(viewers)
    viewers_lower = _lowered(viewer_list)
    known_ids = known_event_ids(data, viewer_list)

    accessible = [m for m in memories if is_visible(m, viewers_lower, known_ids)]
    logger.debug(f'POV filter: viewers={viewer_list}, total={len(memories)}, accessible={len(accessible)}')

    if not accessible and memories and PovFallbackPolicy(policy) is PovFallbackPolicy.FAIL_OPEN:
        logger.warning(f'POV filter returned 0 of {len(memories)} memories for {viewer_list}, using all memories as fallback')
        if on_fallback is not None:
            on_fallback(viewer_list, len(memories))
        return PovFilterResult(memories=list(memories), fallback_used=True)

    return PovFilterResult(memories=accessible)


def get_active_characters(character_name: str, user_name: str = '', group_members: Sequence[str] = ()) -> List[str]:
    """Main character, user, then group members, without duplicates."""
    characters = [character_name] if character_name else []
    if user_name and user_name not in characters:
        characters.append(user_name)
    for member in group_members:
        if member and member not in characters:
            characters.append(member)
    return characters


def detect_present_characters(turns: Sequence[Turn],
                              data: SessionData,
                              character_name: str,
                              user_name: str = '',
                              message_count: int = PRESENT_CHARACTER_SCAN_TURNS) -> List[str]:
    """Names of senders and known characters mentioned in the last few non-system turns."""
    known: Dict[str, None] = {}
    for memory in data.memories:
        for name in (*memory.characters_involved, *memory.witnesses):
            known[name.lower()] = None
    for name in data.character_states:
        known[name.lower()] = None
    for name in (user_name, character_name):
        if name:
            known[name.lower()] = None

    recent = [turn for turn in turns if not turn.is_system][-message_count:] if message_count > 0 else []
    present: Dict[str, None] = {}
    for turn in recent:
        text = turn.mes.lower()
        if turn.name:
            present[turn.name.lower()] = None
        for name in known:
            if re.search(rf'(?<!\w){re.escape(name)}(?!\w)', text):
                present[name] = None

    # Restore original casing where we have it
    casing = {name.lower(): name for name in data.character_states}
    for name in (character_name, user_name):
        if name:
            casing.setdefault(name.lower(), name)
    result = [casing.get(name, name) for name in present]

    logger.debug(f'Detected present characters: {", ".join(result)}')
    return result


def get_pov_characters(turns: Sequence[Turn],
                       data: SessionData,
                       character_name: str,
                       user_name: str = '',
                       is_group_chat: bool = False) -> Tuple[List[str], bool]:
    """
    Viewers for retrieval.

    Group chat: the responding character. Solo chat (narrator mode): characters present
    in the latest turns, falling back to the character and user names.

    Returns:
        Tuple of (pov_characters, is_group_chat)
    """
    if is_group_chat:
        logger.debug(f'Group chat mode: POV character = {character_name}')
        return [character_name], True

    present = detect_present_characters(turns, data, character_name, user_name)
    if not present:
        present = [name for name in (character_name, user_name) if name]

    logger.debug(f'Narrator mode: POV characters = {", ".join(present)}')
    return present, False
