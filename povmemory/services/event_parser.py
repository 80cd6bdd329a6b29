"""
Turns raw model output into validated MemoryEvent records.

Model output is untrusted: malformed elements are dropped and a payload that is not
JSON yields no events, with the failure reported on the ParseResult.
"""

import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from ..models.core import DEFAULT_LOCATION, EVENT_TYPES, EventType, MemoryEvent, Turn
from ..utils.json_utils import clean_json_response
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import now_ms
from .state_propagation import parse_relationship_key

logger = get_logger(__name__)


@dataclass
class ParseResult:
    events: List[MemoryEvent] = field(default_factory=list)
    error: Optional[str] = None  # Set when the payload itself could not be parsed
    skipped: int = 0  # Elements dropped as malformed

    @property
    def failed(self) -> bool:
        return self.error is not None


def _canonical_name(name: str, known: Dict[str, str]) -> str:
    return known.get(name.lower(), name)


def _as_name_list(value: Any, known: Dict[str, str]) -> List[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    names = []
    for item in value:
        if item is None:
            continue
        name = _canonical_name(str(item).strip(), known)
        if name and name not in names:
            names.append(name)
    return names


def _as_text_mapping(value: Any, known: Dict[str, str]) -> Dict[str, str]:
    if not isinstance(value, dict):
        return {}
    mapping = {}
    for key, text in value.items():
        key = str(key).strip()
        if not key or text is None:
            continue
        mapping[_canonical_name(key, known)] = str(text)
    return mapping


def _as_relationship_mapping(value: Any, known: Dict[str, str]) -> Dict[str, str]:
    """Like _as_text_mapping, but canonicalizes both names of an 'A -> B' key."""
    mapping = {}
    for key, text in _as_text_mapping(value, {}).items():
        pair = parse_relationship_key(key)
        if pair is not None:
            key = f'{_canonical_name(pair[0], known)}->{_canonical_name(pair[1], known)}'
        mapping[key] = text
    return mapping


def _as_importance(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return max(1, min(5, int(round(float(value)))))
    except (TypeError, ValueError, OverflowError):
        return None


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('true', 'yes', '1')
    return bool(value)


def _as_event_type(value: Any) -> str:
    event_type = str(value or '').strip().lower()
    if event_type not in EVENT_TYPES:
        logger.debug(f'Unknown event_type {value!r}, using {EventType.ACTION.value}')
        return EventType.ACTION.value
    return event_type


def normalize_event(raw: Dict[str, Any],
                    message_ids: List[int],
                    batch_id: str,
                    created_at: int,
                    sequence: int,
                    known_names: Optional[Dict[str, str]] = None,
                    event_id: Optional[str] = None) -> Optional[MemoryEvent]:
    """Build a MemoryEvent from one raw element, or None if it has no usable summary."""
    known = known_names or {}
    summary = str(raw.get('summary') or '').strip()
    if not summary:
        return None

    characters = _as_name_list(raw.get('characters_involved'), known)
    witnesses = _as_name_list(raw.get('witnesses'), known) or list(characters)
    location = str(raw.get('location') or '').strip() or DEFAULT_LOCATION
    canonical_date = raw.get('canonical_date')

    return MemoryEvent(id=event_id or str(uuid.uuid4()),
                       event_type=_as_event_type(raw.get('event_type')),
                       importance=_as_importance(raw.get('importance')),
                       summary=summary,
                       characters_involved=characters,
                       witnesses=witnesses,
                       location=location,
                       canonical_date=str(canonical_date).strip() if canonical_date else None,
                       is_secret=_as_bool(raw.get('is_secret', False)),
                       emotional_impact=_as_text_mapping(raw.get('emotional_impact'), known),
                       relationship_impact=_as_relationship_mapping(raw.get('relationship_impact'), known),
                       message_ids=list(message_ids),
                       created_at=created_at,
                       sequence=sequence,
                       batch_id=batch_id)


def parse_extraction_result(response: str,
                            turns: Sequence[Turn],
                            batch_id: str,
                            character_names: Optional[Iterable[str]] = None,
                            start_sequence: int = 1,
                            clock: Callable[[], int] = now_ms) -> ParseResult:
    """
    Parse an extraction response into events.

    Args:
        response: Raw model response (reasoning already stripped)
        turns: The batch's turns; every event references all of their ids
        batch_id: Originating batch id
        character_names: Known names, used to canonicalize the casing of names the model returns
        start_sequence: Sequence number for the first event
        clock: Epoch-millisecond clock

    Returns:
        ParseResult with events, or with error set when the payload is not JSON
    """
    try:
        parsed = json.loads(clean_json_response(response or ''))
    except json.JSONDecodeError as e:
        logger.error(f'Failed to parse extraction result JSON: {e}')
        return ParseResult(error=f'Invalid JSON in extraction response: {e}')

    elements = parsed if isinstance(parsed, list) else [parsed]
    known = {name.lower(): name for name in (character_names or []) if name}
    message_ids = [turn.id for turn in turns]
    created_at = clock()

    result = ParseResult()
    for element in elements:
        if not isinstance(element, dict):
            result.skipped += 1
            continue
        event = normalize_event(element,
                                message_ids=message_ids,
                                batch_id=batch_id,
                                created_at=created_at,
                                sequence=start_sequence + len(result.events),
                                known_names=known)
        if event is None:
            result.skipped += 1
            continue
        result.events.append(event)

    if result.skipped:
        logger.warning(f'Skipped {result.skipped} malformed event(s) in batch {batch_id}')
    logger.debug(f'Parsed {len(result.events)} events for batch {batch_id}')
    return result
