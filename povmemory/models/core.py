"""
Core data models for the conversation memory system.

Everything here round-trips through the per-conversation metadata document, so each
model carries a to_dict/from_dict pair keyed with the stored field names.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set

# Session document keys
MEMORIES_KEY = 'memories'
CHARACTERS_KEY = 'character_states'
RELATIONSHIPS_KEY = 'relationships'
LAST_PROCESSED_KEY = 'last_processed_message_id'
LAST_BATCH_KEY = 'last_extraction_batch'
EXTRACTED_BATCHES_KEY = 'extracted_batches'
PER_CHAT_SETTINGS_KEY = 'per_chat_settings'

CARD_TYPE_RP = 'rp'
CARD_TYPE_NARRATOR = 'narrator'

DEFAULT_EMOTION = 'neutral'
DEFAULT_EMOTION_INTENSITY = 5
DEFAULT_TRUST = 5
DEFAULT_TENSION = 0
DEFAULT_RELATIONSHIP_TYPE = 'acquaintance'
DEFAULT_LOCATION = 'unknown'


class EventType(str, Enum):
    ACTION = 'action'
    REVELATION = 'revelation'
    EMOTION_SHIFT = 'emotion_shift'
    RELATIONSHIP_CHANGE = 'relationship_change'


EVENT_TYPES = frozenset(t.value for t in EventType)


class PipelineStatus(str, Enum):
    READY = 'ready'
    EXTRACTING = 'extracting'
    RETRIEVING = 'retrieving'
    ERROR = 'error'


@dataclass
class Turn:
    """One conversation turn as delivered by the host platform. Never mutated."""
    id: int
    mes: str
    name: str = ''
    is_user: bool = False
    is_system: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any], index: Optional[int] = None) -> 'Turn':
        turn_id = data.get('id', index)
        if turn_id is None:
            raise ValueError('Turn requires an id or a position in the conversation')
        return cls(id=int(turn_id),
                   mes=data.get('mes') or '',
                   name=data.get('name') or '',
                   is_user=bool(data.get('is_user', False)),
                   is_system=bool(data.get('is_system', False)))


@dataclass(frozen=True)
class MemoryEvent:
    """A fact extracted from a batch of turns. Immutable once created."""
    id: str
    event_type: str
    summary: str
    message_ids: List[int]  # Source turn ids, in batch order
    created_at: int  # Epoch milliseconds
    sequence: int  # Monotonic extraction order, tie-breaker for created_at
    batch_id: str
    importance: Optional[int] = None  # 1-5
    characters_involved: List[str] = field(default_factory=list)
    witnesses: List[str] = field(default_factory=list)
    location: str = DEFAULT_LOCATION
    canonical_date: Optional[str] = None
    is_secret: bool = False
    emotional_impact: Dict[str, str] = field(default_factory=dict)  # name -> description
    relationship_impact: Dict[str, str] = field(default_factory=dict)  # "A->B" -> description

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'event_type': self.event_type,
            'importance': self.importance,
            'summary': self.summary,
            'characters_involved': list(self.characters_involved),
            'witnesses': list(self.witnesses),
            'location': self.location,
            'is_secret': self.is_secret,
            'emotional_impact': dict(self.emotional_impact),
            'relationship_impact': dict(self.relationship_impact),
            'message_ids': list(self.message_ids),
            'created_at': self.created_at,
            'sequence': self.sequence,
            'batch_id': self.batch_id,
        }
        if self.canonical_date is not None:
            data['canonical_date'] = self.canonical_date
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MemoryEvent':
        characters = list(data.get('characters_involved') or [])
        return cls(id=str(data['id']),
                   event_type=data.get('event_type') or EventType.ACTION.value,
                   importance=data.get('importance'),
                   summary=data.get('summary') or '',
                   characters_involved=characters,
                   witnesses=list(data.get('witnesses') or characters),
                   location=data.get('location') or DEFAULT_LOCATION,
                   canonical_date=data.get('canonical_date'),
                   is_secret=bool(data.get('is_secret', False)),
                   emotional_impact=dict(data.get('emotional_impact') or {}),
                   relationship_impact=dict(data.get('relationship_impact') or {}),
                   message_ids=list(data.get('message_ids') or []),
                   created_at=int(data.get('created_at') or 0),
                   sequence=int(data.get('sequence') or 0),
                   batch_id=data.get('batch_id') or '')

    @property
    def sort_key(self):
        return (self.sequence, self.created_at)


@dataclass
class CharacterState:
    """Derived per-character state. Created lazily, never deleted individually."""
    name: str
    current_emotion: str = DEFAULT_EMOTION
    emotion_intensity: int = DEFAULT_EMOTION_INTENSITY  # 1-10
    known_events: List[str] = field(default_factory=list)  # Set semantics, list-backed
    last_updated: Optional[int] = None

    def add_known_event(self, event_id: str) -> bool:
        """Record an event as known. Returns False if it was already known."""
        if event_id in self.known_events:
            return False
        self.known_events.append(event_id)
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'current_emotion': self.current_emotion,
            'emotion_intensity': self.emotion_intensity,
            'known_events': list(self.known_events),
            'last_updated': self.last_updated,
        }

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> 'CharacterState':
        known_events = []
        for event_id in data.get('known_events') or []:
            if event_id not in known_events:
                known_events.append(event_id)
        return cls(name=data.get('name') or name,
                   current_emotion=data.get('current_emotion') or DEFAULT_EMOTION,
                   emotion_intensity=int(data.get('emotion_intensity', DEFAULT_EMOTION_INTENSITY)),
                   known_events=known_events,
                   last_updated=data.get('last_updated'))


@dataclass
class RelationshipHistoryEntry:
    event_id: str
    impact: str
    timestamp: int


@dataclass
class Relationship:
    """Derived relationship between two characters, keyed 'A<->B' in first-seen order."""
    character_a: str
    character_b: str
    trust_level: int = DEFAULT_TRUST  # 0-10
    tension_level: int = DEFAULT_TENSION  # 0-10
    relationship_type: str = DEFAULT_RELATIONSHIP_TYPE
    history: List[RelationshipHistoryEntry] = field(default_factory=list)  # Append-only

    @staticmethod
    def make_key(character_a: str, character_b: str) -> str:
        return f'{character_a}<->{character_b}'

    @property
    def key(self) -> str:
        return self.make_key(self.character_a, self.character_b)

    def involves(self, name: str) -> bool:
        return name in (self.character_a, self.character_b)

    def other(self, name: str) -> str:
        return self.character_b if self.character_a == name else self.character_a

    def to_dict(self) -> Dict[str, Any]:
        return {
            'character_a': self.character_a,
            'character_b': self.character_b,
            'trust_level': self.trust_level,
            'tension_level': self.tension_level,
            'relationship_type': self.relationship_type,
            'history': [{
                'event_id': entry.event_id,
                'impact': entry.impact,
                'timestamp': entry.timestamp
            } for entry in self.history],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Relationship':
        return cls(character_a=data['character_a'],
                   character_b=data['character_b'],
                   trust_level=int(data.get('trust_level', DEFAULT_TRUST)),
                   tension_level=int(data.get('tension_level', DEFAULT_TENSION)),
                   relationship_type=data.get('relationship_type') or DEFAULT_RELATIONSHIP_TYPE,
                   history=[
                       RelationshipHistoryEntry(event_id=entry.get('event_id', ''),
                                                impact=entry.get('impact', ''),
                                                timestamp=int(entry.get('timestamp') or 0))
                       for entry in data.get('history') or []
                   ])


@dataclass
class PerChatSettings:
    """Conversation-scoped prompt settings."""
    card_type: str = CARD_TYPE_RP  # 'rp', anything else is a narrator/GM card
    canonical_date_tracking: bool = False
    name_list: List[str] = field(default_factory=list)  # Other characters to tell the model about

    @property
    def is_narrator(self) -> bool:
        return self.card_type != CARD_TYPE_RP

    def to_dict(self) -> Dict[str, Any]:
        return {
            'cardType': self.card_type,
            'canonicalDateTracking': self.canonical_date_tracking,
            'nameList': list(self.name_list),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'PerChatSettings':
        data = data or {}
        name_list = data.get('nameList')
        return cls(card_type=data.get('cardType') or CARD_TYPE_RP,
                   canonical_date_tracking=bool(data.get('canonicalDateTracking', False)),
                   name_list=list(name_list) if isinstance(name_list, list) else [])


@dataclass
class SessionData:
    """In-memory view of one conversation's stored memory state."""
    memories: List[MemoryEvent] = field(default_factory=list)
    character_states: Dict[str, CharacterState] = field(default_factory=dict)
    relationships: Dict[str, Relationship] = field(default_factory=dict)
    last_processed_message_id: int = -1
    last_extraction_batch: Optional[str] = None
    extracted_batches: List[int] = field(default_factory=list)
    per_chat_settings: PerChatSettings = field(default_factory=PerChatSettings)

    def extracted_message_ids(self) -> Set[int]:
        """All turn ids covered by at least one stored event."""
        ids = set()
        for memory in self.memories:
            ids.update(memory.message_ids)
        return ids

    def next_sequence(self) -> int:
        return max((m.sequence for m in self.memories), default=0) + 1

    def find_character_state(self, name: str) -> Optional[CharacterState]:
        """Exact key first, then case-insensitive match."""
        if name in self.character_states:
            return self.character_states[name]
        lowered = name.lower()
        for key, state in self.character_states.items():
            if key.lower() == lowered:
                return state
        return None

    def mark_batch_extracted(self, batch_index: int) -> None:
        if batch_index not in self.extracted_batches:
            self.extracted_batches.append(batch_index)

    def to_dict(self) -> Dict[str, Any]:
        return {
            MEMORIES_KEY: [m.to_dict() for m in self.memories],
            CHARACTERS_KEY: {name: state.to_dict() for name, state in self.character_states.items()},
            RELATIONSHIPS_KEY: {key: rel.to_dict() for key, rel in self.relationships.items()},
            LAST_PROCESSED_KEY: self.last_processed_message_id,
            LAST_BATCH_KEY: self.last_extraction_batch,
            EXTRACTED_BATCHES_KEY: list(self.extracted_batches),
            PER_CHAT_SETTINGS_KEY: self.per_chat_settings.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'SessionData':
        data = data or {}
        last_processed = data.get(LAST_PROCESSED_KEY)
        return cls(memories=[MemoryEvent.from_dict(m) for m in data.get(MEMORIES_KEY) or []],
                   character_states={
                       name: CharacterState.from_dict(name, state)
                       for name, state in (data.get(CHARACTERS_KEY) or {}).items()
                   },
                   relationships={key: Relationship.from_dict(rel) for key, rel in (data.get(RELATIONSHIPS_KEY) or {}).items()},
                   last_processed_message_id=-1 if last_processed is None else int(last_processed),
                   last_extraction_batch=data.get(LAST_BATCH_KEY),
                   extracted_batches=list(data.get(EXTRACTED_BATCHES_KEY) or []),
                   per_chat_settings=PerChatSettings.from_dict(data.get(PER_CHAT_SETTINGS_KEY)))


@dataclass
class ExtractionResult:
    """Outcome of one extraction cycle."""
    events_created: int
    messages_processed: int
    batch_id: str
    parse_failed: bool = False


@dataclass
class BackfillResult:
    """Outcome of a backfill run."""
    events_created: int = 0
    messages_processed: int = 0
    batches_total: int = 0
    completed_batches: List[int] = field(default_factory=list)
    failed_batches: List[int] = field(default_factory=list)
    deferred_messages: int = 0


@dataclass
class RetrievalResult:
    """Memories selected for injection and the rendered block."""
    memories: List[MemoryEvent]
    context: str
    pov_characters: List[str]
    fallback_used: bool = False
