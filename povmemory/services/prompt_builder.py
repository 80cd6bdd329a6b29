"""
Extraction prompt construction. Pure functions, no I/O.
"""

from typing import List, Optional, Sequence

from ..models.core import MemoryEvent, PerChatSettings, Turn

EXTRACTION_SYSTEM_PROMPT = ('You are a helpful assistant that extracts structured data from roleplay conversations. '
                            'Always respond with valid JSON only, no markdown formatting.')


def format_turns(turns: Sequence[Turn], character_name: str, user_name: str) -> str:
    """Render turns as '[speaker]: text' blocks separated by blank lines."""
    lines = []
    for turn in turns:
        speaker = user_name if turn.is_user else (turn.name or character_name)
        lines.append(f'[{speaker}]: {turn.mes}')
    return '\n\n'.join(lines)


def get_recent_memories_for_context(memories: Sequence[MemoryEvent], count: int) -> List[MemoryEvent]:
    """Newest memories first; count -1 returns all, 0 returns none."""
    if count == 0:
        return []
    ordered = sorted(memories, key=lambda m: m.sort_key, reverse=True)
    return ordered if count < 0 else ordered[:count]


def _character_context_section(character_name: str, user_name: str, character_description: str,
                               persona_description: str) -> str:
    if not character_description and not persona_description:
        return ''
    section = '\n## Character Context\n'
    if character_description:
        section += f'### {character_name} (AI Character)\n{character_description}\n\n'
    if persona_description:
        section += f"### {user_name} (User's Persona)\n{persona_description}\n\n"
    return section


def _memory_context_section(existing_memories: Sequence[MemoryEvent]) -> str:
    if not existing_memories:
        return ''
    ordered = sorted(existing_memories, key=lambda m: m.sort_key)
    summaries = '\n'.join(f'{i}. [{m.event_type or "event"}] {m.summary}' for i, m in enumerate(ordered, start=1))
    return f"""
## Previously Established Memories
The following events have already been recorded. Use this context to:
- Avoid duplicating already-recorded events
- Maintain consistency with established facts
- Build upon existing character developments

{summaries}

"""


def _characters_section(character_name: str, user_name: str, per_chat: PerChatSettings) -> str:
    name_prompt = ''
    if per_chat.name_list:
        name_prompt = '- Other Characters:\n' + '\n'.join(f'  - {n}' for n in per_chat.name_list) + '\n'

    # A narrator card's name is not a story character
    if per_chat.is_narrator:
        return f"- User's character: {user_name}\n{name_prompt}"
    return f"- Main character: {character_name}\n{name_prompt}- User's character: {user_name}"


def build_extraction_prompt(messages_text: str,
                            character_name: str,
                            user_name: str,
                            existing_memories: Optional[Sequence[MemoryEvent]] = None,
                            character_description: str = '',
                            persona_description: str = '',
                            per_chat: Optional[PerChatSettings] = None) -> str:
    """
    Build the event extraction prompt.

    Args:
        messages_text: Formatted turns to analyze
        character_name: Main character name
        user_name: User character name
        existing_memories: Previously recorded events, rendered oldest to newest
        character_description: Character card description
        persona_description: User persona description
        per_chat: Conversation-scoped settings (card type, date tracking, name list)

    Returns:
        Prompt asking for a JSON array of event objects
    """
    existing_memories = list(existing_memories or [])
    per_chat = per_chat or PerChatSettings()
    track_dates = per_chat.canonical_date_tracking

    fields = [
        '**event_type**: One of: "action", "revelation", "emotion_shift", "relationship_change"',
        '**importance**: 1-5 scale (1=minor detail, 2=notable, 3=significant, 4=major event, 5=critical/story-changing)',
        '**summary**: Brief description of what happened (1-2 sentences)',
        '**characters_involved**: List of character names directly involved',
        '**witnesses**: List of character names who observed this (important for POV filtering)',
        '**location**: Where this happened (if mentioned, otherwise "unknown")',
    ]
    if track_dates:
        fields.append('**canonical_date**: On which date did this happen (e.g. "Saturday, January 3, 2026")')
    fields += [
        '**is_secret**: Whether this information should only be known by witnesses',
        f'**emotional_impact**: Object mapping character names to emotional changes '
        f'(e.g., {{"{character_name}": "growing trust", "{user_name}": "surprised"}})',
        f'**relationship_impact**: Object describing relationship changes '
        f'(e.g., {{"{character_name}->{user_name}": "trust increased"}})',
    ]
    field_list = '\n'.join(f'{i}. {text}' for i, text in enumerate(fields, start=1))

    date_line = '    "canonical_date": "...",\n' if track_dates else ''
    no_duplicates = 'Do NOT duplicate events from the "Previously Established Memories" section.' if existing_memories else ''

    return f"""You are analyzing roleplay messages to extract structured memory events.

## Characters
{_characters_section(character_name, user_name, per_chat)}
{_character_context_section(character_name, user_name, character_description, persona_description)}{_memory_context_section(existing_memories)}
## Messages to analyze:
{messages_text}

## Task
Extract NEW significant events from these messages. Use the Character Context (if provided) to better understand motivations, personality traits, and relationship dynamics. For each event, identify:
{field_list}

Only extract events that are significant for character memory and story continuity. Skip mundane exchanges.
{no_duplicates}

Respond with a JSON array of events:
```json
[
  {{
    "event_type": "...",
    "importance": 3,
    "summary": "...",
    "characters_involved": [...],
    "witnesses": [...],
    "location": "...",
{date_line}    "is_secret": false,
    "emotional_impact": {{...}},
    "relationship_impact": {{...}}
  }}
]
```

If no significant events, respond with an empty array: []"""  # noqa: E501
