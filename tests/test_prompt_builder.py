"""
Unit tests for povmemory/services/prompt_builder.py
"""
from povmemory.models.core import PerChatSettings, Turn
from povmemory.services.prompt_builder import build_extraction_prompt, format_turns, get_recent_memories_for_context
from tests.conftest import make_event


def test_format_turns_labels_speakers():
    turns = [Turn(id=0, mes='Hello there', name='Bob', is_user=True), Turn(id=1, mes='Hi!', name=''), Turn(id=2, mes='Hm.', name='Carol')]

    assert format_turns(turns, 'Alice', 'Bob') == '[Bob]: Hello there\n\n[Alice]: Hi!\n\n[Carol]: Hm.'


def test_recent_memories_for_context():
    memories = [make_event('a', sequence=1), make_event('b', sequence=3), make_event('c', sequence=2)]

    assert [m.id for m in get_recent_memories_for_context(memories, -1)] == ['b', 'c', 'a']
    assert [m.id for m in get_recent_memories_for_context(memories, 2)] == ['b', 'c']
    assert get_recent_memories_for_context(memories, 0) == []


def test_rp_prompt_names_both_characters():
    prompt = build_extraction_prompt('[Bob]: hi', 'Alice', 'Bob')

    assert '- Main character: Alice' in prompt
    assert "- User's character: Bob" in prompt
    assert '[Bob]: hi' in prompt
    assert 'canonical_date' not in prompt
    assert 'Previously Established Memories' not in prompt
    assert 'empty array: []' in prompt


def test_narrator_prompt_omits_card_name_and_lists_characters():
    per_chat = PerChatSettings(card_type='narrator', name_list=['Carol', 'Dave'])

    prompt = build_extraction_prompt('[Bob]: hi', 'Game Master', 'Bob', per_chat=per_chat)

    assert 'Main character' not in prompt
    assert '- Other Characters:\n  - Carol\n  - Dave' in prompt


def test_date_tracking_adds_canonical_date_field():
    prompt = build_extraction_prompt('text', 'Alice', 'Bob', per_chat=PerChatSettings(canonical_date_tracking=True))

    assert '**canonical_date**' in prompt
    assert '"canonical_date": "...",' in prompt


def test_existing_memories_and_descriptions_are_included_oldest_first():
    memories = [make_event('b', summary='Second thing', sequence=2), make_event('a', summary='First thing', sequence=1)]

    prompt = build_extraction_prompt('text',
                                     'Alice',
                                     'Bob',
                                     existing_memories=memories,
                                     character_description='A cautious thief.',
                                     persona_description='A city guard.')

    assert '1. [action] First thing\n2. [action] Second thing' in prompt
    assert 'Do NOT duplicate events' in prompt
    assert '### Alice (AI Character)\nA cautious thief.' in prompt
    assert "### Bob (User's Persona)\nA city guard." in prompt
