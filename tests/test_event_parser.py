"""
Unit tests for povmemory/services/event_parser.py
"""
import json

from povmemory.services.event_parser import normalize_event, parse_extraction_result
from tests.conftest import NOW_MS, make_turns


def _parse(response, turns=None, **kwargs):
    return parse_extraction_result(response, turns or make_turns(3), 'batch_1', clock=lambda: NOW_MS, **kwargs)


def test_single_object_is_wrapped_and_witnesses_default_to_involved():
    response = json.dumps({
        'event_type': 'action',
        'importance': 3,
        'summary': 'Alice hands Bob the key',
        'characters_involved': ['Alice', 'Bob'],
    })

    result = _parse(response)

    assert not result.failed
    assert len(result.events) == 1
    event = result.events[0]
    assert event.witnesses == ['Alice', 'Bob']
    assert event.location == 'unknown'
    assert event.is_secret is False
    assert event.message_ids == [0, 1, 2]
    assert event.batch_id == 'batch_1'
    assert event.created_at == NOW_MS


def test_fenced_array_with_commentary_is_parsed():
    events = [{'summary': 'First'}, {'summary': 'Second', 'witnesses': ['Carol']}]
    response = 'Here you go:\n```json\n' + json.dumps(events) + '\n```\nHope that helps.'

    result = _parse(response, start_sequence=7)

    assert [e.summary for e in result.events] == ['First', 'Second']
    assert [e.sequence for e in result.events] == [7, 8]
    assert result.events[1].witnesses == ['Carol']
    assert result.events[0].id != result.events[1].id


def test_invalid_json_yields_error_and_no_events():
    result = _parse('I could not find any events, sorry.')

    assert result.failed
    assert result.events == []
    assert 'Invalid JSON' in result.error


def test_empty_array_is_success_with_no_events():
    result = _parse('[]')

    assert not result.failed
    assert result.events == []


def test_malformed_elements_are_skipped():
    response = json.dumps(['not an event', {'importance': 2}, {'summary': '   '}, {'summary': 'Kept'}])

    result = _parse(response)

    assert [e.summary for e in result.events] == ['Kept']
    assert result.skipped == 3
    assert result.events[0].sequence == 1


def test_field_normalization():
    response = json.dumps({
        'event_type': 'Plot Twist',
        'importance': 9,
        'summary': 'alice learns the truth',
        'characters_involved': ['alice', 'ALICE', None],
        'is_secret': 'true',
        'emotional_impact': {'alice': 'shocked'},
        'relationship_impact': {'alice -> bob': 'trust decreased'},
    })

    event = _parse(response, character_names=['Alice', 'Bob']).events[0]

    assert event.event_type == 'action'
    assert event.importance == 5
    assert event.characters_involved == ['Alice']
    assert event.is_secret is True
    assert event.emotional_impact == {'Alice': 'shocked'}
    assert event.relationship_impact == {'Alice->Bob': 'trust decreased'}


def test_normalize_event_keeps_canonical_date_and_low_importance():
    event = normalize_event({'summary': 'They meet', 'importance': 0, 'canonical_date': ' Monday '},
                            message_ids=[4],
                            batch_id='b',
                            created_at=1,
                            sequence=2,
                            event_id='fixed')

    assert event.id == 'fixed'
    assert event.importance == 1
    assert event.canonical_date == 'Monday'


def test_non_finite_importance_degrades_only_that_field():
    response = '[{"summary": "Alice lies", "importance": 1e400}, {"summary": "Bob leaves", "importance": "Infinity"}, ' \
               '{"summary": "Carol waits", "importance": 2}]'

    result = _parse(response)

    assert not result.failed
    assert [(e.summary, e.importance) for e in result.events] == [('Alice lies', None), ('Bob leaves', None),
                                                                  ('Carol waits', 2)]


def test_relationship_keys_use_known_name_casing():
    response = json.dumps({
        'summary': 'Bob apologizes',
        'relationship_impact': {'bob->ALICE': 'tension decreased', 'unparseable key': 'ignored later'},
    })

    event = _parse(response, character_names=['Alice', 'Bob']).events[0]

    assert event.relationship_impact == {'Bob->Alice': 'tension decreased', 'unparseable key': 'ignored later'}
