"""
Unit tests for povmemory/utils/session_store.py
"""
import pytest

from povmemory.models.core import CharacterState, PerChatSettings, Relationship, RelationshipHistoryEntry, SessionData
from povmemory.utils.config import StorageConfig
from povmemory.utils.session_store import JsonFileSessionStore, SessionStoreError
from tests.conftest import make_event


@pytest.fixture
def store(tmp_path):
    return JsonFileSessionStore(StorageConfig(data_dir=str(tmp_path / 'sessions')))


def test_missing_session_loads_empty(store):
    data = store.load('never-saved')

    assert data.memories == []
    assert data.last_processed_message_id == -1
    assert data.per_chat_settings.card_type == 'rp'


def test_saved_state_survives_reload(store):
    data = SessionData(memories=[make_event('e1', canonical_date='Day 3', is_secret=True)],
                       character_states={'Alice': CharacterState(name='Alice', current_emotion='wary', known_events=['e1'])},
                       relationships={
                           'Alice<->Bob':
                           Relationship(character_a='Alice',
                                        character_b='Bob',
                                        trust_level=3,
                                        history=[RelationshipHistoryEntry(event_id='e1', impact='trust decreased', timestamp=5)])
                       },
                       last_processed_message_id=12,
                       last_extraction_batch='batch_1',
                       extracted_batches=[0, 2],
                       per_chat_settings=PerChatSettings(card_type='narrator', canonical_date_tracking=True, name_list=['Carol']))

    store.save('chat/with spaces', data)
    loaded = store.load('chat/with spaces')

    assert loaded == data
    assert [p.name for p in store.root.iterdir()] == ['chat_with_spaces.json']


def test_stored_document_uses_host_setting_keys(store):
    store.save('s1', SessionData(per_chat_settings=PerChatSettings(name_list=['Carol'])))

    text = (store.root / 's1.json').read_text(encoding='utf-8')

    assert '"nameList"' in text
    assert '"last_processed_message_id": -1' in text


def test_delete(store):
    store.save('s1', SessionData())

    assert store.delete('s1') is True
    assert store.delete('s1') is False
    assert store.load('s1').memories == []


def test_corrupt_document_raises(store):
    (store.root / 'broken.json').write_text('{not json', encoding='utf-8')

    with pytest.raises(SessionStoreError):
        store.load('broken')


def test_blank_session_id_raises(store):
    with pytest.raises(SessionStoreError):
        store.load('  ')


def test_health_check(store):
    assert store.health_check() is True


def test_failed_save_leaves_no_temp_file_and_keeps_previous_document(store):
    store.save('s1', SessionData(last_processed_message_id=4))
    broken = SessionData(memories=[make_event('e1', emotional_impact={'Alice': object()})])

    with pytest.raises(SessionStoreError):
        store.save('s1', broken)

    assert [p.name for p in store.root.iterdir()] == ['s1.json']
    assert store.load('s1').last_processed_message_id == 4
