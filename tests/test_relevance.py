"""
Unit tests for povmemory/services/relevance.py
"""
from povmemory.services.relevance import context_keywords, score_memory, select_relevant_memories
from povmemory.utils.timestamp_utils import MS_PER_HOUR
from tests.conftest import NOW_MS, make_event


def test_context_keywords_are_distinct_and_long_enough():
    assert context_keywords('The dragon and THE Dragon sat by the lake') == ['dragon', 'lake']


def test_score_components():
    memory = make_event(summary='The dragon burned the bridge',
                        event_type='revelation',
                        characters_involved=['Alice'],
                        witnesses=['alice', 'Bob'],
                        created_at=NOW_MS - 4 * MS_PER_HOUR)

    # recency 6 + involved 5 + witness 3 (Alice) + witness 3 (Bob) + keyword 1 + type 3
    assert score_memory(memory, ['dragon', 'castle'], ['Alice', 'Bob'], NOW_MS) == 21


def test_old_memories_get_no_recency_bonus():
    memory = make_event(created_at=NOW_MS - 48 * MS_PER_HOUR)

    assert score_memory(memory, [], [], NOW_MS) == 0


def test_ranking_prefers_participants_and_keywords():
    unrelated = make_event('unrelated', summary='Weather was mild')
    involved = make_event('involved', summary='Carol bought bread', characters_involved=['Carol'])
    keyword = make_event('keyword', summary='The dragon returned to the mountain')

    ranked = select_relevant_memories([unrelated, keyword, involved], 'a dragon over the mountain', ['Carol'], 10, now=NOW_MS)

    assert [m.id for m in ranked] == ['involved', 'keyword', 'unrelated']


def test_ties_keep_input_order_and_results_are_deterministic():
    memories = [make_event(f'm{i}', summary='Same text') for i in range(6)]

    first = select_relevant_memories(memories, 'same text here', ['Alice'], 4, now=NOW_MS)
    second = select_relevant_memories(memories, 'same text here', ['Alice'], 4, now=NOW_MS)

    assert [m.id for m in first] == ['m0', 'm1', 'm2', 'm3']
    assert first == second


def test_limit_is_respected():
    memories = [make_event(f'm{i}') for i in range(3)]

    assert select_relevant_memories(memories, '', [], 0, now=NOW_MS) == []
    assert len(select_relevant_memories(memories, '', [], 2, now=NOW_MS)) == 2
