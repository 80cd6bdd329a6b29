"""
Unit tests for povmemory/services/retrieval.py
"""
import dataclasses

import pytest

from povmemory.models.core import CharacterState, PipelineStatus, Relationship, SessionData, Turn
from povmemory.services.retrieval import RetrievalService, build_recent_context
from tests.conftest import make_event, make_turns

pytestmark = pytest.mark.asyncio


@pytest.fixture
def service():
    return RetrievalService()


@pytest.fixture
def data():
    return SessionData(memories=[
        make_event('seen', summary='Alice found a hidden door', characters_involved=['Alice'], witnesses=['Alice', 'Bob']),
        make_event('unseen', summary='Dave buried the gold', characters_involved=['Dave'], witnesses=['Dave']),
    ],
                       character_states={'Alice': CharacterState(name='Alice', current_emotion='curious')},
                       relationships={'Alice<->Bob': Relationship(character_a='Alice', character_b='Bob', trust_level=8)})


async def test_recent_context_skips_system_turns():
    turns = make_turns(3) + [Turn(id=3, mes='system note', is_system=True)]

    assert build_recent_context(turns, 2) == 'Message number 1\nMessage number 2'
    assert build_recent_context(turns, 0) == ''


async def test_retrieve_and_inject(service, make_ctx, data):
    ctx = make_ctx(data=data)

    result = await service.retrieve_and_inject(ctx)

    assert [m.id for m in result.memories] == ['seen']
    assert not result.fallback_used
    assert 'Alice found a hidden door' in result.context
    assert 'Dave buried the gold' not in result.context
    assert 'Current emotional state: curious' in result.context
    assert '- Bob: acquaintance (high trust)' in result.context
    assert ctx.record['injections'] == [result.context]
    assert ctx.record['statuses'] == [PipelineStatus.RETRIEVING, PipelineStatus.READY]


async def test_fail_open_fallback_is_reported(service, make_ctx):
    data = SessionData(memories=[make_event('only', witnesses=['Dave'])])
    ctx = make_ctx(data=data)

    result = await service.retrieve_and_inject(ctx)

    assert result.fallback_used
    assert ('warning', 'No memories visible to Bob, Alice; using all 1 memories') in ctx.record['notifications']


async def test_strict_policy_injects_nothing(service, make_ctx, settings):
    data = SessionData(memories=[make_event('only', witnesses=['Dave'])])
    ctx = make_ctx(data=data, settings=dataclasses.replace(settings, pov_fallback_policy='strict'))

    assert await service.retrieve_and_inject(ctx) is None
    assert ctx.record['injections'] == []


async def test_persistent_injection_cleared_when_not_automatic(service, make_ctx, settings, data):
    ctx = make_ctx(data=data, settings=dataclasses.replace(settings, automatic_mode=False))

    assert await service.update_persistent_injection(ctx) is None
    assert ctx.record['injections'] == ['']


async def test_persistent_injection_updated(service, make_ctx, data):
    ctx = make_ctx(data=data)

    result = await service.update_persistent_injection(ctx)

    assert ctx.record['injections'] == [result.context]
    assert ctx.record['statuses'] == []
