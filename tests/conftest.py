"""
Shared fixtures for the memory pipeline tests.
"""
import json
from typing import Any, Dict, List, Optional

import pytest

from povmemory.models.core import MemoryEvent, SessionData, Turn
from povmemory.services.pipeline_context import PipelineContext
from povmemory.utils.config import MemoryConfig

NOW_MS = 1_700_000_000_000


class FakeLLM:
    """LLMService double: replays queued responses, raising any queued exception."""

    def __init__(self, responses: Optional[List[Any]] = None):
        self.responses = list(responses or [])
        self.calls: List[Dict[str, Any]] = []

    def queue(self, *responses: Any) -> None:
        self.responses.extend(responses)

    async def send_request(self, profile_id, messages, max_tokens, options=None, override_payload=None):
        self.calls.append({'profile_id': profile_id, 'messages': messages, 'max_tokens': max_tokens, 'options': options})
        response = self.responses.pop(0) if self.responses else '[]'
        if isinstance(response, Exception):
            raise response
        return response


def events_json(*events: Dict[str, Any]) -> str:
    return '```json\n' + json.dumps(list(events)) + '\n```'


def make_event(event_id: str = 'e1', summary: str = 'Something happened', created_at: int = NOW_MS, sequence: int = 1,
               **fields: Any) -> MemoryEvent:
    return MemoryEvent(id=event_id,
                       event_type=fields.pop('event_type', 'action'),
                       summary=summary,
                       message_ids=fields.pop('message_ids', [0]),
                       created_at=created_at,
                       sequence=sequence,
                       batch_id=fields.pop('batch_id', 'batch_test'),
                       **fields)


def make_turns(count: int, start: int = 0) -> List[Turn]:
    turns = []
    for i in range(start, start + count):
        is_user = i % 2 == 0
        turns.append(Turn(id=i, mes=f'Message number {i}', name='Bob' if is_user else 'Alice', is_user=is_user))
    return turns


@pytest.fixture
def settings():
    """Memory settings with small batches and a configured profile."""
    return MemoryConfig(enabled=True,
                        automatic_mode=True,
                        extraction_profile='test-profile',
                        messages_per_extraction=5,
                        memory_context_count=-1,
                        max_tokens_extraction_response=2000,
                        token_budget=1000,
                        max_memories_per_retrieval=10,
                        backfill_max_rpm=30,
                        pov_fallback_policy='fail_open',
                        recent_context_turns=5)


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def make_ctx(settings, fake_llm):
    """Factory for PipelineContext objects recording status, notifications, saves and injections."""

    def _make(turns: Optional[List[Turn]] = None, data: Optional[SessionData] = None, **overrides: Any) -> PipelineContext:
        record = {'statuses': [], 'notifications': [], 'saves': 0, 'injections': []}

        def save():
            record['saves'] += 1

        fields = dict(settings=settings,
                      data=data if data is not None else SessionData(),
                      turns=turns if turns is not None else make_turns(6),
                      character_name='Alice',
                      user_name='Bob',
                      llm=fake_llm,
                      save=save,
                      inject=record['injections'].append,
                      on_status=record['statuses'].append,
                      notify=lambda level, message: record['notifications'].append((level, message)),
                      clock=lambda: NOW_MS)
        fields.update(overrides)
        ctx = PipelineContext(**fields)
        ctx.record = record
        return ctx

    return _make
