"""
Unit tests for povmemory/mcp_interface.py

Tool functions are called directly with the module's memory service replaced by a mock.
"""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from povmemory import mcp_interface
from povmemory.models.core import ExtractionResult, RetrievalResult
from povmemory.services.memory_management import MemoryManagementError


def _fn(tool):
    # FastMCP may wrap decorated functions in a tool object
    return getattr(tool, 'fn', tool)


@pytest.fixture
def service():
    with patch.object(mcp_interface, 'memory_service', MagicMock()) as mock_service:
        yield mock_service


@pytest.mark.asyncio
async def test_extract_memories_reports_counts(service):
    service.add = AsyncMock(return_value=ExtractionResult(events_created=2, messages_processed=5, batch_id='b'))

    result = await _fn(mcp_interface.extract_memories)('chat-1', [{'mes': 'hi'}], 'Alice', 'Bob')

    assert result == {'events_created': 2, 'messages_processed': 5}
    service.add.assert_awaited_once_with('chat-1', [{'mes': 'hi'}], 'Alice', 'Bob', message_ids=None)


@pytest.mark.asyncio
async def test_retrieve_memories_returns_context_and_flags_group_chat(service):
    service.search = AsyncMock(return_value=RetrievalResult(memories=[], context='[block]', pov_characters=['Alice']))

    context = await _fn(mcp_interface.retrieve_memories)('chat-1', [], 'Alice', group_members=['Carol'])

    assert context == '[block]'
    assert service.search.await_args.kwargs['is_group_chat'] is True


def test_stats_and_delete_wrap_service_errors(service):
    service.get_stats.side_effect = MemoryManagementError('Failed to load memories: corrupt')
    service.delete.side_effect = MemoryManagementError('Memory deletion failed: read-only')

    with pytest.raises(Exception, match='Memory stats failed'):
        _fn(mcp_interface.memory_stats)('chat-1')
    with pytest.raises(Exception, match='Memory deletion failed'):
        _fn(mcp_interface.delete_memory)('chat-1', 'e1')


def test_blank_session_is_rejected(service):
    with pytest.raises(ValueError):
        _fn(mcp_interface.memory_stats)('  ')

    service.get_stats.assert_not_called()
