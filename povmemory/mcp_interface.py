"""
MCP Interface Layer using fastmcp for agent orchestration.
"""
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from povmemory.services.extraction import ConfigurationError, ExtractionError
from povmemory.services.memory_management import MemoryManagementError, MemoryManagementService
from povmemory.utils.config import config
from povmemory.utils.logging_config import get_logger

logger = get_logger(__name__)

# Initialize FastMCP application
mcp = FastMCP('POV Memory')
memory_service = MemoryManagementService()


def _require_session(session_id: str) -> None:
    if not session_id or not session_id.strip():
        raise ValueError('Session ID is required')


@mcp.tool()
async def extract_memories(session_id: str,
                           turns: List[Dict[str, Any]],
                           character_name: str,
                           user_name: str = '',
                           message_ids: Optional[List[int]] = None) -> Dict[str, Any]:
    """Extract memory events from conversation turns.

    Args:
        session_id: Conversation ID
        turns: Ordered turns, each with id, name, mes, is_user, is_system
        character_name: Main character name
        user_name: User character name
        message_ids: Turn ids to extract (default: newest unprocessed turns)

    Returns:
        Dict with events_created and messages_processed
    """
    _require_session(session_id)
    try:
        result = await memory_service.add(session_id, turns, character_name, user_name, message_ids=message_ids)
    except (ConfigurationError, ExtractionError, MemoryManagementError) as e:
        logger.error(f'Extraction error in MCP extract: {e}')
        raise Exception(f'Memory extraction failed: {e}')

    if result is None:
        return {'events_created': 0, 'messages_processed': 0}
    return {'events_created': result.events_created, 'messages_processed': result.messages_processed}


@mcp.tool()
async def backfill_memories(session_id: str,
                            turns: List[Dict[str, Any]],
                            character_name: str,
                            user_name: str = '') -> Dict[str, Any]:
    """Extract memories from the conversation backlog in batches.

    Returns:
        Dict with events_created, messages_processed and failed batch indices
    """
    _require_session(session_id)
    try:
        result = await memory_service.backfill(session_id, turns, character_name, user_name)
    except (ConfigurationError, MemoryManagementError) as e:
        logger.error(f'Backfill error in MCP backfill: {e}')
        raise Exception(f'Memory backfill failed: {e}')

    if result is None:
        return {'events_created': 0, 'messages_processed': 0, 'failed_batches': []}
    return {
        'events_created': result.events_created,
        'messages_processed': result.messages_processed,
        'failed_batches': result.failed_batches,
    }


@mcp.tool()
async def retrieve_memories(session_id: str,
                            turns: List[Dict[str, Any]],
                            character_name: str,
                            user_name: str = '',
                            group_members: Optional[List[str]] = None) -> str:
    """Render the memory block for the character's point of view.

    Returns:
        Injectable memory text, empty if nothing is relevant
    """
    _require_session(session_id)
    try:
        result = await memory_service.search(session_id,
                                             turns,
                                             character_name,
                                             user_name,
                                             group_members=group_members or [],
                                             is_group_chat=bool(group_members))
    except MemoryManagementError as e:
        logger.error(f'Memory management error in MCP retrieve: {e}')
        raise Exception(f'Memory retrieval failed: {e}')

    logger.debug(f'MCP retrieve returned {len(result.memories) if result else 0} memories for session {session_id}')
    return result.context if result else ''


@mcp.tool()
def memory_stats(session_id: str) -> Dict[str, Any]:
    """Counts of stored events, characters and relationships."""
    _require_session(session_id)
    try:
        return memory_service.get_stats(session_id)
    except MemoryManagementError as e:
        logger.error(f'Memory management error in MCP stats: {e}')
        raise Exception(f'Memory stats failed: {e}')


@mcp.tool()
def delete_memory(session_id: str, memory_id: str) -> bool:
    """Delete one stored memory event."""
    _require_session(session_id)
    try:
        return memory_service.delete(session_id, memory_id)
    except MemoryManagementError as e:
        logger.error(f'Memory management error in MCP delete: {e}')
        raise Exception(f'Memory deletion failed: {e}')


if __name__ == '__main__':
    transport = config.mcp.transport
    host = config.mcp.host
    port = config.mcp.port
    mcp.run(transport=transport, host=host, port=port)
