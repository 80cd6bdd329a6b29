"""
Memory Management Service for unified per-conversation memory operations.
"""

from typing import Any, Dict, List, Optional, Sequence, Union

from ..models.core import BackfillResult, ExtractionResult, PerChatSettings, RetrievalResult, SessionData, Turn
from ..utils.bedrock_llm import BedrockLLM, BedrockLLMService, LLMService
from ..utils.config import MemoryConfig, config
from ..utils.logging_config import get_logger, session_logger
from ..utils.session_store import JsonFileSessionStore, SessionStore, SessionStoreError
from ..utils.timestamp_utils import to_datetime
from .backfill import BackfillScheduler
from .extraction import ConfigurationError, ExtractionError, ExtractionOrchestrator
from .pipeline_context import PipelineContext
from .retrieval import RetrievalError, RetrievalService

logger = get_logger(__name__)

TurnLike = Union[Turn, Dict[str, Any]]


class MemoryManagementError(Exception):
    """Custom exception for memory management errors."""
    pass


def normalize_turns(turns: Sequence[TurnLike]) -> List[Turn]:
    """Accept Turn objects or host dicts; a dict without an id takes its position."""
    return [turn if isinstance(turn, Turn) else Turn.from_dict(turn, index=i) for i, turn in enumerate(turns)]


class MemoryManagementService:
    """Unified service for extraction, backfill, retrieval, automatic hooks and data management."""

    def __init__(self,
                 store: Optional[SessionStore] = None,
                 llm: Optional[LLMService] = None,
                 settings: Optional[MemoryConfig] = None,
                 default_profile: Optional[str] = None,
                 orchestrator: Optional[ExtractionOrchestrator] = None,
                 backfill_scheduler: Optional[BackfillScheduler] = None,
                 retrieval: Optional[RetrievalService] = None):
        """Initialize the memory management service."""
        self.store = store or JsonFileSessionStore(config.storage)
        self.llm = llm or BedrockLLMService(BedrockLLM(config.bedrock_llm))
        self.settings = settings or config.memory
        self.default_profile = default_profile if default_profile is not None else config.bedrock_llm.model_id
        self.orchestrator = orchestrator or ExtractionOrchestrator()
        self.backfill_scheduler = backfill_scheduler or BackfillScheduler(self.orchestrator)
        self.retrieval = retrieval or RetrievalService()

        logger.info('Initialized MemoryManagementService')

    def _load(self, session_id: str) -> SessionData:
        try:
            return self.store.load(session_id)
        except SessionStoreError as e:
            session_logger(logger, session_id).error(f'Session store error while loading: {e}')
            raise MemoryManagementError(f'Failed to load memories: {e}')

    def build_context(self,
                      session_id: str,
                      data: SessionData,
                      turns: Sequence[TurnLike],
                      character_name: str,
                      user_name: str = '',
                      **host: Any) -> PipelineContext:
        """Build a PipelineContext whose save writes this conversation back to the store."""
        return PipelineContext(settings=self.settings,
                               data=data,
                               turns=normalize_turns(turns),
                               character_name=character_name,
                               user_name=user_name,
                               llm=self.llm,
                               default_profile=self.default_profile,
                               save=lambda: self.store.save(session_id, data),
                               **host)

    async def add(self,
                  session_id: str,
                  turns: Sequence[TurnLike],
                  character_name: str,
                  user_name: str = '',
                  message_ids: Optional[Sequence[int]] = None,
                  **host: Any) -> Optional[ExtractionResult]:
        """Extract memories from the given (or newest unprocessed) turns.

        Raises:
            ConfigurationError: If no LLM profile is usable
            ExtractionError: If the extraction cycle fails
            MemoryManagementError: If the session cannot be loaded
        """
        data = self._load(session_id)
        ctx = self.build_context(session_id, data, turns, character_name, user_name, **host)
        return await self.orchestrator.extract(ctx, message_ids)

    async def backfill(self,
                       session_id: str,
                       turns: Sequence[TurnLike],
                       character_name: str,
                       user_name: str = '',
                       **host: Any) -> Optional[BackfillResult]:
        """Extract the conversation's backlog in rate-limited batches.

        Raises:
            ConfigurationError: If no LLM profile is usable
            MemoryManagementError: If the session cannot be loaded or saved
        """
        data = self._load(session_id)
        ctx = self.build_context(session_id, data, turns, character_name, user_name, **host)
        try:
            return await self.backfill_scheduler.run(ctx)
        except SessionStoreError as e:
            logger.error(f'Session store error during backfill: {e}')
            raise MemoryManagementError(f'Backfill failed: {e}')

    async def search(self,
                     session_id: str,
                     turns: Sequence[TurnLike],
                     character_name: str,
                     user_name: str = '',
                     **host: Any) -> Optional[RetrievalResult]:
        """Retrieve memories for the current viewpoint and inject them.

        Raises:
            MemoryManagementError: If retrieval fails
        """
        data = self._load(session_id)
        ctx = self.build_context(session_id, data, turns, character_name, user_name, **host)
        try:
            return await self.retrieval.retrieve_and_inject(ctx)
        except RetrievalError as e:
            logger.error(f'Retrieval error during memory search: {e}')
            raise MemoryManagementError(f'Memory search failed: {e}')

    async def refresh_injection(self,
                                session_id: str,
                                turns: Sequence[TurnLike],
                                character_name: str,
                                user_name: str = '',
                                **host: Any) -> Optional[RetrievalResult]:
        """Rebuild the standing injection (automatic mode)."""
        data = self._load(session_id)
        ctx = self.build_context(session_id, data, turns, character_name, user_name, **host)
        try:
            return await self.retrieval.update_persistent_injection(ctx)
        except RetrievalError as e:
            logger.error(f'Retrieval error during injection refresh: {e}')
            raise MemoryManagementError(f'Injection refresh failed: {e}')

    async def on_message_received(self,
                                  session_id: str,
                                  turns: Sequence[TurnLike],
                                  message_id: int,
                                  character_name: str,
                                  user_name: str = '',
                                  **host: Any) -> Optional[ExtractionResult]:
        """Automatic mode: extract the new turn, then refresh the injection."""
        if not self.settings.enabled or not self.settings.automatic_mode:
            return None

        session_logger(logger, session_id).info(f'Message received: {message_id}, queuing extraction')
        result = None
        try:
            result = await self.add(session_id, turns, character_name, user_name, message_ids=[message_id], **host)
        except (ConfigurationError, ExtractionError) as e:
            # Already reported through the status and notification sinks
            logger.warning(f'Automatic extraction for message {message_id} failed: {e}')

        await self.refresh_injection(session_id, turns, character_name, user_name, **host)
        return result

    async def on_generation_started(self,
                                    session_id: str,
                                    turns: Sequence[TurnLike],
                                    character_name: str,
                                    user_name: str = '',
                                    **host: Any) -> Optional[RetrievalResult]:
        """Automatic mode: refresh the injection before the reply is generated."""
        logger.debug('Generation starting, updating injection')
        return await self.refresh_injection(session_id, turns, character_name, user_name, **host)

    on_chat_changed = on_generation_started

    def delete(self, session_id: str, memory_id: str) -> bool:
        """Delete one memory. Derived character and relationship state is left as is.

        Returns:
            True if the memory existed and was removed
        """
        if not memory_id or not memory_id.strip():
            logger.warning('Empty memory ID provided for deletion')
            return False

        data = self._load(session_id)
        remaining = [m for m in data.memories if m.id != memory_id]
        if len(remaining) == len(data.memories):
            logger.warning(f'No memory found for ID: {memory_id}')
            return False

        data.memories = remaining
        try:
            self.store.save(session_id, data)
        except SessionStoreError as e:
            logger.error(f'Session store error during memory deletion: {e}')
            raise MemoryManagementError(f'Memory deletion failed: {e}')
        session_logger(logger, session_id).debug(f'Deleted memory: {memory_id}')
        return True

    def delete_session(self, session_id: str) -> bool:
        """Delete all memory data of a conversation."""
        try:
            deleted = self.store.delete(session_id)
        except SessionStoreError as e:
            logger.error(f'Session store error during session deletion: {e}')
            raise MemoryManagementError(f'Session deletion failed: {e}')
        session_logger(logger, session_id).info('Deleted memory data' if deleted else 'No memory data to delete')
        return deleted

    def get_stats(self, session_id: str) -> Dict[str, Any]:
        """Counts of events, characters and relationships, with the extraction time range."""
        data = self._load(session_id)
        created = [m.created_at for m in data.memories if m.created_at]
        stats = {
            'events': len(data.memories),
            'characters': len(data.character_states),
            'relationships': len(data.relationships),
            'last_processed_message_id': data.last_processed_message_id,
            'extracted_batches': len(data.extracted_batches),
            'oldest_event': to_datetime(min(created)).isoformat() if created else None,
            'newest_event': to_datetime(max(created)).isoformat() if created else None,
        }
        session_logger(logger, session_id).debug(f'{stats["events"]} memories, {stats["characters"]} characters')
        return stats

    def update_per_chat_settings(self,
                                 session_id: str,
                                 card_type: Optional[str] = None,
                                 canonical_date_tracking: Optional[bool] = None,
                                 name_list: Optional[Sequence[str]] = None) -> PerChatSettings:
        """Update the conversation-scoped prompt settings; None leaves a field unchanged."""
        data = self._load(session_id)
        per_chat = data.per_chat_settings
        if card_type is not None:
            per_chat.card_type = card_type
        if canonical_date_tracking is not None:
            per_chat.canonical_date_tracking = canonical_date_tracking
        if name_list is not None:
            per_chat.name_list = [name.strip() for name in name_list if name and name.strip()]

        try:
            self.store.save(session_id, data)
        except SessionStoreError as e:
            raise MemoryManagementError(f'Failed to save per-chat settings: {e}')
        return per_chat

    def populate_name_list(self, session_id: str, exclude: Sequence[str] = ()) -> List[str]:
        """Fill the per-chat name list from known character states."""
        data = self._load(session_id)
        excluded = {name.lower() for name in exclude}
        names = [name for name in data.character_states if name.lower() not in excluded]
        return self.update_per_chat_settings(session_id, name_list=names).name_list
