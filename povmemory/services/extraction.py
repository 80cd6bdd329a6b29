"""
Extraction orchestrator: one extraction cycle for a set of turns.

Prompt Builder -> LLM call -> Event Parser -> State Propagator -> persistence.
"""

import copy
import uuid
from typing import Dict, List, Optional, Sequence

from ..models.core import ExtractionResult, PipelineStatus, SessionData, Turn
from ..utils.json_utils import strip_reasoning
from ..utils.logging_config import get_logger
from .event_parser import parse_extraction_result
from .pipeline_context import PipelineContext
from .prompt_builder import EXTRACTION_SYSTEM_PROMPT, build_extraction_prompt, format_turns, get_recent_memories_for_context
from .state_propagation import StatePropagator

logger = get_logger(__name__)

DEFAULT_MESSAGES_PER_EXTRACTION = 5
LLM_REQUEST_OPTIONS = {'includePreset': True, 'includeInstruct': True, 'stream': False}


class ConfigurationError(Exception):
    """No usable LLM profile for extraction."""
    pass


class ExtractionCallError(Exception):
    """The LLM call raised or returned no content."""
    pass


class ExtractionError(Exception):
    """An extraction cycle failed; nothing was committed for its turns."""

    def __init__(self, message: str, message_ids: Sequence[int]):
        super().__init__(message)
        self.message_ids = list(message_ids)


def _restore(data: SessionData, snapshot: SessionData) -> None:
    data.__dict__.update(snapshot.__dict__)


def _response_text(response) -> str:
    if isinstance(response, dict):
        return response.get('content') or ''
    return response or ''


class ExtractionOrchestrator:
    """Runs extraction cycles against a PipelineContext."""

    def __init__(self, propagator: Optional[StatePropagator] = None):
        self.propagator = propagator or StatePropagator()

    @staticmethod
    def resolve_profile(ctx: PipelineContext) -> str:
        """Extraction profile, else the default profile.

        Raises:
            ConfigurationError: If neither is available
        """
        profile_id = ctx.settings.extraction_profile or ctx.default_profile
        if not profile_id:
            raise ConfigurationError('No connection profile available for extraction. '
                                     'Please configure an extraction profile or a default model.')
        if not ctx.settings.extraction_profile:
            logger.info(f'No extraction profile set, using default profile: {profile_id}')
        return profile_id

    @staticmethod
    def select_turns(ctx: PipelineContext, message_ids: Optional[Sequence[int]] = None) -> List[Turn]:
        """Explicit ids (system turns included), else the newest unprocessed non-system turns."""
        if message_ids:
            by_id: Dict[int, Turn] = {turn.id: turn for turn in ctx.turns}
            return [by_id[i] for i in message_ids if i in by_id]

        count = ctx.settings.messages_per_extraction or DEFAULT_MESSAGES_PER_EXTRACTION
        last_processed = ctx.data.last_processed_message_id
        unprocessed = [turn for turn in ctx.turns if not turn.is_system and turn.id > last_processed]
        return unprocessed[-count:]

    @staticmethod
    def known_character_names(ctx: PipelineContext) -> List[str]:
        names = [ctx.character_name, ctx.user_name, *ctx.data.per_chat_settings.name_list, *ctx.group_members]
        names.extend(ctx.data.character_states.keys())
        return [name for name in names if name]

    async def call_llm(self, ctx: PipelineContext, profile_id: str, prompt: str) -> str:
        """
        Send the extraction prompt.

        Raises:
            ExtractionCallError: If the call fails or returns empty content
        """
        if ctx.llm is None:
            raise ExtractionCallError('No LLM service configured')

        messages = [
            {'role': 'system', 'content': EXTRACTION_SYSTEM_PROMPT},
            {'role': 'user', 'content': prompt},
        ]
        logger.debug(f'Sending extraction request with profile: {profile_id}')
        try:
            response = await ctx.llm.send_request(profile_id, messages, ctx.settings.max_tokens_extraction_response,
                                                  dict(LLM_REQUEST_OPTIONS), {})
        except Exception as e:
            logger.error(f'LLM call error: {e}')
            raise ExtractionCallError(f'LLM call failed: {e}')

        content = _response_text(response)
        if not content or not content.strip():
            raise ExtractionCallError('Empty response from LLM')
        return strip_reasoning(content)

    async def extract(self, ctx: PipelineContext, message_ids: Optional[Sequence[int]] = None) -> Optional[ExtractionResult]:
        """
        Run one extraction cycle.

        Args:
            ctx: Pipeline context
            message_ids: Turn ids to extract; None selects the newest unprocessed turns

        Returns:
            ExtractionResult, or None when disabled or there is nothing to extract

        Raises:
            ConfigurationError: If no LLM profile is usable
            ExtractionError: If the cycle fails; no events or marker are committed
        """
        if not ctx.settings.enabled:
            ctx.emit('warning', 'Memory extraction is disabled')
            return None

        turns = self.select_turns(ctx, message_ids)
        if not turns:
            ctx.emit('info', 'No new messages to extract')
            return None

        try:
            profile_id = self.resolve_profile(ctx)
        except ConfigurationError as e:
            ctx.emit('error', str(e))
            raise

        attempted_ids = [turn.id for turn in turns]
        batch_id = f'batch_{ctx.clock()}_{uuid.uuid4().hex[:9]}'
        data = ctx.data
        snapshot = copy.deepcopy(data)

        logger.info(f'Extracting {len(turns)} messages (batch {batch_id})')
        ctx.set_status(PipelineStatus.EXTRACTING)

        try:
            messages_text = format_turns(turns, ctx.character_name, ctx.user_name)
            existing_memories = get_recent_memories_for_context(data.memories, ctx.settings.memory_context_count)
            prompt = build_extraction_prompt(messages_text,
                                             ctx.character_name,
                                             ctx.user_name,
                                             existing_memories=existing_memories,
                                             character_description=ctx.character_description,
                                             persona_description=ctx.persona_description,
                                             per_chat=data.per_chat_settings)

            response = await self.call_llm(ctx, profile_id, prompt)

            parsed = parse_extraction_result(response,
                                             turns,
                                             batch_id,
                                             character_names=self.known_character_names(ctx),
                                             start_sequence=data.next_sequence(),
                                             clock=ctx.clock)

            if parsed.failed:
                # Turns stay unprocessed so a later cycle retries them
                logger.warning(f'Extraction batch {batch_id} produced unparseable output: {parsed.error}')
                ctx.emit('warning', 'Could not parse the extraction response; messages will be retried')
                ctx.set_status(PipelineStatus.READY)
                return ExtractionResult(events_created=0,
                                        messages_processed=len(turns),
                                        batch_id=batch_id,
                                        parse_failed=True)

            events = parsed.events
            if events:
                data.memories.extend(events)
                self.propagator.apply(events, data)
                data.last_extraction_batch = batch_id

            data.last_processed_message_id = max(data.last_processed_message_id, max(attempted_ids))
            await ctx.persist()

            if events:
                logger.info(f'Extracted {len(events)} events from batch {batch_id}')
                ctx.emit('success', f'Extracted {len(events)} memory events')
            else:
                logger.info(f'No significant events in batch {batch_id}')
                ctx.emit('info', 'No significant events found in messages')

            ctx.set_status(PipelineStatus.READY)
            return ExtractionResult(events_created=len(events), messages_processed=len(turns), batch_id=batch_id)

        except Exception as e:
            _restore(data, snapshot)
            logger.exception(f'Extraction failed for messages {attempted_ids}: {e}')
            ctx.emit('error', f'Extraction failed: {e}')
            ctx.set_status(PipelineStatus.ERROR)
            raise ExtractionError(f'Extraction failed: {e}', attempted_ids) from e
