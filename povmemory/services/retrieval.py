"""
Retrieval flow: POV Filter -> Relevance Selector -> Context Formatter -> injection.
"""

from typing import Optional, Sequence

from ..models.core import DEFAULT_EMOTION, PipelineStatus, RetrievalResult, Turn
from ..utils.logging_config import get_logger
from .context_formatter import format_context_for_injection, get_relationship_context
from .pipeline_context import PipelineContext
from .pov_filter import PovFallbackPolicy, filter_memories_by_pov, get_active_characters, get_pov_characters
from .relevance import select_relevant_memories

logger = get_logger(__name__)

DEFAULT_RECENT_CONTEXT_TURNS = 5


class RetrievalError(Exception):
    """Custom exception for retrieval errors."""
    pass


def build_recent_context(turns: Sequence[Turn], count: int = DEFAULT_RECENT_CONTEXT_TURNS) -> str:
    """Text of the last `count` non-system turns, newline-joined."""
    recent = [turn.mes for turn in turns if not turn.is_system]
    return '\n'.join(recent[-count:]) if count > 0 else ''


class RetrievalService:
    """Selects memories for the current viewpoint and hands the rendered block to the host."""

    def select(self, ctx: PipelineContext) -> Optional[RetrievalResult]:
        """Run the retrieval stages without injecting; None when there is nothing to inject."""
        data = ctx.data
        if not data.memories:
            logger.debug('No memories stored yet')
            return None

        pov_characters, _ = get_pov_characters(ctx.turns, data, ctx.character_name, ctx.user_name, ctx.is_group_chat)
        active_characters = get_active_characters(ctx.character_name, ctx.user_name, ctx.group_members)

        def on_fallback(viewers, total):
            ctx.emit('warning', f'No memories visible to {", ".join(viewers)}; using all {total} memories')

        pov = filter_memories_by_pov(data.memories,
                                     pov_characters,
                                     data,
                                     policy=PovFallbackPolicy(ctx.settings.pov_fallback_policy),
                                     on_fallback=on_fallback)
        if not pov.memories:
            logger.debug('No memories available for this point of view')
            return None

        recent_context = build_recent_context(ctx.turns, ctx.settings.recent_context_turns)
        relevant = select_relevant_memories(pov.memories,
                                            recent_context,
                                            active_characters,
                                            ctx.settings.max_memories_per_retrieval,
                                            now=ctx.clock())
        if not relevant:
            logger.debug('No relevant memories found')
            return None

        relationships = get_relationship_context(data, ctx.character_name, active_characters)
        state = data.find_character_state(ctx.character_name)
        emotional_state = state.current_emotion if state else DEFAULT_EMOTION

        context = format_context_for_injection(relevant, relationships, emotional_state, ctx.character_name,
                                               ctx.settings.token_budget)
        return RetrievalResult(memories=relevant,
                               context=context,
                               pov_characters=pov_characters,
                               fallback_used=pov.fallback_used)

    async def retrieve_and_inject(self, ctx: PipelineContext) -> Optional[RetrievalResult]:
        """
        Retrieve relevant memories and inject the rendered block.

        Returns:
            RetrievalResult, or None when disabled or nothing is relevant

        Raises:
            RetrievalError: If a retrieval stage fails
        """
        if not ctx.settings.enabled:
            logger.debug('Memory disabled, skipping retrieval')
            return None
        if not ctx.turns:
            logger.debug('No conversation to retrieve context for')
            return None

        ctx.set_status(PipelineStatus.RETRIEVING)
        try:
            result = self.select(ctx)
        except Exception as e:
            logger.exception(f'Retrieval failed: {e}')
            ctx.set_status(PipelineStatus.ERROR)
            raise RetrievalError(f'Retrieval failed: {e}') from e

        if result and result.context:
            ctx.set_injection(result.context)
            logger.info(f'Injected {len(result.memories)} memories into context')
            ctx.emit('success', f'Retrieved {len(result.memories)} relevant memories')

        ctx.set_status(PipelineStatus.READY)
        return result

    async def update_persistent_injection(self, ctx: PipelineContext) -> Optional[RetrievalResult]:
        """Rebuild the standing injection for automatic mode, clearing it when there is nothing to show."""
        if not ctx.settings.enabled or not ctx.settings.automatic_mode or not ctx.turns:
            ctx.set_injection('')
            return None

        try:
            result = self.select(ctx)
        except Exception as e:
            logger.exception(f'Persistent injection update failed: {e}')
            ctx.set_status(PipelineStatus.ERROR)
            raise RetrievalError(f'Persistent injection update failed: {e}') from e

        if not result or not result.context:
            ctx.set_injection('')
            return None

        ctx.set_injection(result.context)
        logger.debug(f'Persistent injection updated: {len(result.memories)} memories')
        return result
