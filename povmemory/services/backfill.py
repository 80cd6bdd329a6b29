"""
Backfill scheduler: extracts a large unprocessed backlog in fixed-size batches.

Batches are independent units of work. A failed batch is logged and skipped, never
retried, and never aborts the run. The newest batch-size turns are left for
incremental extraction, and a short remainder is deferred to a later run.
"""

import asyncio
import math
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from ..models.core import BackfillResult, PipelineStatus
from ..utils.logging_config import get_logger
from .extraction import DEFAULT_MESSAGES_PER_EXTRACTION, ConfigurationError, ExtractionOrchestrator
from .pipeline_context import PipelineContext

logger = get_logger(__name__)

DEFAULT_BACKFILL_RPM = 30


@dataclass
class BackfillPlan:
    batch_size: int
    batches: List[List[int]] = field(default_factory=list)
    already_extracted: int = 0
    deferred: int = 0

    @property
    def message_count(self) -> int:
        return sum(len(batch) for batch in self.batches)


def rate_limit_delay_ms(rpm: int) -> int:
    """Minimum wait between requests for a requests-per-minute ceiling."""
    if not rpm or rpm <= 0:
        rpm = DEFAULT_BACKFILL_RPM
    return math.ceil(60000 / rpm)


def plan_backfill(ctx: PipelineContext) -> BackfillPlan:
    """Partition never-extracted turns into complete batches, oldest first."""
    batch_size = ctx.settings.messages_per_extraction or DEFAULT_MESSAGES_PER_EXTRACTION
    already_extracted = ctx.data.extracted_message_ids()

    # Hidden and system turns are included; backfill also serves imported chats
    pending = [turn.id for turn in ctx.turns if turn.id not in already_extracted]
    eligible = pending[:-batch_size] if len(pending) > batch_size else []

    complete_batches = len(eligible) // batch_size
    deferred = len(eligible) - complete_batches * batch_size
    if deferred:
        logger.info(f'Truncating to {complete_batches} complete batches ({complete_batches * batch_size} messages), '
                    f'leaving {deferred} for the next run')

    return BackfillPlan(batch_size=batch_size,
                        batches=[eligible[i * batch_size:(i + 1) * batch_size] for i in range(complete_batches)],
                        already_extracted=len(already_extracted),
                        deferred=deferred)


class BackfillScheduler:
    """Drives the extraction orchestrator across a backlog under a rate limit."""

    def __init__(self,
                 orchestrator: Optional[ExtractionOrchestrator] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.orchestrator = orchestrator or ExtractionOrchestrator()
        self.sleep = sleep

    async def run(self, ctx: PipelineContext) -> Optional[BackfillResult]:
        """
        Backfill the conversation.

        Args:
            ctx: Pipeline context

        Returns:
            BackfillResult, or None when extraction is disabled

        Raises:
            ConfigurationError: If no LLM profile is usable (before any batch runs)
        """
        if not ctx.settings.enabled:
            ctx.emit('warning', 'Memory extraction is disabled')
            return None

        plan = plan_backfill(ctx)
        if plan.already_extracted:
            logger.info(f'Backfill: skipping {plan.already_extracted} already-extracted messages')

        if not plan.batches:
            if plan.already_extracted:
                ctx.emit('info', f'All eligible messages already extracted ({plan.already_extracted} messages have memories)')
            else:
                ctx.emit('warning', f'No complete batches to extract (need {plan.batch_size} messages)')
            return BackfillResult(deferred_messages=plan.deferred)

        # Fail fast: a missing profile would fail every batch the same way
        try:
            self.orchestrator.resolve_profile(ctx)
        except ConfigurationError as e:
            ctx.emit('error', str(e))
            raise

        result = BackfillResult(batches_total=len(plan.batches), deferred_messages=plan.deferred)
        delay_ms = rate_limit_delay_ms(ctx.settings.backfill_max_rpm)
        logger.info(f'Backfill: {len(plan.batches)} batches of {plan.batch_size} ({plan.message_count} messages)')
        ctx.set_status(PipelineStatus.EXTRACTING)

        for index, batch in enumerate(plan.batches):
            batch_num = index + 1
            progress = round(index / len(plan.batches) * 100)
            logger.info(f'Backfill: {index}/{len(plan.batches)} batches ({progress}%) - processing batch {batch_num}')

            try:
                extraction = await self.orchestrator.extract(ctx, batch)
                result.events_created += extraction.events_created if extraction else 0
                result.messages_processed += len(batch)
                ctx.data.mark_batch_extracted(index)
                result.completed_batches.append(index)
            except Exception as e:
                logger.error(f'Backfill batch {batch_num}/{len(plan.batches)} failed, continuing: {e}')
                result.failed_batches.append(index)

            if batch_num < len(plan.batches):
                logger.debug(f'Rate limiting: waiting {delay_ms}ms ({ctx.settings.backfill_max_rpm} RPM)')
                await self.sleep(delay_ms / 1000)

        ctx.set_injection('')
        await ctx.persist()

        if result.failed_batches:
            ctx.emit('warning', f'{len(result.failed_batches)} of {result.batches_total} backfill batches failed')
        ctx.emit('success', f'Extracted {result.events_created} events from {result.messages_processed} messages')
        ctx.set_status(PipelineStatus.READY)
        logger.info(f'Backfill complete: {len(result.completed_batches)}/{result.batches_total} batches, '
                    f'{result.events_created} events')
        return result
