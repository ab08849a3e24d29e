"""Batch processor — one bounded pass over a campaign's subjects.

For each subject pulled from the source: resolve the due step, dispatch it,
and on synchronous success advance the subject's cursor before moving on.
A failure for one subject never aborts the rest of the batch.
"""

import logging
from dataclasses import dataclass, field

from drip_engine.clock import SYSTEM_CLOCK, ClockSource
from drip_engine.config import DEFAULT_BATCH_SIZE, DeliveryConfig
from drip_engine.errors import ConfigurationError, DispatchFailure
from drip_engine.registry import CampaignDefinition, CampaignRegistry
from drip_engine.services.dispatch import (
    DispatchOutcome, Dispatcher, DispatchStatus,
)
from drip_engine.services.progression import (
    CursorStore, ProgressionStore, SubjectSource, advance_cursor,
)
from drip_engine.services.resolver import is_complete, resolve_due_step

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    processed: int = 0
    dispatched: int = 0
    enqueued: int = 0
    not_due: int = 0
    skipped: int = 0
    completed: int = 0
    failed: int = 0
    conflicts: int = 0
    failures: list[dict] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "processed": self.processed,
            "dispatched": self.dispatched,
            "enqueued": self.enqueued,
            "not_due": self.not_due,
            "skipped": self.skipped,
            "completed": self.completed,
            "failed": self.failed,
            "conflicts": self.conflicts,
        }

    def merge(self, other: "BatchResult") -> "BatchResult":
        merged = BatchResult(failures=self.failures + other.failures)
        for key, value in self.as_dict().items():
            setattr(merged, key, value + getattr(other, key))
        return merged


def _record_failure(result: BatchResult, progression, step, reason: str) -> None:
    result.failed += 1
    result.failures.append({
        "subject_id": progression.subject_id,
        "action_id": step.action_id if step is not None else None,
        "ordinal": step.ordinal if step is not None else None,
        "reason": reason,
    })


def run_batch(
    campaign: CampaignDefinition,
    subject_source: SubjectSource,
    dispatcher: Dispatcher,
    batch_size: int = DEFAULT_BATCH_SIZE,
    clock: ClockSource | None = None,
    cursor_store: CursorStore | None = None,
) -> BatchResult:
    """Process up to `batch_size` subjects of one campaign.

    `cursor_store` defaults to `subject_source`, which is the usual case of a
    single persistence layer providing both pages and cursor updates.
    """
    if batch_size < 1:
        raise ConfigurationError(f"batch_size must be positive, got {batch_size}")
    clock = clock or SYSTEM_CLOCK
    store = cursor_store if cursor_store is not None else subject_source

    result = BatchResult()
    subjects = subject_source.fetch_page(campaign.campaign_id, batch_size)

    for progression in subjects[:batch_size]:
        result.processed += 1
        step = None
        sent = False
        try:
            now = clock.now()
            step = resolve_due_step(campaign, progression, now)

            if step is None:
                if is_complete(campaign, progression):
                    store.mark_completed(progression)
                    result.completed += 1
                result.not_due += 1
                continue

            if not step.enabled_for(progression):
                logger.info("Skipping %s for %s: condition not met", step.describe(), progression.subject_id)
                if advance_cursor(store, progression, step, now):
                    result.skipped += 1
                else:
                    result.conflicts += 1
                continue

            try:
                outcome = dispatcher.dispatch(step, progression)
            except DispatchFailure as e:
                outcome = DispatchOutcome.failure(e.reason)
            except Exception as e:
                logger.exception("Dispatcher raised on %s for %s", step.describe(), progression.subject_id)
                outcome = DispatchOutcome.failure(f"{type(e).__name__}: {e}")

            if outcome.status is DispatchStatus.ENQUEUED:
                result.enqueued += 1
            elif outcome.ok:
                sent = True
                if advance_cursor(store, progression, step, clock.now()):
                    result.dispatched += 1
                else:
                    result.conflicts += 1
            else:
                _record_failure(result, progression, step, outcome.reason)
        except Exception as e:
            logger.exception(
                "Error processing %s in campaign %s", progression.subject_id, campaign.campaign_id,
            )
            reason = f"{type(e).__name__}: {e}"
            if sent:
                reason = f"cursor update failed after dispatch: {reason}"
            _record_failure(result, progression, step, reason)

    if result.processed:
        logger.info(
            "Batch %s: %d processed, %d dispatched, %d enqueued, %d not due, %d failed",
            campaign.campaign_id, result.processed, result.dispatched,
            result.enqueued, result.not_due, result.failed,
        )
    return result


class BatchProcessor:
    """Binds a DeliveryConfig, a store and a dispatcher for repeated runs."""

    def __init__(self, config: DeliveryConfig, store: ProgressionStore, dispatcher: Dispatcher):
        self.config = config
        self.store = store
        self.dispatcher = dispatcher

    def run(self, campaign: CampaignDefinition) -> BatchResult:
        return run_batch(
            campaign,
            self.store,
            self.dispatcher,
            batch_size=self.config.batch_size,
            clock=self.config.clock,
        )

    def run_all(self, registry: CampaignRegistry) -> BatchResult:
        """One batch per registered campaign."""
        total = BatchResult()
        for campaign in registry:
            total = total.merge(self.run(campaign))
        return total
