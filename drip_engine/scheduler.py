"""APScheduler — runs a batch for every campaign on a fixed interval."""

import asyncio
import logging

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from drip_engine.config import DRIP_INTERVAL_MINUTES, DeliveryConfig
from drip_engine.registry import CampaignRegistry
from drip_engine.services.batch import BatchProcessor, BatchResult
from drip_engine.services.dispatch import (
    DeliveryWorker, HandlerDispatcher, SchedulerDispatchQueue, build_dispatcher,
)
from drip_engine.services.progression import ProgressionStore

logger = logging.getLogger(__name__)

# Prevents overlapping ticks in this process from running the same batch twice
_processing_lock = asyncio.Lock()


def _ensure_executor(scheduler: AsyncIOScheduler, alias: str) -> None:
    if alias == "default":
        return
    try:
        scheduler.add_executor(ThreadPoolExecutor(), alias=alias)
    except ValueError:
        pass  # already configured by the host


def create_processor(config: DeliveryConfig, store: ProgressionStore,
                     scheduler: AsyncIOScheduler | None = None) -> BatchProcessor:
    """Wire a BatchProcessor for the configured delivery mode.

    Async delivery queues jobs on `scheduler`, on the executor named by
    `config.dispatch_queue`.
    """
    inline = HandlerDispatcher()
    queue = None
    if config.async_delivery and scheduler is not None:
        _ensure_executor(scheduler, config.dispatch_queue)
        worker = DeliveryWorker(inline, store, config.clock)
        queue = SchedulerDispatchQueue(scheduler, worker, executor=config.dispatch_queue)
    dispatcher = build_dispatcher(config.async_delivery, queue=queue, inline=inline)
    return BatchProcessor(config, store, dispatcher)


async def process_due_batches(processor: BatchProcessor, registry: CampaignRegistry) -> dict:
    """Run one batch per campaign. Skips if a previous run is still going.

    Returns the merged batch counts plus a "skipped" flag.
    """
    if _processing_lock.locked():
        logger.info("process_due_batches already running, skipping")
        return {**BatchResult().as_dict(), "skipped": True}

    async with _processing_lock:
        result = await asyncio.to_thread(processor.run_all, registry)
        return {**result.as_dict(), "skipped": False}


def create_scheduler(processor: BatchProcessor, registry: CampaignRegistry,
                     interval_minutes: int = DRIP_INTERVAL_MINUTES) -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler()
    attach_batch_job(scheduler, processor, registry, interval_minutes)
    return scheduler


def attach_batch_job(scheduler: AsyncIOScheduler, processor: BatchProcessor,
                     registry: CampaignRegistry, interval_minutes: int = DRIP_INTERVAL_MINUTES) -> None:
    async def process_drips():
        try:
            result = await process_due_batches(processor, registry)
            if result["processed"] > 0:
                logger.info(
                    "Drip processing: %d processed, %d dispatched, %d failed",
                    result["processed"],
                    result["dispatched"],
                    result["failed"],
                )
        except Exception as e:
            logger.error("Drip processing failed: %s", e)

    scheduler.add_job(process_drips, "interval", minutes=interval_minutes, id="process_drips")
