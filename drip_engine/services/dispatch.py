"""Dispatchers — hand a due step to whatever performs it.

Synchronous delivery calls the step's handler inline. Asynchronous delivery
wraps the (step, subject) pair in a DispatchJob and enqueues it on an
APScheduler executor; the DeliveryWorker later runs it and advances the
subject's cursor on success.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from apscheduler.jobstores.base import ConflictingIdError

from drip_engine.clock import SYSTEM_CLOCK, ClockSource
from drip_engine.errors import ConfigurationError, DispatchFailure
from drip_engine.services.progression import CursorStore, SubjectProgression, advance_cursor
from drip_engine.steps import ParameterMode, StepDefinition

logger = logging.getLogger(__name__)


class DispatchStatus(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    ENQUEUED = "enqueued"


@dataclass(frozen=True)
class DispatchOutcome:
    status: DispatchStatus
    reason: str = ""

    @classmethod
    def success(cls) -> "DispatchOutcome":
        return cls(DispatchStatus.SUCCESS)

    @classmethod
    def failure(cls, reason: str) -> "DispatchOutcome":
        return cls(DispatchStatus.FAILURE, reason)

    @classmethod
    def enqueued(cls, reason: str = "") -> "DispatchOutcome":
        return cls(DispatchStatus.ENQUEUED, reason)

    @property
    def ok(self) -> bool:
        return self.status is DispatchStatus.SUCCESS


@dataclass(frozen=True)
class DispatchParams:
    """Structured argument for handlers registered with using="parameters"."""

    step: StepDefinition
    subject: SubjectProgression

    @property
    def action_id(self) -> str:
        return self.step.action_id

    @property
    def attributes(self) -> dict:
        return self.subject.attributes


class Dispatcher(Protocol):
    def dispatch(self, step: StepDefinition, subject: SubjectProgression) -> DispatchOutcome: ...


class HandlerDispatcher:
    """Calls the step's handler inline and reports how it went."""

    def dispatch(self, step: StepDefinition, subject: SubjectProgression) -> DispatchOutcome:
        try:
            if step.parameter_mode is ParameterMode.PARAMETERS:
                result = step.handler_ref(DispatchParams(step, subject))
            else:
                result = step.handler_ref(subject)
        except DispatchFailure as e:
            logger.warning("Dispatch of %s to %s failed: %s", step.describe(), subject.subject_id, e.reason)
            return DispatchOutcome.failure(e.reason)
        except Exception as e:
            logger.exception("Handler error on %s for %s", step.describe(), subject.subject_id)
            return DispatchOutcome.failure(f"{type(e).__name__}: {e}")

        if isinstance(result, DispatchOutcome):
            return result
        return DispatchOutcome.success()


@dataclass(frozen=True)
class DispatchJob:
    """One unit of deferred work: perform `step` for `subject`."""

    step: StepDefinition
    subject: SubjectProgression

    @property
    def job_id(self) -> str:
        # one pending job per subject and occurrence
        occurrence = ""
        if self.step.recurring and self.subject.last_dispatched_at is not None:
            occurrence = "@" + self.subject.last_dispatched_at.isoformat()
        return f"drip:{self.step.campaign_id}:{self.subject.subject_id}:{self.step.ordinal}{occurrence}"


class DispatchQueue(Protocol):
    def enqueue(self, job: DispatchJob) -> bool:
        """Queue a job. Returns False if an identical job is already pending."""


class QueueingDispatcher:
    """Async delivery: enqueue and return without waiting."""

    def __init__(self, queue: DispatchQueue):
        self.queue = queue

    def dispatch(self, step: StepDefinition, subject: SubjectProgression) -> DispatchOutcome:
        job = DispatchJob(step, subject)
        try:
            fresh = self.queue.enqueue(job)
        except Exception as e:
            logger.exception("Could not enqueue %s", job.job_id)
            return DispatchOutcome.failure(f"enqueue failed: {e}")
        return DispatchOutcome.enqueued("" if fresh else "already queued")


class DeliveryWorker:
    """Runs queued jobs and advances the cursor when the dispatch succeeds.

    If the cursor store can look a subject up (`get(subject_id, campaign_id)`),
    the job is dropped when the stored cursor no longer matches the snapshot
    it was queued with.
    """

    def __init__(self, dispatcher: Dispatcher, cursor_store: CursorStore,
                 clock: ClockSource = SYSTEM_CLOCK):
        self.dispatcher = dispatcher
        self.cursor_store = cursor_store
        self.clock = clock

    def _is_stale(self, job: DispatchJob) -> bool:
        lookup = getattr(self.cursor_store, "get", None)
        if lookup is None:
            return False
        current = lookup(job.subject.subject_id, job.subject.campaign_id)
        if current is None:
            return True
        return (current.last_completed_ordinal, current.last_dispatched_at) != (
            job.subject.last_completed_ordinal, job.subject.last_dispatched_at,
        )

    def _advance(self, job: DispatchJob) -> bool:
        if advance_cursor(self.cursor_store, job.subject, job.step, self.clock.now()):
            return True
        logger.warning("Queued job %s lost the cursor race", job.job_id)
        return False

    def perform(self, job: DispatchJob) -> DispatchOutcome:
        if self._is_stale(job):
            logger.info("Dropping stale job %s: cursor has moved", job.job_id)
            return DispatchOutcome.failure("stale job: cursor has moved")

        if not job.step.enabled_for(job.subject):
            logger.info("Skipping %s for %s: condition not met", job.step.describe(), job.subject.subject_id)
            if not self._advance(job):
                return DispatchOutcome.failure("cursor conflict")
            return DispatchOutcome.success()

        outcome = self.dispatcher.dispatch(job.step, job.subject)
        if not outcome.ok:
            logger.warning("Queued job %s failed: %s", job.job_id, outcome.reason)
            return outcome
        if not self._advance(job):
            return DispatchOutcome.failure("cursor conflict")
        return outcome


class SchedulerDispatchQueue:
    """Dispatch queue backed by an APScheduler executor.

    `executor` is the alias of the executor the jobs run on, which is how
    a deployment picks its dispatch queue.
    """

    def __init__(self, scheduler, worker: DeliveryWorker, executor: str = "default"):
        self.scheduler = scheduler
        self.worker = worker
        self.executor = executor

    def enqueue(self, job: DispatchJob) -> bool:
        try:
            self.scheduler.add_job(
                self.worker.perform,
                args=[job],
                id=job.job_id,
                name=job.step.describe(),
                executor=self.executor,
                misfire_grace_time=None,
            )
        except ConflictingIdError:
            logger.debug("Job %s already queued", job.job_id)
            return False
        return True


def build_dispatcher(async_delivery: bool, queue: DispatchQueue | None = None,
                     inline: Any = None) -> Dispatcher:
    """Pick the dispatcher for a delivery mode."""
    if async_delivery:
        if queue is None:
            raise ConfigurationError("Async delivery needs a dispatch queue")
        return QueueingDispatcher(queue)
    return inline or HandlerDispatcher()
