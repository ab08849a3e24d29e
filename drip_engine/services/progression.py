"""Subject progression records and the cursor-advance operation."""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Protocol

from drip_engine.steps import StepDefinition

logger = logging.getLogger(__name__)

ACTIVE = "active"
COMPLETED = "completed"


@dataclass(frozen=True)
class SubjectProgression:
    """Where one subject is in one campaign. Owned by the persistence layer."""

    subject_id: str
    campaign_id: str
    enrolled_at: datetime
    last_completed_ordinal: int | None = None
    last_dispatched_at: datetime | None = None
    status: str = ACTIVE
    attributes: dict = field(default_factory=dict, compare=False)

    def advanced(self, ordinal: int, dispatched_at: datetime) -> "SubjectProgression":
        return replace(self, last_completed_ordinal=ordinal, last_dispatched_at=dispatched_at)


class SubjectSource(Protocol):
    def fetch_page(self, campaign_id: str, limit: int) -> list[SubjectProgression]: ...


class CursorStore(Protocol):
    def compare_and_set_cursor(
        self, progression: SubjectProgression, new_ordinal: int, dispatched_at: datetime,
    ) -> bool:
        """Atomically move the cursor iff it still equals progression's values."""

    def mark_completed(self, progression: SubjectProgression) -> None: ...


class ProgressionStore(SubjectSource, CursorStore, Protocol):
    pass


def advance_cursor(
    store: CursorStore,
    progression: SubjectProgression,
    step: StepDefinition,
    dispatched_at: datetime,
) -> bool:
    """Record a successful dispatch of `step` for a subject.

    Returns False when another worker moved the cursor first. Raises
    ValueError if the move would take the cursor backwards or skip a step.
    """
    current = progression.last_completed_ordinal
    if current is not None and step.ordinal < current:
        raise ValueError(
            f"Cursor for {progression.subject_id} cannot move back from {current} to {step.ordinal}"
        )
    if step.ordinal > (current or 0) + 1:
        raise ValueError(
            f"Cursor for {progression.subject_id} cannot skip from {current} to {step.ordinal}"
        )

    ok = store.compare_and_set_cursor(progression, step.ordinal, dispatched_at)
    if ok:
        logger.debug("Advanced %s to %s", progression.subject_id, step.describe())
    else:
        logger.warning(
            "Cursor conflict for %s on %s: progression changed concurrently",
            progression.subject_id, step.describe(),
        )
    return ok
