"""Eligibility resolver — which step, if any, is due for a subject right now.

Pure functions of (campaign, progression, now). Only the immediate next
ordinal is ever offered, so a subject that fell behind catches up one step
per batch run and never skips ahead.
"""

from datetime import datetime

from drip_engine.registry import CampaignDefinition
from drip_engine.services.progression import SubjectProgression
from drip_engine.steps import RecurringInterval, StepDefinition


def candidate_step(
    campaign: CampaignDefinition, progression: SubjectProgression,
) -> StepDefinition | None:
    """The next step in sequence for a subject, ignoring timing."""
    last = progression.last_completed_ordinal
    if last is None:
        first = campaign.first_ordinal
        return campaign.at_ordinal(first) if first is not None else None

    current = campaign.at_ordinal(last)
    if current is not None and current.recurring:
        # recurring steps are always last, they repeat in place
        return current
    return campaign.at_ordinal(last + 1)


def due_at(step: StepDefinition, progression: SubjectProgression) -> datetime:
    rule = step.timing_rule
    if isinstance(rule, RecurringInterval):
        repeated = (
            progression.last_completed_ordinal == step.ordinal
            and progression.last_dispatched_at is not None
        )
        if repeated:
            return progression.last_dispatched_at + rule.every
        return progression.enrolled_at + rule.first_offset
    return progression.enrolled_at + rule.delay


def resolve_due_step(
    campaign: CampaignDefinition,
    progression: SubjectProgression,
    now: datetime,
) -> StepDefinition | None:
    """Return the step due for `progression` at `now`, or None."""
    if progression.campaign_id != campaign.campaign_id:
        raise ValueError(
            f"Progression for {progression.campaign_id!r} resolved against {campaign.campaign_id!r}"
        )
    if now < progression.enrolled_at:
        return None

    step = candidate_step(campaign, progression)
    if step is None:
        return None
    if now >= due_at(step, progression):
        return step
    return None


def is_complete(campaign: CampaignDefinition, progression: SubjectProgression) -> bool:
    """True once every step has been completed. Recurring campaigns never finish."""
    return candidate_step(campaign, progression) is None
