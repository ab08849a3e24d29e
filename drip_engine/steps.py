"""Step definitions — one timed action inside a campaign."""

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Callable, Optional


class ParameterMode(Enum):
    """How a handler expects to be called."""

    POSITIONAL = "positional"   # handler(subject)
    PARAMETERS = "parameters"   # handler(DispatchParams(step, subject))


@dataclass(frozen=True)
class FixedDelay:
    """Due a fixed duration after enrollment."""

    delay: timedelta

    @property
    def recurring(self) -> bool:
        return False


@dataclass(frozen=True)
class RecurringInterval:
    """Due every `every`, anchored to the last successful dispatch.

    The first occurrence is `enrolled_at + start` when `start` is given,
    otherwise `enrolled_at + every`.
    """

    every: timedelta
    start: Optional[timedelta] = None

    @property
    def recurring(self) -> bool:
        return True

    @property
    def first_offset(self) -> timedelta:
        return self.start if self.start is not None else self.every


TimingRule = FixedDelay | RecurringInterval


@dataclass(frozen=True)
class StepDefinition:
    campaign_id: str
    action_id: str
    ordinal: int
    timing_rule: TimingRule
    handler_ref: Any
    parameter_mode: ParameterMode = ParameterMode.POSITIONAL
    condition: Optional[Callable[["StepDefinition", Any], bool]] = field(
        default=None, compare=False,
    )

    @property
    def recurring(self) -> bool:
        return self.timing_rule.recurring

    def enabled_for(self, subject) -> bool:
        """Evaluate the step's condition for a subject. No condition means enabled."""
        if self.condition is None:
            return True
        return bool(self.condition(self, subject))

    def describe(self) -> str:
        rule = self.timing_rule
        if isinstance(rule, RecurringInterval):
            timing = f"every {rule.every}"
        else:
            timing = f"after {rule.delay}"
        return f"{self.campaign_id}#{self.ordinal} {self.action_id} ({timing})"
