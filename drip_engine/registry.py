"""Campaign registry — validated, ordered step definitions per campaign.

Campaigns are built once at startup and frozen before any batch runs.
After ``freeze()`` the structures are read-only and safe to share between
workers without locking.
"""

import logging
from datetime import timedelta
from typing import Any, Callable, Iterator

from drip_engine.errors import ConfigurationError, NotFoundError
from drip_engine.steps import (
    FixedDelay, ParameterMode, RecurringInterval, StepDefinition,
)

logger = logging.getLogger(__name__)

VALID_OPTIONS = frozenset({"handler", "step", "delay", "every", "start", "using", "condition"})


class HandlerRegistry:
    """Explicit name -> handler mapping, resolved once at registration."""

    def __init__(self, handlers: dict[str, Callable] | None = None):
        self._handlers: dict[str, Callable] = {}
        for name, handler in (handlers or {}).items():
            self.register(name, handler)

    def register(self, name: str, handler: Callable) -> None:
        if not callable(handler):
            raise ConfigurationError(f"Handler {name!r} is not callable")
        if name in self._handlers:
            raise ConfigurationError(f"Handler {name!r} is already registered")
        self._handlers[name] = handler

    def resolve(self, ref: Any) -> Callable:
        """Return a callable for a handler name or a callable passed directly."""
        if callable(ref):
            return ref
        if isinstance(ref, str):
            handler = self._handlers.get(ref)
            if handler is None:
                raise ConfigurationError(f"Unknown handler {ref!r}")
            return handler
        raise ConfigurationError(f"Handler must be a name or a callable, got {ref!r}")

    def __contains__(self, name: str) -> bool:
        return name in self._handlers


def _parse_mode(value) -> ParameterMode:
    if isinstance(value, ParameterMode):
        return value
    try:
        return ParameterMode(value)
    except ValueError:
        raise ConfigurationError(f"Unknown parameter mode {value!r}") from None


def _check_duration(name: str, value, label: str) -> timedelta:
    if not isinstance(value, timedelta):
        raise ConfigurationError(f":{name} for {label} must be a timedelta, got {value!r}")
    if value < timedelta(0):
        raise ConfigurationError(f":{name} for {label} must not be negative")
    return value


class CampaignDefinition:
    """Ordered collection of StepDefinitions for one campaign."""

    def __init__(
        self,
        campaign_id: str,
        handlers: HandlerRegistry | None = None,
        default_handler: Any = None,
        using: ParameterMode | str | None = None,
    ):
        self.campaign_id = campaign_id
        self._handlers = handlers or HandlerRegistry()
        self.default_handler = (
            self._handlers.resolve(default_handler) if default_handler is not None else None
        )
        self.default_parameter_mode = _parse_mode(using) if using else ParameterMode.POSITIONAL
        self._steps: dict[str, StepDefinition] = {}
        self._by_ordinal: dict[int, StepDefinition] = {}
        self._ordered: tuple[StepDefinition, ...] = ()
        self._frozen = False

    def __repr__(self) -> str:
        return f"<CampaignDefinition {self.campaign_id} steps={len(self)}>"

    # -- registration ------------------------------------------------------

    def register(self, action_id: str, options: dict | None = None) -> StepDefinition:
        """Validate options and append a step. Returns the new StepDefinition."""
        if self._frozen:
            raise ConfigurationError(
                f"Cannot register {action_id!r}: campaign {self.campaign_id!r} is frozen"
            )
        label = f"{action_id!r} on {self.campaign_id!r}"
        options = dict(options or {})

        unknown = set(options) - VALID_OPTIONS
        if unknown:
            raise ConfigurationError(f"Unknown options {sorted(unknown)} for {label}")
        if action_id in self._steps:
            raise ConfigurationError(f"{label} is already registered")

        handler_ref = options.get("handler")
        if handler_ref is None:
            handler_ref = self.default_handler
        if handler_ref is None:
            raise ConfigurationError(f"You must define :handler in the options for {label}")
        handler_ref = self._handlers.resolve(handler_ref)

        timing_rule = self._timing_rule(options, label)

        ordinal = options.get("step")
        if ordinal is None:
            ordinal = max(self._by_ordinal, default=0) + 1
        elif isinstance(ordinal, bool) or not isinstance(ordinal, int) or ordinal < 1:
            raise ConfigurationError(f":step for {label} must be a positive integer")
        elif ordinal in self._by_ordinal:
            taken = self._by_ordinal[ordinal].action_id
            raise ConfigurationError(f":step {ordinal} for {label} is already used by {taken!r}")

        using = options.get("using")
        mode = _parse_mode(using) if using is not None else self.default_parameter_mode

        condition = options.get("condition")
        if condition is not None and not callable(condition):
            raise ConfigurationError(f":condition for {label} must be callable")

        step = StepDefinition(
            campaign_id=self.campaign_id,
            action_id=action_id,
            ordinal=ordinal,
            timing_rule=timing_rule,
            handler_ref=handler_ref,
            parameter_mode=mode,
            condition=condition,
        )
        self._steps[action_id] = step
        self._by_ordinal[ordinal] = step
        self._ordered = tuple(sorted(self._steps.values(), key=lambda s: s.ordinal))
        return step

    def _timing_rule(self, options: dict, label: str):
        delay = options.get("delay")
        every = options.get("every")
        start = options.get("start")

        if delay is None and every is None:
            raise ConfigurationError(f"You must define :delay or :every in the options for {label}")
        if delay is not None and every is not None:
            raise ConfigurationError(f"Use either :delay or :every for {label}, not both")

        if delay is not None:
            if start is not None:
                raise ConfigurationError(f":start only applies to :every steps ({label})")
            return FixedDelay(_check_duration("delay", delay, label))

        every = _check_duration("every", every, label)
        if every == timedelta(0):
            raise ConfigurationError(f":every for {label} must be greater than zero")
        if start is not None:
            start = _check_duration("start", start, label)
        return RecurringInterval(every, start)

    def freeze(self) -> "CampaignDefinition":
        """End the registration phase. Ordinals must run 1..n with no gaps."""
        if self._frozen:
            return self
        ordinals = [s.ordinal for s in self._ordered]
        if ordinals != list(range(1, len(ordinals) + 1)):
            raise ConfigurationError(
                f"Steps of {self.campaign_id!r} must be numbered 1..{len(ordinals)}, got {ordinals}"
            )
        for step in self._ordered[:-1]:
            if step.recurring:
                raise ConfigurationError(
                    f"Recurring step {step.action_id!r} must be the last step of {self.campaign_id!r}"
                )
        self._frozen = True
        logger.debug("Campaign %s frozen with %d steps", self.campaign_id, len(ordinals))
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    # -- lookups -----------------------------------------------------------

    def for_action(self, action_id: str) -> StepDefinition:
        step = self._steps.get(action_id)
        if step is None:
            raise NotFoundError(f"No step {action_id!r} in campaign {self.campaign_id!r}")
        return step

    def get(self, action_id: str) -> StepDefinition | None:
        return self._steps.get(action_id)

    def __getitem__(self, action_id: str) -> StepDefinition:
        return self.for_action(action_id)

    def __contains__(self, action_id: str) -> bool:
        return action_id in self._steps

    def at_ordinal(self, ordinal: int) -> StepDefinition | None:
        return self._by_ordinal.get(ordinal)

    @property
    def first_ordinal(self) -> int | None:
        return self._ordered[0].ordinal if self._ordered else None

    @property
    def last_ordinal(self) -> int | None:
        return self._ordered[-1].ordinal if self._ordered else None

    def values(self) -> tuple[StepDefinition, ...]:
        return self._ordered

    def items(self) -> Iterator[tuple[str, StepDefinition]]:
        return ((s.action_id, s) for s in self._ordered)

    def __iter__(self) -> Iterator[StepDefinition]:
        return iter(self._ordered)

    def __len__(self) -> int:
        return len(self._steps)


class CampaignRegistry:
    """All campaigns known to the process, keyed by campaign id."""

    def __init__(self, handlers: HandlerRegistry | None = None):
        self.handlers = handlers if handlers is not None else HandlerRegistry()
        self._campaigns: dict[str, CampaignDefinition] = {}
        self._frozen = False

    def campaign(self, campaign_id: str, default_handler: Any = None,
                 using: ParameterMode | str | None = None) -> CampaignDefinition:
        """Create and register an empty campaign."""
        if self._frozen:
            raise ConfigurationError(f"Cannot add campaign {campaign_id!r}: registry is frozen")
        if campaign_id in self._campaigns:
            raise ConfigurationError(f"Campaign {campaign_id!r} is already registered")
        definition = CampaignDefinition(
            campaign_id, self.handlers, default_handler=default_handler, using=using,
        )
        self._campaigns[campaign_id] = definition
        return definition

    def register(self, campaign_id: str, action_id: str, options: dict | None = None) -> StepDefinition:
        return self.get(campaign_id).register(action_id, options)

    def get(self, campaign_id: str) -> CampaignDefinition:
        campaign = self._campaigns.get(campaign_id)
        if campaign is None:
            raise NotFoundError(f"Campaign {campaign_id!r} is not registered")
        return campaign

    def campaign_ids(self) -> list[str]:
        return list(self._campaigns)

    def freeze(self) -> "CampaignRegistry":
        for campaign in self._campaigns.values():
            campaign.freeze()
        self._frozen = True
        logger.info("Campaign registry frozen: %d campaigns", len(self._campaigns))
        return self

    def __iter__(self) -> Iterator[CampaignDefinition]:
        return iter(self._campaigns.values())

    def __len__(self) -> int:
        return len(self._campaigns)

    def __contains__(self, campaign_id: str) -> bool:
        return campaign_id in self._campaigns
