"""Clock sources — where the engine gets "now" from."""

from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from drip_engine.errors import ConfigurationError


class ClockSource(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock, always timezone-aware UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock:
    """A virtual clock for tests and replays. Only moves when told to."""

    def __init__(self, at: datetime | None = None):
        self._now = at or datetime.now(timezone.utc)

    def now(self) -> datetime:
        return self._now

    def freeze(self, at: datetime) -> None:
        self._now = at

    def advance(self, delta: timedelta | None = None, **kwargs) -> datetime:
        """Move forward by a timedelta or by timedelta keyword args (days=1)."""
        step = delta if delta is not None else timedelta(**kwargs)
        if step < timedelta(0):
            raise ValueError("FrozenClock cannot move backwards")
        self._now = self._now + step
        return self._now


class CallableClock:
    """Adapts a zero-argument callable returning a datetime."""

    def __init__(self, fn: Callable[[], datetime]):
        if not callable(fn):
            raise ConfigurationError(f"Clock source must be callable, got {fn!r}")
        self._fn = fn

    def now(self) -> datetime:
        return self._fn()


SYSTEM_CLOCK = SystemClock()
