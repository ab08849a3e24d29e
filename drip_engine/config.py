"""Drip engine configuration — loaded from environment variables.

Module-level constants are read once at import. DeliveryConfig bundles the
settings the batch processor needs and is built once at process start.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from drip_engine.clock import SYSTEM_CLOCK, ClockSource
from drip_engine.errors import ConfigurationError

load_dotenv(Path(__file__).resolve().parent.parent / ".env")

# Supabase
SUPABASE_URL = os.environ.get("SUPABASE_URL", "")
SUPABASE_SERVICE_KEY = os.environ.get("SUPABASE_SERVICE_KEY", "")

# Resend (email handler)
RESEND_API_KEY = os.environ.get("RESEND_API_KEY", "")
DRIP_FROM_EMAIL = os.environ.get("DRIP_FROM_EMAIL", "hello@example.com")
DRIP_FROM_NAME = os.environ.get("DRIP_FROM_NAME", "Drip Campaigns")

# Delivery
DRIP_ASYNC_DELIVERY = os.environ.get("DRIP_ASYNC_DELIVERY", "0").lower() in ("1", "true", "yes")
DRIP_DISPATCH_QUEUE = os.environ.get("DRIP_DISPATCH_QUEUE", "default")
DRIP_BATCH_SIZE = int(os.environ.get("DRIP_BATCH_SIZE", "1000"))

# Scheduler
DRIP_INTERVAL_MINUTES = int(os.environ.get("DRIP_INTERVAL_MINUTES", "15"))

DEFAULT_BATCH_SIZE = 1000


@dataclass(frozen=True)
class DeliveryConfig:
    async_delivery: bool = False
    dispatch_queue: str = "default"
    batch_size: int = DEFAULT_BATCH_SIZE
    clock: ClockSource = field(default=SYSTEM_CLOCK, compare=False)

    def __post_init__(self):
        if isinstance(self.batch_size, bool) or not isinstance(self.batch_size, int) or self.batch_size < 1:
            raise ConfigurationError(f"batch_size must be a positive integer, got {self.batch_size!r}")
        if self.async_delivery and not self.dispatch_queue:
            raise ConfigurationError("dispatch_queue must be set when async_delivery is on")
        if not callable(getattr(self.clock, "now", None)):
            raise ConfigurationError(f"clock must provide now(), got {self.clock!r}")

    @classmethod
    def from_env(cls, clock: ClockSource = SYSTEM_CLOCK) -> "DeliveryConfig":
        return cls(
            async_delivery=DRIP_ASYNC_DELIVERY,
            dispatch_queue=DRIP_DISPATCH_QUEUE,
            batch_size=DRIP_BATCH_SIZE,
            clock=clock,
        )
