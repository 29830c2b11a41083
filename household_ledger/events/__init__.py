"""Event bus package."""

from household_ledger.events import topics
from household_ledger.events.bus import (
    ERROR_TOPIC,
    BusError,
    EventBus,
    Handler,
    Subscription,
)

__all__ = [
    "ERROR_TOPIC",
    "BusError",
    "EventBus",
    "Handler",
    "Subscription",
    "topics",
]
