"""Events subsystem broadcasting record changes over SSE."""
from ledger.events.bus import EventBus, SubscriberLimitReached
from ledger.events.hub import BroadcastHub
from ledger.events.types import DomainEvent, EventType

__all__ = [
    "BroadcastHub",
    "DomainEvent",
    "EventBus",
    "EventType",
    "SubscriberLimitReached",
]
