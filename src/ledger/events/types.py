"""Domain events announcing record changes to connected clients."""
import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Change notifications published on the event bus."""

    TRANSACTION_CREATED = "transaction.created"
    TRANSACTION_UPDATED = "transaction.updated"
    TRANSACTION_DELETED = "transaction.deleted"
    TRANSACTIONS_IMPORTED = "transactions.imported"
    INDEX_REBUILT = "index.rebuilt"
    HEARTBEAT = "heartbeat"


Topic = Literal["transactions", "system"]

TOPICS: tuple[Topic, ...] = ("transactions", "system")

WILDCARD = "*"


class DomainEvent(BaseModel):
    """Typed change notification.

    Attributes:
        id: Unique event identifier (UUID).
        type: What happened.
        timestamp: Event timestamp in UTC.
        topic: Topic used to route the event to subscribers.
        transaction_ids: Ids of the affected transactions, if any.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    topic: Topic
    transaction_ids: list[str] = Field(default_factory=list)
