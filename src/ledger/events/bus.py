"""Topic pub/sub for change notifications, one bounded queue per subscriber."""
import asyncio
import uuid
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field

import structlog

from ledger.events.types import TOPICS, WILDCARD, DomainEvent

logger = structlog.get_logger()


class SubscriberLimitReached(ValueError):
    """Raised when the bus already serves its maximum subscribers."""


@dataclass
class _Subscription:
    topic: str
    queue: asyncio.Queue[DomainEvent]
    dropped: int = field(default=0)

    def wants(self, event: DomainEvent) -> bool:
        return self.topic in (WILDCARD, event.topic)

    def offer(self, event: DomainEvent) -> None:
        # A slow reader loses its oldest notification, never blocks publishers
        if self.queue.full():
            self.queue.get_nowait()
            self.dropped += 1
        self.queue.put_nowait(event)


class EventBus:
    """Fans change notifications out to subscribers of a topic or of "*"."""

    def __init__(self, queue_size: int = 100, max_subscribers: int = 100) -> None:
        """Initialize event bus.

        Args:
            queue_size: Notifications buffered per subscriber.
            max_subscribers: Concurrent subscribers allowed.
        """
        self._subscriptions: dict[str, _Subscription] = {}
        self._queue_size = queue_size
        self._max_subscribers = max_subscribers
        self._dropped_by_departed = 0
        self._lock = asyncio.Lock()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    @property
    def dropped_events(self) -> int:
        """Notifications discarded because a subscriber fell behind."""
        live = sum(s.dropped for s in self._subscriptions.values())
        return self._dropped_by_departed + live

    async def publish(self, event: DomainEvent) -> int:
        """Queue an event for every interested subscriber.

        Returns:
            Number of subscribers the event was queued for.
        """
        targets = [s for s in self._subscriptions.values() if s.wants(event)]
        for subscription in targets:
            subscription.offer(event)
        return len(targets)

    async def subscribe(
        self, topic: str = WILDCARD
    ) -> tuple[str, AsyncGenerator[DomainEvent, None]]:
        """Register a subscriber.

        Args:
            topic: "transactions", "system" or "*"; anything else means "*".

        Returns:
            The subscriber id and a generator of its events. Closing the
            generator unsubscribes.

        Raises:
            SubscriberLimitReached: If max_subscribers are already connected.
        """
        if topic not in TOPICS:
            topic = WILDCARD

        async with self._lock:
            if len(self._subscriptions) >= self._max_subscribers:
                raise SubscriberLimitReached(
                    f"{self._max_subscribers} subscribers already connected"
                )
            subscriber_id = uuid.uuid4().hex
            subscription = _Subscription(
                topic=topic, queue=asyncio.Queue(maxsize=self._queue_size)
            )
            self._subscriptions[subscriber_id] = subscription

        async def events() -> AsyncGenerator[DomainEvent, None]:
            try:
                while True:
                    yield await subscription.queue.get()
            finally:
                await self.unsubscribe(subscriber_id)

        return subscriber_id, events()

    async def unsubscribe(self, subscriber_id: str) -> None:
        """Drop a subscriber; unknown ids are ignored."""
        async with self._lock:
            subscription = self._subscriptions.pop(subscriber_id, None)
        if subscription is not None:
            self._dropped_by_departed += subscription.dropped
            logger.debug(
                "subscriber_removed",
                subscriber_id=subscriber_id,
                topic=subscription.topic,
                dropped=subscription.dropped,
            )
