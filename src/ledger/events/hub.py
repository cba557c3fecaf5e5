"""SSE broadcast hub streaming change notifications to clients."""

import asyncio
import contextlib
from collections.abc import AsyncGenerator, AsyncIterator

import structlog
from sse_starlette import ServerSentEvent

from ledger.events.bus import EventBus
from ledger.events.types import WILDCARD, DomainEvent, EventType, Topic

logger = structlog.get_logger()


class BroadcastHub:
    """Publishes record changes and serves them as SSE streams.

    Attributes:
        heartbeat_interval: Seconds between heartbeat events.
    """

    def __init__(self, event_bus: EventBus, heartbeat_interval: float = 15.0) -> None:
        """Initialize broadcast hub.

        Args:
            event_bus: Event bus for pub/sub.
            heartbeat_interval: Seconds between heartbeats.
        """
        self._bus = event_bus
        self.heartbeat_interval = heartbeat_interval
        self._active_connections = 0

    @property
    def active_connections(self) -> int:
        """Number of active SSE connections."""
        return self._active_connections

    async def announce(
        self,
        event_type: EventType,
        transaction_ids: list[str] | None = None,
        topic: Topic = "transactions",
    ) -> int:
        """Publish a change notification.

        Args:
            event_type: What happened.
            transaction_ids: Affected transaction ids.
            topic: Routing topic.

        Returns:
            Number of subscribers that received the event.
        """
        event = DomainEvent(
            type=event_type,
            topic=topic,
            transaction_ids=transaction_ids or [],
        )
        delivered = await self._bus.publish(event)
        logger.debug(
            "event_published",
            event_type=event.type.value,
            topic=topic,
            delivered_to=delivered,
        )
        return delivered

    async def open_stream(self, topic: str = WILDCARD) -> AsyncIterator[ServerSentEvent]:
        """Subscribe a client and return its SSE event stream.

        Subscribing happens here rather than on first iteration so a full
        bus can be refused before the response starts.

        Args:
            topic: Topic filter for events.

        Returns:
            Server-sent events for the client, interleaved with heartbeats.

        Raises:
            SubscriberLimitReached: If the bus is at capacity.
        """
        subscriber_id, events = await self._bus.subscribe(topic)
        self._active_connections += 1
        logger.info(
            "sse_client_connected",
            subscriber_id=subscriber_id,
            topic=topic,
            active_connections=self._active_connections,
        )
        return self._stream(subscriber_id, events)

    async def _stream(
        self, subscriber_id: str, events: AsyncGenerator[DomainEvent, None]
    ) -> AsyncIterator[ServerSentEvent]:
        pending = asyncio.ensure_future(anext(events))
        try:
            while True:
                done, _ = await asyncio.wait({pending}, timeout=self.heartbeat_interval)
                if done:
                    event = pending.result()
                    pending = asyncio.ensure_future(anext(events))
                else:
                    event = DomainEvent(type=EventType.HEARTBEAT, topic="system")
                yield ServerSentEvent(event=event.type.value, data=event.model_dump_json())
        finally:
            pending.cancel()
            with contextlib.suppress(asyncio.CancelledError, StopAsyncIteration):
                await pending
            await events.aclose()
            self._active_connections -= 1
            logger.info(
                "sse_client_disconnected",
                subscriber_id=subscriber_id,
                active_connections=self._active_connections,
            )

    async def shutdown(self) -> None:
        """Log hub statistics on shutdown."""
        logger.info(
            "broadcast_hub_shutdown",
            active_connections=self._active_connections,
            dropped_events=self._bus.dropped_events,
        )
