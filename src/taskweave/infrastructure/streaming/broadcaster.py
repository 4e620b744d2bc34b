"""
Event Broadcaster

Fans out agent events to any number of subscribers. Each subscriber owns an
asyncio queue and may filter by thread id and/or agent id. Events reach a
subscriber in the order the producer emitted them.
"""

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import structlog

from taskweave.core.domain.events import AgentEvent

logger = structlog.get_logger()


class Subscription:
    """A subscriber's queue plus its filters. Iterate it to consume events."""

    def __init__(
        self,
        broadcaster: "EventBroadcaster",
        thread_id: str | None = None,
        agent_id: str | None = None,
        max_queue_size: int = 0,
    ):
        self.broadcaster = broadcaster
        self.thread_id = thread_id
        self.agent_id = agent_id
        self.queue: asyncio.Queue[AgentEvent | None] = asyncio.Queue(max_queue_size)
        self.closed = False

    def matches(self, event: AgentEvent) -> bool:
        if self.thread_id is not None and event.thread_id != self.thread_id:
            return False
        if self.agent_id is not None and event.agent_id != self.agent_id:
            return False
        return True

    async def get(self) -> AgentEvent | None:
        """Next event, or None once the subscription is closed."""
        return await self.queue.get()

    def close(self) -> None:
        self.broadcaster.unsubscribe(self)

    async def __aiter__(self) -> AsyncIterator[AgentEvent]:
        while True:
            event = await self.queue.get()
            if event is None:
                break
            yield event

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.close()


class EventBroadcaster:
    """
    Process-wide event sink with filtered fan-out.

    Pass it as ``event_sink`` to the engine; every execution then publishes
    here in addition to its own per-call sink.

    Example:
        >>> broadcaster = EventBroadcaster()
        >>> async with broadcaster.subscribe(thread_id="t1") as sub:
        ...     async for event in sub:
        ...         print(event.type)
    """

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []
        self.logger = logger.bind(component="event_broadcaster")

    def subscribe(
        self,
        thread_id: str | None = None,
        agent_id: str | None = None,
        max_queue_size: int = 0,
    ) -> Subscription:
        subscription = Subscription(self, thread_id, agent_id, max_queue_size)
        self._subscriptions.append(subscription)
        self.logger.debug(
            "subscriber_added",
            thread_id=thread_id,
            agent_id=agent_id,
            subscribers=len(self._subscriptions),
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription.closed:
            return
        subscription.closed = True
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
        # Wake a consumer blocked on get()
        subscription.queue.put_nowait(None)
        self.logger.debug("subscriber_removed", subscribers=len(self._subscriptions))

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def emit(self, event: AgentEvent) -> None:
        for subscription in list(self._subscriptions):
            if subscription.matches(event):
                await subscription.queue.put(event)

    def close(self) -> None:
        for subscription in list(self._subscriptions):
            self.unsubscribe(subscription)


class CollectingSink:
    """Sink that keeps every event in a list (CLI rendering, tests)."""

    def __init__(self) -> None:
        self.events: list[AgentEvent] = []

    async def emit(self, event: AgentEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type) -> list[AgentEvent]:
        return [e for e in self.events if e.type == event_type]
