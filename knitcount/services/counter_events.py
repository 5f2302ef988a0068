"""In-memory pub/sub broker streaming committed counter changes per project."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Optional
from uuid import UUID

import structlog

from ..core.errors import Unauthorized
from ..domain.sync import CounterEvent
from ..telemetry.metrics import SYNC_EVENTS_DROPPED

logger = structlog.get_logger(__name__)

Authorizer = Callable[[UUID, UUID], Awaitable[bool]]


def channel_name(project_id: UUID) -> str:
    return f"project:{project_id}"


class Subscription:
    """Async iterator over one subscriber's queue of counter events."""

    def __init__(self, broker: CounterEventBroker, project_id: UUID, queue: asyncio.Queue[CounterEvent]) -> None:
        self._broker = broker
        self.project_id = project_id
        self._queue = queue
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self) -> int:
        return self._queue.qsize()

    async def get(self) -> CounterEvent:
        return await self._queue.get()

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._broker._unregister(self.project_id, self._queue)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> CounterEvent:
        if self._closed:
            raise StopAsyncIteration
        return await self._queue.get()

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()


class CounterEventBroker:
    """Manages project channel subscriptions for counter updates.

    Publishing never blocks the committing request: a subscriber whose queue
    is full misses the event and is expected to resync from a snapshot when
    it notices the gap in sequence numbers.
    """

    def __init__(self, *, maxsize: int = 256, authorize: Optional[Authorizer] = None) -> None:
        self._subscribers: dict[UUID, set[asyncio.Queue[CounterEvent]]] = defaultdict(set)
        self._sequences: dict[UUID, int] = defaultdict(int)
        self._maxsize = maxsize
        self._authorize = authorize

    def bind_authorizer(self, authorize: Authorizer) -> None:
        self._authorize = authorize

    def current_sequence(self, project_id: UUID) -> int:
        return self._sequences.get(project_id, 0)

    def subscriber_count(self, project_id: UUID) -> int:
        return len(self._subscribers.get(project_id, ()))

    async def subscribe(self, project_id: UUID, user_id: UUID) -> Subscription:
        """Register a queue on the project channel after checking ownership."""

        if self._authorize is None or not await self._authorize(project_id, user_id):
            logger.warning(
                "sync.subscribe.denied", project_id=str(project_id), user_id=str(user_id)
            )
            raise Unauthorized("Not allowed to subscribe to this project")
        queue: asyncio.Queue[CounterEvent] = asyncio.Queue(maxsize=self._maxsize)
        self._subscribers[project_id].add(queue)
        logger.debug("sync.subscribed", channel=channel_name(project_id), user_id=str(user_id))
        return Subscription(self, project_id, queue)

    def publish(
        self,
        project_id: UUID,
        counter_id: UUID,
        current_value: int,
        action: str,
        *,
        linked_from: UUID | None = None,
        origin: str | None = None,
    ) -> CounterEvent:
        """Broadcast one committed counter state to every listener of the project."""

        self._sequences[project_id] += 1
        event = CounterEvent(
            project_id=project_id,
            counter_id=counter_id,
            current_value=current_value,
            action=action,
            sequence=self._sequences[project_id],
            linked_from=linked_from,
            origin=origin,
        )
        for queue in list(self._subscribers.get(project_id, set())):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                SYNC_EVENTS_DROPPED.inc()
                logger.warning(
                    "sync.publish.dropped",
                    channel=channel_name(project_id),
                    counter_id=str(counter_id),
                    sequence=event.sequence,
                )
        return event

    def _unregister(self, project_id: UUID, queue: asyncio.Queue[CounterEvent]) -> None:
        subscribers = self._subscribers.get(project_id)
        if subscribers:
            subscribers.discard(queue)
            if not subscribers:
                self._subscribers.pop(project_id, None)
