"""
EventBus service for GPU Job Orchestrator

Fans lifecycle events out to subscribers. Delivery is at-most-once to the
subscribers connected at publish time, with no replay. Each subscriber has
its own FIFO queue, so events of one job arrive in publish order.
"""

import asyncio
from typing import List, Optional

from ..models.events import LifecycleEvent, BROADCAST_CHANNEL, job_channel
from ..utils.logger import get_logger, set_log_context


class Subscription:
    """
    A subscriber's view of the bus.

    Iterate with `async for event in subscription`, or poll with `get()`.
    Closing the subscription ends iteration.
    """

    _CLOSED = object()

    def __init__(self, bus: "EventBus", job_id: Optional[str] = None, max_queue: int = 1000):
        self.bus = bus
        self.job_id = job_id
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue + 1)
        self._max_queue = max_queue
        self.dropped = 0
        self.closed = False

    @property
    def channel(self) -> str:
        return job_channel(self.job_id) if self.job_id else BROADCAST_CHANNEL

    def matches(self, event: LifecycleEvent) -> bool:
        return self.job_id is None or event.job_id == self.job_id

    def _offer(self, event: LifecycleEvent) -> bool:
        # One slot is reserved for the close sentinel
        if self.closed or self._queue.qsize() >= self._max_queue:
            self.dropped += 1
            return False
        self._queue.put_nowait(event)
        return True

    async def get(self, timeout: Optional[float] = None) -> Optional[LifecycleEvent]:
        """Next event, or None once closed or when `timeout` elapses."""
        if self.closed and self._queue.empty():
            return None
        try:
            item = await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None
        if item is self._CLOSED:
            return None
        return item

    def pending(self) -> List[LifecycleEvent]:
        """Drain and return everything already queued without waiting."""
        events = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is not self._CLOSED:
                events.append(item)
        return events

    def close(self):
        if self.closed:
            return
        self.closed = True
        self.bus.unsubscribe(self)
        self._queue.put_nowait(self._CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self) -> LifecycleEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.close()


class EventBus:
    """
    In-process publish/subscribe for lifecycle events.

    Subscriptions scoped to a job id form that job's channel; unscoped
    subscriptions receive every event (the broadcast channel).
    """

    def __init__(self, max_queue: int = 1000):
        self.max_queue = max_queue
        self._subscriptions: List[Subscription] = []
        self.published = 0

        self.logger = get_logger(__name__)
        set_log_context(self.logger, component="event_bus")

    def subscribe(self, job_id: Optional[str] = None) -> Subscription:
        """Subscribe to one job's events, or to all events when job_id is None."""
        subscription = Subscription(self, job_id=job_id, max_queue=self.max_queue)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription):
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def publish(self, event: LifecycleEvent) -> int:
        """
        Deliver an event to every matching subscriber.

        Returns:
            Number of subscribers that received it
        """
        self.published += 1
        delivered = 0

        for subscription in list(self._subscriptions):
            if not subscription.matches(event):
                continue
            if subscription._offer(event):
                delivered += 1
            else:
                self.logger.warning("Subscriber queue full, event dropped", extra={
                    "job_id": event.job_id,
                    "status": event.status.value,
                    "channel": subscription.channel
                })

        self.logger.debug("Published lifecycle event", extra={
            "job_id": event.job_id,
            "status": event.status.value,
            "delivered": delivered
        })
        return delivered

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)
