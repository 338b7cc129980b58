"""
Event Distribution Bus
======================

Fan-out of DataEvents from one event-driven driver to any number of
consumers.

Two ways to consume:
    - subscribe() returns an independent Subscription (bounded queue,
      async iterator). Each subscriber sees every event published after it
      subscribed, in publish order. No replay of history.
    - set_event_handler() registers one privileged handler called inline
      before any queue delivery. It must return within the configured
      budget; slow calls are logged as a caller bug.

Backpressure is chosen per subscriber:
    DROP_OLDEST - full queue discards its oldest event (counted in ``dropped``)
    BLOCK       - publisher waits for space in this subscriber's queue

Non-blocking deliveries always complete before the publisher waits on any
BLOCK subscriber, and BLOCK subscribers are awaited concurrently, so a slow
subscriber never delays the others.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import List, Optional, Set

from scada_protocols.config import EVENT_BUS_CONFIG
from scada_protocols.core.contracts import DataEvent
from scada_protocols.core.errors import ProtocolError
from scada_protocols.core.interfaces import DataEventHandler, EventHandlerLike, as_event_handler
from scada_protocols.core.state import ConnectionState

logger = logging.getLogger(__name__)

# Wakes up a consumer blocked on an empty queue after close()
_CLOSED = object()


class OverflowPolicy(str, Enum):
    DROP_OLDEST = "drop_oldest"
    BLOCK = "block"


class Subscription:
    """
    One consumer's view of an EventBus.

    Usage:
        async for event in bus.subscribe():
            handle(event)
    """

    def __init__(self, bus: "EventBus", maxsize: int, overflow: OverflowPolicy):
        if maxsize < 1:
            raise ValueError("Subscription queue size must be at least 1")
        self._bus = bus
        self._queue: asyncio.Queue = asyncio.Queue(maxsize)
        self._pending_puts: Set[asyncio.Future] = set()
        self.maxsize = maxsize
        self.overflow = overflow
        self.dropped = 0
        self.closed = False
        self._marker_queued = False

    def __repr__(self):
        return (f"Subscription(overflow={self.overflow.value}, "
                f"pending={self.pending}/{self.maxsize}, dropped={self.dropped})")

    @property
    def pending(self) -> int:
        return self._queue.qsize() - int(self._marker_queued)

    async def get(self) -> Optional[DataEvent]:
        """
        Wait for the next event.

        Returns:
            The next event, or None once the subscription is closed
        """
        if self.closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker for any other waiter
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    def get_nowait(self) -> Optional[DataEvent]:
        """
        Take the next event without waiting.

        Raises:
            asyncio.QueueEmpty: If no event is pending on an open subscription
        """
        if self.closed and self._queue.empty():
            return None
        item = self._queue.get_nowait()
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    def close(self):
        """
        Stop receiving events. Idempotent.

        Events already queued can still be drained. A publisher blocked on
        this subscription is released and its event discarded.
        """
        if self.closed:
            return
        self.closed = True
        self._bus._remove(self)
        for waiter in list(self._pending_puts):
            waiter.cancel()
        if self._queue.empty():
            self._queue.put_nowait(_CLOSED)
            self._marker_queued = True

    def __aiter__(self):
        return self

    async def __anext__(self) -> DataEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    # ==================== DELIVERY (called by EventBus) ====================

    def _offer(self, event: DataEvent) -> bool:
        """
        Deliver without waiting.

        Returns:
            False if this is a BLOCK subscriber with a full queue
        """
        if self.closed:
            return True
        if self._queue.full():
            if self.overflow is OverflowPolicy.BLOCK:
                return False
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(event)
        return True

    def _drop(self):
        self.dropped += 1

    async def _put_blocking(self, event: DataEvent):
        if self.closed:
            return
        waiter = asyncio.ensure_future(self._queue.put(event))
        self._pending_puts.add(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            # close() cancels waiters; anything else is a real cancellation
            if not self.closed:
                raise
        finally:
            self._pending_puts.discard(waiter)


class EventBus:
    """
    Publishes DataEvents to subscribers and one inline handler.

    Args:
        name: Owner label used in log messages
        queue_size: Default per-subscriber queue bound
        handler_budget_s: Time an inline handler call may take before it is logged
    """

    def __init__(self, name: str = "events",
                 queue_size: int = EVENT_BUS_CONFIG["subscriber_queue_size"],
                 handler_budget_s: float = EVENT_BUS_CONFIG["handler_budget_s"]):
        self.name = name
        self.queue_size = queue_size
        self.handler_budget_s = handler_budget_s
        self._subscriptions: List[Subscription] = []
        self._handler: Optional[DataEventHandler] = None
        self.published_total = 0
        self.slow_handler_calls = 0
        self.closed = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    @property
    def handler(self) -> Optional[DataEventHandler]:
        return self._handler

    def subscribe(self, maxsize: Optional[int] = None,
                  overflow: Optional[OverflowPolicy] = None) -> Subscription:
        """
        Open a new subscription.

        Args:
            maxsize: Queue bound (defaults to the bus queue size)
            overflow: Backpressure policy (defaults to DROP_OLDEST)

        Returns:
            Subscription that receives events published from now on
        """
        subscription = Subscription(
            self,
            maxsize or self.queue_size,
            OverflowPolicy(overflow or OverflowPolicy.DROP_OLDEST),
        )
        if self.closed:
            subscription.close()
            return subscription
        self._subscriptions.append(subscription)
        logger.debug(f"{self.name}: new {subscription.overflow.value} subscriber "
                     f"(total: {len(self._subscriptions)})")
        return subscription

    def _remove(self, subscription: Subscription):
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
            logger.debug(f"{self.name}: subscriber removed (remaining: {len(self._subscriptions)})")

    def set_event_handler(self, handler: Optional[EventHandlerLike]):
        """Register the inline handler, replacing any previous one. None clears it."""
        self._handler = as_event_handler(handler)
        if self._handler is None:
            logger.info(f"{self.name}: event handler cleared")
        else:
            logger.info(f"{self.name}: event handler set to {self._handler!r}")

    async def publish(self, event: DataEvent):
        """
        Deliver an event to the handler and every subscriber.

        Suspends only while BLOCK subscribers have full queues.
        """
        if self.closed:
            return
        self.published_total += 1
        self._call_handler("on_data_event", event)

        blocked = [s for s in list(self._subscriptions) if not s._offer(event)]
        if blocked:
            await asyncio.gather(*(s._put_blocking(event) for s in blocked))

    def publish_nowait(self, event: DataEvent) -> int:
        """
        Deliver an event without suspending.

        BLOCK subscribers with a full queue miss this event (counted in
        their ``dropped``).

        Returns:
            Number of subscribers that missed the event
        """
        if self.closed:
            return 0
        self.published_total += 1
        self._call_handler("on_data_event", event)

        missed = 0
        for subscription in list(self._subscriptions):
            if not subscription._offer(event):
                subscription._drop()
                missed += 1
        if missed:
            logger.warning(f"{self.name}: {missed} blocking subscriber(s) full, event dropped")
        return missed

    def notify_connection_changed(self, state: ConnectionState):
        self._call_handler("on_connection_changed", state)

    def notify_error(self, error: ProtocolError):
        self._call_handler("on_error", error)

    def close(self):
        """End every subscription. Later publishes are ignored."""
        self.closed = True
        for subscription in list(self._subscriptions):
            subscription.close()
        self._subscriptions.clear()

    def _call_handler(self, method: str, arg):
        handler = self._handler
        if handler is None:
            return

        started = time.perf_counter()
        try:
            getattr(handler, method)(arg)
        except Exception as e:
            logger.exception(f"{self.name}: event handler {method} raised: {e}")
        elapsed = time.perf_counter() - started

        if elapsed > self.handler_budget_s:
            self.slow_handler_calls += 1
            logger.warning(
                f"{self.name}: event handler {method} took {elapsed * 1000:.1f} ms "
                f"(budget {self.handler_budget_s * 1000:.1f} ms)"
            )
