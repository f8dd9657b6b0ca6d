"""Change broadcaster: fan-out of record mutations to live viewers."""

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, Optional, Set

logger = logging.getLogger(__name__)

RECORDS_UPDATED = "records-updated"


class ChangeType(str, Enum):
    """Mutation kinds carried in ``records-updated`` events."""

    INSERT = "insert"
    DELETE = "delete"
    BULK_DELETE = "bulk-delete"


class Subscription:
    """One viewer's ordered event queue.

    Events are delivered in publish order. When the queue overflows the
    subscription is closed; the viewer is expected to reconnect and
    re-fetch the record list.
    """

    def __init__(self, broadcaster: "ChangeBroadcaster", max_size: int):
        self._broadcaster = broadcaster
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_size)
        self.closed = asyncio.Event()
        self.overflowed = False

    def _offer(self, event: Dict[str, Any]) -> bool:
        if self.closed.is_set():
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.overflowed = True
            self.closed.set()
            return False
        return True

    def pending(self) -> int:
        return self._queue.qsize()

    def get_nowait(self) -> Dict[str, Any]:
        return self._queue.get_nowait()

    async def get(self) -> Optional[Dict[str, Any]]:
        """Next event, or None once the subscription is closed and drained."""
        if not self._queue.empty():
            return self._queue.get_nowait()
        if self.closed.is_set():
            return None

        getter = asyncio.ensure_future(self._queue.get())
        closer = asyncio.ensure_future(self.closed.wait())
        try:
            await asyncio.wait({getter, closer}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closer.cancel()
            if not getter.done():
                getter.cancel()
        if getter.done() and not getter.cancelled():
            return getter.result()
        return None

    def __aiter__(self):
        return self

    async def __anext__(self) -> Dict[str, Any]:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    def close(self) -> None:
        self._broadcaster.unsubscribe(self)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()


class ChangeBroadcaster:
    """Process-wide fan-out channel for ``records-updated`` events."""

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subscribers: Set[Subscription] = set()
        self.published = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        subscription = Subscription(self, self.queue_size)
        self._subscribers.add(subscription)
        logger.debug(f"Viewer subscribed ({len(self._subscribers)} connected)")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.closed.set()
        if subscription in self._subscribers:
            self._subscribers.discard(subscription)
            logger.debug(f"Viewer unsubscribed ({len(self._subscribers)} connected)")

    def publish(self, change: ChangeType, **fields: Any) -> Dict[str, Any]:
        """Deliver one event to every subscriber without waiting on any of them."""
        event = {"type": ChangeType(change).value, **fields}
        self.published += 1

        for subscription in list(self._subscribers):
            if not subscription._offer(event):
                logger.warning("Viewer queue overflow, dropping subscriber")
                self._subscribers.discard(subscription)

        logger.debug(f"Published {event['type']} to {len(self._subscribers)} subscriber(s)")
        return event

    def close(self) -> None:
        """End every subscription (process shutdown)."""
        for subscription in list(self._subscribers):
            subscription.closed.set()
        self._subscribers.clear()
