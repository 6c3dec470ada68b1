"""Operation progress feed.

The manager publishes every OperationProgress it produces here. Subscribers
each receive the full event stream through their own queue, and the feed keeps
the latest event per (tool id, operation) until the caller clears it.
"""

import asyncio
import threading
from typing import Optional

from toolkeep.tools.models import OperationKind, OperationProgress


_CLOSED = object()


class ProgressSubscription:
    """Async iterator over progress events published after subscribing.

    Example:
        subscription = manager.subscribe_progress()
        async for event in subscription:
            print(event.tool_id, event.phase.value, event.message)
    """

    def __init__(self, feed: "ProgressFeed"):
        """Initialize the subscription.

        Args:
            feed: Feed the subscription is attached to.
        """
        self._feed = feed
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _deliver(self, event: OperationProgress) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    async def get(self) -> Optional[OperationProgress]:
        """Wait for the next event.

        Returns:
            Next event, or None once the subscription is closed and drained.
        """
        item = await self._queue.get()
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    def drain(self) -> list[OperationProgress]:
        """Take all events that are already queued without waiting."""
        events = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _CLOSED:
                self._queue.put_nowait(_CLOSED)
                break
            events.append(item)
        return events

    def close(self) -> None:
        """Stop receiving events. Already queued events can still be read."""
        if self._closed:
            return
        self._closed = True
        self._feed._unsubscribe(self)
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> "ProgressSubscription":
        return self

    async def __anext__(self) -> OperationProgress:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class ProgressFeed:
    """Fan-out channel and latest-state log for operation progress."""

    def __init__(self):
        """Initialize an empty feed."""
        self._lock = threading.Lock()
        self._log: dict[tuple[str, OperationKind], OperationProgress] = {}
        self._subscribers: list[ProgressSubscription] = []

    def publish(self, event: OperationProgress) -> None:
        """Record an event and deliver it to every subscriber.

        Args:
            event: Progress event.
        """
        with self._lock:
            self._log[event.key] = event
            subscribers = list(self._subscribers)
        for subscription in subscribers:
            subscription._deliver(event)

    def subscribe(self) -> ProgressSubscription:
        """Create a subscription receiving all future events."""
        subscription = ProgressSubscription(self)
        with self._lock:
            self._subscribers.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: ProgressSubscription) -> None:
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

    def latest(self, tool_id: str, operation: OperationKind) -> Optional[OperationProgress]:
        """Latest event of one operation on one tool."""
        with self._lock:
            return self._log.get((tool_id, operation))

    def log(self, tool_id: Optional[str] = None) -> list[OperationProgress]:
        """Latest event of every tracked operation, oldest first.

        Args:
            tool_id: Only include operations on this tool.
        """
        with self._lock:
            events = [
                e for e in self._log.values()
                if tool_id is None or e.tool_id == tool_id
            ]
        return sorted(events, key=lambda e: e.timestamp)

    def clear(self, tool_id: Optional[str] = None, operation: Optional[OperationKind] = None) -> int:
        """Remove tracked operations from the log.

        Args:
            tool_id: Only clear operations on this tool.
            operation: Only clear this kind of operation.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            keys = [
                key for key in self._log
                if (tool_id is None or key[0] == tool_id)
                and (operation is None or key[1] == operation)
            ]
            for key in keys:
                del self._log[key]
        return len(keys)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def close(self) -> None:
        """Close every subscription."""
        with self._lock:
            subscribers = list(self._subscribers)
        for subscription in subscribers:
            subscription.close()
