"""Process-wide fan-out channel for change events.

Producers (the filesystem watcher and mutating service calls) publish; every
currently connected subscriber receives its own copy. There is no backlog: a
subscriber only sees events published while it is subscribed.

Each subscriber owns a bounded buffer. When a slow consumer's buffer is full
its oldest event is dropped, so ``publish`` never blocks the producer (the
watcher thread in particular).
"""

from __future__ import annotations

import asyncio
import collections
import contextlib
import logging
import queue
import threading
from typing import Deque, List, Optional, Union

from .constants import DEFAULT_SUBSCRIBER_BUFFER
from .core import FsFileChanged, FsTreeInvalidated, RepoStateInvalidated

logger = logging.getLogger(__name__)

Event = Union[FsTreeInvalidated, FsFileChanged, RepoStateInvalidated]


class Subscription:
    """Base class for one consumer of the bus."""

    def __init__(self, bus: "ChangeBus", maxsize: int):
        self._bus = bus
        self.maxsize = maxsize
        self.dropped = 0
        self.closed = False

    def deliver(self, event: Event) -> None:
        """Hand an event to this subscriber without blocking."""
        raise NotImplementedError

    def close(self) -> None:
        """Stop receiving events."""
        if not self.closed:
            self.closed = True
            self._bus.unsubscribe(self)

    def detach(self) -> None:
        """Mark closed after the bus itself dropped this subscriber."""
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class QueueSubscription(Subscription):
    """Thread-side subscriber: a bounded buffer drained with ``get``."""

    def __init__(self, bus: "ChangeBus", maxsize: int):
        super().__init__(bus, maxsize)
        self._items: Deque[Event] = collections.deque()
        self._cond = threading.Condition()

    def deliver(self, event: Event) -> None:
        with self._cond:
            if len(self._items) >= self.maxsize:
                self._items.popleft()
                self.dropped += 1
                logger.warning("Subscriber buffer full, dropped oldest event")
            self._items.append(event)
            self._cond.notify()

    def get(self, timeout: Optional[float] = None) -> Event:
        """Next event; raises ``queue.Empty`` after ``timeout`` seconds."""
        with self._cond:
            if not self._cond.wait_for(lambda: self._items, timeout=timeout):
                raise queue.Empty
            return self._items.popleft()

    def drain(self) -> List[Event]:
        """All currently buffered events, oldest first."""
        with self._cond:
            items = list(self._items)
            self._items.clear()
            return items


class AsyncSubscription(Subscription):
    """Event-loop-side subscriber, fed from any thread via ``call_soon_threadsafe``."""

    def __init__(self, bus: "ChangeBus", maxsize: int, loop: asyncio.AbstractEventLoop):
        super().__init__(bus, maxsize)
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue()

    def deliver(self, event: Event) -> None:
        try:
            self._loop.call_soon_threadsafe(self._put, event)
        except RuntimeError:
            # Loop already closed: the connection is gone
            self.close()

    def close(self) -> None:
        super().close()
        self._wake()

    def detach(self) -> None:
        super().detach()
        self._wake()

    def _wake(self) -> None:
        # A None entry ends a pending next()
        with contextlib.suppress(RuntimeError):
            # Loop already closed: nothing is waiting
            self._loop.call_soon_threadsafe(self._queue.put_nowait, None)

    def _put(self, event: Event) -> None:
        if self._queue.qsize() >= self.maxsize:
            self._queue.get_nowait()
            self.dropped += 1
            logger.warning("Subscriber buffer full, dropped oldest event")
        self._queue.put_nowait(event)

    async def next(self) -> Optional[Event]:
        """Wait for the next event; None once the subscription is closed."""
        if self.closed and self._queue.empty():
            return None
        return await self._queue.get()


class ChangeBus:
    """Single publish point with independently buffered subscribers."""

    def __init__(self, buffer_size: int = DEFAULT_SUBSCRIBER_BUFFER):
        self.buffer_size = buffer_size
        self._lock = threading.Lock()
        self._subscribers: List[Subscription] = []

    def subscribe(self, maxsize: Optional[int] = None) -> QueueSubscription:
        """Register a thread-side subscriber."""
        sub = QueueSubscription(self, maxsize or self.buffer_size)
        self._add(sub)
        return sub

    def subscribe_async(
        self,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        maxsize: Optional[int] = None,
    ) -> AsyncSubscription:
        """Register a subscriber consumed from an asyncio event loop."""
        sub = AsyncSubscription(self, maxsize or self.buffer_size, loop or asyncio.get_running_loop())
        self._add(sub)
        return sub

    def _add(self, sub: Subscription) -> None:
        with self._lock:
            self._subscribers.append(sub)

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            try:
                self._subscribers.remove(sub)
            except ValueError:
                pass

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: Event) -> int:
        """Deliver an event to every current subscriber.

        Returns:
            Number of subscribers the event was handed to
        """
        with self._lock:
            targets = list(self._subscribers)
        for sub in targets:
            sub.deliver(event)
        logger.debug("Published %s to %d subscriber(s)", event.type, len(targets))
        return len(targets)

    def close(self) -> None:
        """Detach every subscriber."""
        with self._lock:
            targets = list(self._subscribers)
            self._subscribers.clear()
        for sub in targets:
            sub.detach()
