"""
The two channels the pipeline tasks talk through, plus the shared
"latest surface" reference for synchronous readers.

QuoteChannel (transport -> compute)
    Bounded. send() tries a non-blocking put first and only then waits for
    room, so a fast source feels backpressure instead of growing memory.
    The blocking tier can carry a timeout. If the receiving side has gone
    away, send() raises ChannelClosed and the producer should stop.

PublishBus (compute -> consumers)
    Fan-out of SurfaceUpdates. Every subscriber has its own small buffer;
    when it is full the oldest snapshot is dropped. publish() never waits
    on a consumer. Since each update is a full snapshot, a consumer that
    falls behind loses history, never state.

Each channel belongs to one pipeline instance; there is no module-level bus.
"""

import asyncio
import threading
from collections import deque
from typing import Generic, Optional, TypeVar

from loguru import logger

from . import config
from .errors import ChannelClosed

T = TypeVar("T")

_UNSET = object()


async def _first_of(main: asyncio.Future, stop: asyncio.Event, timeout: Optional[float]):
    """Wait for ``main`` or ``stop``; whichever is pending afterwards is cancelled."""
    stopper = asyncio.ensure_future(stop.wait())
    try:
        done, _ = await asyncio.wait({main, stopper}, timeout=timeout,
                                     return_when=asyncio.FIRST_COMPLETED)
    finally:
        stopper.cancel()
        if not main.done():
            main.cancel()
    return main in done, stopper in done


# ════════════════════════════════════════════════════════════════════════
#  QUOTE CHANNEL
# ════════════════════════════════════════════════════════════════════════

class QuoteChannel(Generic[T]):
    """
    Bounded single-producer / single-consumer queue with explicit close.

    Parameters
    ----------
    capacity : maximum buffered items
    send_timeout : default timeout (s) for the blocking tier of send();
                   None waits indefinitely
    """

    def __init__(self, capacity: int = None, send_timeout: Optional[float] = None):
        if capacity is None:
            capacity = config.QUOTE_CHANNEL_CAPACITY
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self.send_timeout = send_timeout
        self.blocked_sends = 0
        self._queue = asyncio.Queue(maxsize=capacity)
        self._sender_closed = asyncio.Event()
        self._receiver_closed = asyncio.Event()
        self._any_closed = asyncio.Event()

    def qsize(self) -> int:
        return self._queue.qsize()

    @property
    def sender_closed(self) -> bool:
        return self._sender_closed.is_set()

    @property
    def receiver_closed(self) -> bool:
        return self._receiver_closed.is_set()

    def _check_open(self) -> None:
        if self._receiver_closed.is_set():
            raise ChannelClosed("quote receiver has been closed")
        if self._sender_closed.is_set():
            raise ChannelClosed("quote sender has already finished")

    def try_send(self, item: T) -> bool:
        """Non-blocking tier. False when the buffer is full."""
        self._check_open()
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            return False
        return True

    async def send(self, item: T, timeout=_UNSET) -> None:
        """
        Enqueue ``item``, waiting for room if the buffer is full.

        Raises
        ------
        ChannelClosed : receiver closed, before or while waiting
        asyncio.TimeoutError : blocking tier exceeded its timeout
        """
        if self.try_send(item):
            return

        self.blocked_sends += 1
        if timeout is _UNSET:
            timeout = self.send_timeout

        put = asyncio.ensure_future(self._queue.put(item))
        sent, closed = await _first_of(put, self._receiver_closed, timeout)
        if sent:
            return
        if closed:
            raise ChannelClosed("quote receiver closed while sender was blocked")
        raise asyncio.TimeoutError(f"quote channel still full after {timeout}s")

    async def recv(self, timeout: Optional[float] = None) -> Optional[T]:
        """
        Next item, or None if ``timeout`` elapsed first.

        Raises
        ------
        ChannelClosed : sender finished and the buffer is drained, or the
                        receiver was closed
        """
        if self._receiver_closed.is_set():
            raise ChannelClosed("quote receiver has been closed")
        if not self._queue.empty():
            return self._queue.get_nowait()
        if self._sender_closed.is_set():
            raise ChannelClosed("quote stream finished")

        get = asyncio.ensure_future(self._queue.get())
        got, woken = await _first_of(get, self._any_closed, timeout)
        if got:
            return get.result()
        if woken:
            if self._receiver_closed.is_set():
                raise ChannelClosed("quote receiver has been closed")
            if not self._queue.empty():
                return self._queue.get_nowait()
            raise ChannelClosed("quote stream finished")
        return None

    def close_sender(self) -> None:
        """Producer is done; the receiver drains what is left."""
        self._sender_closed.set()
        self._any_closed.set()

    def close_receiver(self) -> None:
        """Consumer is gone; pending and future sends fail."""
        self._receiver_closed.set()
        self._any_closed.set()


# ════════════════════════════════════════════════════════════════════════
#  PUBLISH BUS
# ════════════════════════════════════════════════════════════════════════

class Subscription(Generic[T]):
    """One consumer's handle on a PublishBus. Obtain via PublishBus.subscribe()."""

    def __init__(self, bus: "PublishBus", capacity: int):
        self._bus = bus
        self._buffer = deque(maxlen=capacity)
        self._ready = asyncio.Event()
        self.capacity = capacity
        self.lagged = 0
        self.closed = False

    def _push(self, item: T) -> None:
        if len(self._buffer) == self.capacity:
            # deque(maxlen) drops from the left
            self.lagged += 1
        self._buffer.append(item)
        self._ready.set()

    def _wake(self) -> None:
        self._ready.set()

    def pending(self) -> int:
        return len(self._buffer)

    def _check_open(self) -> None:
        if self.closed or self._bus.closed:
            raise ChannelClosed("publish bus closed")

    def try_recv(self) -> Optional[T]:
        """Oldest buffered update, or None if nothing is waiting."""
        if self._buffer:
            return self._buffer.popleft()
        self._check_open()
        return None

    def drain_latest(self) -> Optional[T]:
        """Discard everything but the newest buffered update and return it."""
        latest = None
        while self._buffer:
            latest = self._buffer.popleft()
        return latest

    async def recv(self, timeout: Optional[float] = None) -> Optional[T]:
        """
        Wait for the next update; None if ``timeout`` elapsed first.

        Buffered updates are still delivered after the bus closes; only
        then does this raise ChannelClosed.
        """
        while True:
            if self._buffer:
                return self._buffer.popleft()
            self._check_open()
            self._ready.clear()
            try:
                await asyncio.wait_for(self._ready.wait(), timeout)
            except asyncio.TimeoutError:
                return None

    def close(self) -> None:
        """Unsubscribe. The publisher just sees one fewer receiver."""
        if not self.closed:
            self.closed = True
            self._bus._unsubscribe(self)
            self._ready.set()

    def __aiter__(self):
        return self

    async def __anext__(self) -> T:
        try:
            return await self.recv()
        except ChannelClosed:
            raise StopAsyncIteration


class PublishBus(Generic[T]):
    """
    Lossy multi-consumer broadcast.

    Parameters
    ----------
    capacity : default per-subscriber buffer length
    """

    def __init__(self, capacity: int = None):
        if capacity is None:
            capacity = config.PUBLISH_CAPACITY
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self.closed = False
        self.published = 0
        self._subscribers = []

    @property
    def receiver_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, capacity: int = None) -> Subscription[T]:
        if self.closed:
            raise ChannelClosed("publish bus closed")
        sub = Subscription(self, capacity or self.capacity)
        self._subscribers.append(sub)
        logger.debug("subscriber added ({} total)", len(self._subscribers))
        return sub

    def _unsubscribe(self, sub: Subscription) -> None:
        if sub in self._subscribers:
            self._subscribers.remove(sub)
            logger.debug("subscriber removed ({} left)", len(self._subscribers))

    def publish(self, item: T) -> int:
        """
        Hand ``item`` to every subscriber without waiting.

        Returns the number of receivers; zero is not an error.

        Raises
        ------
        ChannelClosed : the bus itself was closed
        """
        if self.closed:
            raise ChannelClosed("publish bus closed")
        for sub in list(self._subscribers):
            sub._push(item)
        self.published += 1
        return len(self._subscribers)

    def close(self) -> None:
        """Stop accepting updates; subscribers drain then see ChannelClosed."""
        if self.closed:
            return
        self.closed = True
        for sub in self._subscribers:
            sub._wake()


# ════════════════════════════════════════════════════════════════════════
#  LATEST VALUE
# ════════════════════════════════════════════════════════════════════════

class LatestSurface(Generic[T]):
    """
    Most recently published value, for readers outside the event loop.

    The lock only covers the swap itself; readers take the reference
    without locking, and the values handed out are immutable.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._value = None

    def swap(self, value: T) -> Optional[T]:
        with self._lock:
            previous, self._value = self._value, value
        return previous

    def get(self) -> Optional[T]:
        return self._value
