"""A bounded, closable queue for streaming debug results between threads."""

from __future__ import annotations

import queue
import threading
from collections.abc import Iterator
from typing import Generic, TypeVar

from einodev.errors import DevopsError

T = TypeVar("T")

# queued by close(); never handed out as an item
_CLOSED = object()


class ChannelClosed(DevopsError):
    """Raised when sending on a closed channel, or receiving from a drained one."""


class Channel(Generic[T]):
    """A ``queue.Queue`` of at most ``capacity`` items plus a close marker.

    Producers block while ``capacity`` items are buffered; consumers block
    while it is empty. Items already buffered stay readable after close,
    and iteration ends once the channel is closed and drained.
    """

    def __init__(self, capacity: int = 1) -> None:
        if capacity < 1:
            raise ValueError(f"channel capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        # one slot beyond capacity is kept for the close marker
        self._queue: queue.Queue = queue.Queue(maxsize=capacity + 1)
        self._slots = threading.Semaphore(capacity)
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def __len__(self) -> int:
        with self._lock:
            size = self._queue.qsize()
            return max(size - 1, 0) if self._closed else size

    def put(self, item: T) -> None:
        if self.closed:
            raise ChannelClosed("send on closed channel")
        self._slots.acquire()
        with self._lock:
            if self._closed:
                self._slots.release()
                raise ChannelClosed("send on closed channel")
            self._queue.put_nowait(item)

    def get(self, timeout: float | None = None) -> T:
        """Next item; TimeoutError if none arrives within ``timeout`` seconds."""
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            raise TimeoutError("no item received before timeout") from None
        if item is _CLOSED:
            # put back for the next reader
            self._queue.put_nowait(_CLOSED)
            raise ChannelClosed("channel closed")
        self._slots.release()
        return item

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    def __iter__(self) -> Iterator[T]:
        while True:
            try:
                yield self.get()
            except ChannelClosed:
                return
