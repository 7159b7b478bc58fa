"""Blocking hand-off channel between pipeline stages."""

from __future__ import annotations

import queue
import threading
from typing import Any, Iterator

# Seconds between checks of the stop flag while blocked.
POLL_INTERVAL = 0.05

_CLOSED = object()


class ChannelStopped(Exception):
    """Raised to a producer when the pipeline it feeds has been stopped."""


class Channel:
    """A bounded queue that knows when its producers are finished.

    `put` blocks while the channel is full, which is how a slow consumer holds
    back its producers. Each producer calls `close` once; after the last one
    has, consumers drain the remaining items and their iteration ends. Setting
    the shared stop event wakes every blocked producer and consumer.
    """

    def __init__(
        self,
        maxsize: int = 0,
        *,
        producers: int = 1,
        stop: threading.Event | None = None,
    ) -> None:
        self._queue: queue.Queue[Any] = queue.Queue(maxsize)
        self._producers = producers
        self._lock = threading.Lock()
        self.stop = stop or threading.Event()

    def put(self, item: Any) -> None:
        while True:
            if self.stop.is_set():
                raise ChannelStopped()
            try:
                self._queue.put(item, timeout=POLL_INTERVAL)
                return
            except queue.Full:
                continue

    def close(self) -> None:
        """Mark one producer as finished."""
        with self._lock:
            self._producers -= 1
            last = self._producers == 0
        if last:
            try:
                self.put(_CLOSED)
            except ChannelStopped:
                pass

    def __iter__(self) -> Iterator[Any]:
        while not self.stop.is_set():
            try:
                item = self._queue.get(timeout=POLL_INTERVAL)
            except queue.Empty:
                continue
            if item is _CLOSED:
                # Leave the marker for any other consumer.
                self._queue.put_nowait(_CLOSED)
                return
            yield item
