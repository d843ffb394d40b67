"""Non-blocking channel between worker threads and the tick loop."""

from __future__ import annotations

import queue
import threading
from typing import Any, Callable, Generic, List, Optional, TypeVar

T = TypeVar("T")


class Mailbox(Generic[T]):
    """Queue drained by the tick loop without ever blocking it."""

    def __init__(self) -> None:
        self._queue: "queue.Queue[T]" = queue.Queue()

    def put(self, item: T) -> None:
        self._queue.put(item)

    def poll(self) -> Optional[T]:
        """Return the oldest item or ``None`` when empty."""

        try:
            return self._queue.get_nowait()
        except queue.Empty:
            return None

    def wait(self, timeout: float) -> Optional[T]:
        """Block for at most ``timeout`` seconds."""

        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[T]:
        items: List[T] = []
        while True:
            item = self.poll()
            if item is None:
                return items
            items.append(item)

    def clear(self) -> None:
        self.drain()


class Worker(threading.Thread):
    """Daemon thread running ``target(mailbox)`` until it returns."""

    def __init__(self, target: Callable[["Mailbox[Any]"], None], name: str) -> None:
        super().__init__(name=name, daemon=True)
        self.mailbox: Mailbox[Any] = Mailbox()
        self._target_fn = target

    def run(self) -> None:
        self._target_fn(self.mailbox)
