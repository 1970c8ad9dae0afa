"""Ordered queue of pending tasks consumed destructively by workers."""

from __future__ import annotations

import threading
from collections import deque
from typing import Deque, Iterable, Optional

from .task import Task


class TaskQueue:
    """FIFO handing each task to exactly one worker.

    ``take_next`` never awaits, so asyncio workers cannot interleave inside
    it; the lock keeps the same guarantee for callers on other threads.
    """

    def __init__(self, tasks: Iterable[Task] = ()) -> None:
        self._items: Deque[Task] = deque(tasks)
        self._lock = threading.Lock()

    def take_next(self) -> Optional[Task]:
        with self._lock:
            if not self._items:
                return None
            return self._items.popleft()


__all__ = ["TaskQueue"]
