"""Task and run state shared by the scheduler components."""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, List, Optional

from .cancellation import CancellationToken


class TaskStatus(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCEEDED, TaskStatus.FAILED)


@dataclass
class Task:
    """One prompt-to-image unit of work."""

    sequence_number: int
    prompt: str
    status: TaskStatus = TaskStatus.IDLE
    attempts: int = 0
    result_reference: str | None = None
    error_detail: str | None = None
    remote_id: str | None = None
    selected: bool = True

    def snapshot(self) -> "Task":
        return replace(self)


UpdateCallback = Callable[[Task], None]


def rearm_task(task: Task) -> None:
    """Reset a task so a new run restarts its full lifecycle."""

    task.status = TaskStatus.IDLE
    task.attempts = 0
    task.result_reference = None
    task.error_detail = None
    task.remote_id = None


@dataclass(frozen=True)
class BatchProgress:
    total: int
    done: int
    succeeded: int
    failed: int


class ProgressTracker:
    """Counters updated only on terminal task transitions.

    No method awaits, so updates from asyncio workers are atomic; the lock
    covers readers such as signal handlers and progress reporters on other
    threads.
    """

    def __init__(self, total: int = 0) -> None:
        self._lock = threading.Lock()
        self._total = total
        self._succeeded = 0
        self._failed = 0

    def record_success(self) -> None:
        with self._lock:
            self._succeeded += 1

    def record_failure(self) -> None:
        with self._lock:
            self._failed += 1

    def snapshot(self) -> BatchProgress:
        with self._lock:
            return BatchProgress(
                total=self._total,
                done=self._succeeded + self._failed,
                succeeded=self._succeeded,
                failed=self._failed,
            )


@dataclass
class BatchRun:
    """Ephemeral state of one scheduling invocation."""

    concurrency_limit: int
    tasks: List[Task]
    is_running: bool = False
    progress: ProgressTracker = field(default_factory=ProgressTracker)
    token: CancellationToken = field(default_factory=CancellationToken)
    on_update: Optional[UpdateCallback] = None
    finished: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled


__all__ = [
    "BatchProgress",
    "BatchRun",
    "ProgressTracker",
    "Task",
    "TaskStatus",
    "UpdateCallback",
    "rearm_task",
]
