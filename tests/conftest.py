"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List

import pytest

from promptbatch.core.generation import GenerationError, GenerationResult
from promptbatch.core.retry_policy import RetryPolicy
from promptbatch.core.task import Task


class FakeService:
    """Scripted generation service keyed by prompt text."""

    def __init__(self, *, delay: float = 0.0, errors: Dict[str, Callable[[], Exception]] | None = None) -> None:
        self.delay = delay
        self.errors = dict(errors or {})
        self.calls: List[str] = []
        self.active = 0
        self.max_active = 0
        self.cancelled = 0
        self.closed = False

    async def generate(self, prompt, *, attachments=(), options=None):
        self.calls.append(prompt)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            factory = self.errors.get(prompt)
            error = factory() if factory is not None else None
            if error is not None:
                raise error
            return GenerationResult(result_reference=f"https://img.test/{len(self.calls)}.png", remote_id="remote-1")
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        finally:
            self.active -= 1

    async def aclose(self) -> None:
        self.closed = True


class RecordingPolicy(RetryPolicy):
    """Retry policy that records nominal delays and waits a thousandth of them."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        object.__setattr__(self, "delays", [])

    def backoff(self, attempts: int) -> float:
        delay = super().backoff(attempts)
        self.delays.append(delay)
        return delay / 1000


class UpdateLog:
    def __init__(self) -> None:
        self.snapshots: List[Task] = []

    def __call__(self, task: Task) -> None:
        self.snapshots.append(task)

    def for_task(self, sequence_number: int) -> List[Task]:
        return [snap for snap in self.snapshots if snap.sequence_number == sequence_number]


def rate_limited() -> Exception:
    return GenerationError("Rate limited: Please slow down your requests")


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("promptbatch.test")


@pytest.fixture
def make_tasks() -> Callable[[int], List[Task]]:
    def _make(count: int) -> List[Task]:
        return [Task(sequence_number=idx, prompt=f"prompt {idx}") for idx in range(1, count + 1)]

    return _make


@pytest.fixture
def updates() -> UpdateLog:
    return UpdateLog()
