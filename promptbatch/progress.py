"""Console progress bar fed by scheduler update notifications."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from tqdm import tqdm

from promptbatch.core.scheduler import BatchScheduler
from promptbatch.core.task import BatchRun, Task


class ProgressReporter:
    """Update callback that mirrors the current run's counters into a tqdm bar."""

    def __init__(
        self,
        scheduler: BatchScheduler,
        *,
        logger: logging.Logger,
        enabled: bool = True,
        bar_factory: Callable[..., Any] = tqdm,
    ) -> None:
        self.scheduler = scheduler
        self.logger = logger
        self.enabled = enabled
        self._bar_factory = bar_factory
        self._bar: Any = None
        self._run: Optional[BatchRun] = None
        self.updates = 0

    def __call__(self, task: Task) -> None:
        self.updates += 1
        self.logger.debug(
            "Task #%d -> %s (attempt %d)", task.sequence_number, task.status.value, task.attempts
        )
        run = self.scheduler.current_run
        if run is None:
            return
        progress = run.progress.snapshot()
        if self._bar is None:
            self._bar = self._bar_factory(
                total=progress.total, unit="task", desc="Generating", disable=not self.enabled
            )
        elif run is not self._run:
            self._bar.reset(total=progress.total)
        self._run = run
        self._bar.n = progress.done
        self._bar.set_postfix(succeeded=progress.succeeded, failed=progress.failed, refresh=False)
        self._bar.refresh()

    def close(self) -> None:
        if self._bar is not None:
            self._bar.close()
            self._bar = None
        self._run = None


__all__ = ["ProgressReporter"]
