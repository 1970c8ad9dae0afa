"""Concurrent batch scheduling over a shared task queue."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Iterable, Optional, Sequence

from .executor import TaskExecutor
from .generation import Attachment, GenerationOptions, GenerationService
from .retry_policy import RetryPolicy
from .task import BatchRun, ProgressTracker, Task, TaskStatus, UpdateCallback, rearm_task
from .task_queue import TaskQueue


class BatchScheduler:
    """Runs selected tasks with a bounded number of concurrent workers.

    Only one run is active at a time and a finished run is superseded by the
    next one. ``stop`` is safe to call at any moment.
    """

    def __init__(
        self,
        service: GenerationService,
        *,
        logger: logging.Logger,
        retry_policy: RetryPolicy | None = None,
        attachments: Sequence[Attachment] = (),
        options: GenerationOptions | None = None,
    ) -> None:
        self.logger = logger
        self.retry_policy = retry_policy or RetryPolicy()
        self.executor = TaskExecutor(
            service,
            retry_policy=self.retry_policy,
            logger=logger,
            attachments=attachments,
            options=options,
        )
        self.current_run: Optional[BatchRun] = None

    @property
    def is_running(self) -> bool:
        return bool(self.current_run and self.current_run.is_running)

    # ------------------------------------------------------------------
    async def run(
        self,
        tasks: Iterable[Task],
        concurrency_limit: int,
        on_update: UpdateCallback,
    ) -> Optional[BatchRun]:
        if int(concurrency_limit) < 1:
            raise ValueError("concurrency_limit must be a positive integer")
        selected = [task for task in tasks if task.selected]
        if not selected:
            self.logger.info("No selected tasks; nothing to run.")
            return None

        previous = self.current_run
        if previous is not None and previous.is_running:
            raise RuntimeError("A run is already in progress; stop it before starting another")
        if previous is not None:
            # a stopped run may still be unwinding its in-flight calls
            await previous.finished.wait()

        run = BatchRun(
            concurrency_limit=int(concurrency_limit),
            tasks=selected,
            progress=ProgressTracker(len(selected)),
            on_update=on_update,
        )
        run.is_running = True
        self.current_run = run

        for task in selected:
            rearm_task(task)
            self.executor.notify(task, on_update)
        queue = TaskQueue(selected)

        self.logger.info(
            "Starting run over %d task(s) with %d worker(s)", len(selected), run.concurrency_limit
        )
        started = time.perf_counter()
        workers = [
            asyncio.create_task(self._worker(run, queue, on_update), name=f"worker-{idx}")
            for idx in range(run.concurrency_limit)
        ]
        try:
            await asyncio.gather(*workers)
        except asyncio.CancelledError:
            self.stop(run)
            raise
        finally:
            run.is_running = False
            run.finished.set()

        progress = run.progress.snapshot()
        self.logger.info(
            "Run %s in %.1fs: %d/%d done (%d succeeded, %d failed)",
            "stopped" if run.cancelled else "finished",
            time.perf_counter() - started,
            progress.done,
            progress.total,
            progress.succeeded,
            progress.failed,
        )
        return run

    def start(
        self,
        tasks: Iterable[Task],
        concurrency_limit: int,
        on_update: UpdateCallback,
    ) -> "asyncio.Task[Optional[BatchRun]]":
        """Schedule :meth:`run` on the running loop and return its handle."""

        return asyncio.create_task(self.run(list(tasks), concurrency_limit, on_update), name="batch-run")

    async def retry_failed(
        self,
        tasks: Iterable[Task],
        concurrency_limit: int,
        on_update: UpdateCallback,
    ) -> Optional[BatchRun]:
        """Re-run only the tasks that ended ``failed``."""

        task_list = list(tasks)
        failed = [task for task in task_list if task.status is TaskStatus.FAILED]
        if not failed:
            return None
        for task in task_list:
            task.selected = task.status is TaskStatus.FAILED
        self.logger.info("Retrying %d failed task(s)", len(failed))
        return await self.run(failed, concurrency_limit, on_update)

    def stop(self, run: Optional[BatchRun] = None) -> None:
        """Cancel a run and mark its in-flight tasks as stopped.

        Defaults to the current run. Calling it on a finished or already
        stopped run does nothing.
        """

        run = run or self.current_run
        if run is None or not run.is_running:
            return
        run.is_running = False
        run.token.cancel("stopped by user")
        reconciled = 0
        for task in run.tasks:
            if task.status is TaskStatus.GENERATING:
                task.status = TaskStatus.STOPPED
                reconciled += 1
                if run.on_update is not None:
                    self.executor.notify(task, run.on_update)
        self.logger.warning("Run stopped; %d in-flight task(s) interrupted", reconciled)

    # ------------------------------------------------------------------
    async def _worker(self, run: BatchRun, queue: TaskQueue, on_update: UpdateCallback) -> None:
        while run.is_running:
            task = queue.take_next()
            if task is None:
                break
            if task.status is not TaskStatus.IDLE:
                self.logger.debug("Skipping task #%d in status %s", task.sequence_number, task.status.value)
                continue
            await self.executor.execute(task, run, on_update)


__all__ = ["BatchScheduler"]
