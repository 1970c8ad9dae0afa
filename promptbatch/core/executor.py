"""Drives a single task through generation, retries and result application."""

from __future__ import annotations

import logging
from typing import Dict, Sequence

from .cancellation import CallCancelled, OperationCancelled
from .generation import (
    Attachment,
    GenerationError,
    GenerationOptions,
    GenerationResult,
    GenerationService,
)
from .retry_policy import RetryPolicy
from .task import BatchRun, Task, TaskStatus, UpdateCallback


class TaskExecutor:
    def __init__(
        self,
        service: GenerationService,
        *,
        retry_policy: RetryPolicy,
        logger: logging.Logger,
        attachments: Sequence[Attachment] = (),
        options: GenerationOptions | None = None,
    ) -> None:
        self.service = service
        self.retry_policy = retry_policy
        self.logger = logger
        self.attachments = tuple(attachments)
        self.options = options

    async def execute(self, task: Task, run: BatchRun, on_update: UpdateCallback) -> None:
        if not run.is_running:
            self._mark_stopped(task, on_update)
            return

        while True:
            task.status = TaskStatus.GENERATING
            task.attempts += 1
            self.notify(task, on_update)
            self.logger.debug(
                "Task #%d attempt %d started", task.sequence_number, task.attempts, extra=_context(task)
            )

            try:
                result = await run.token.guard(
                    self.service.generate(task.prompt, attachments=self.attachments, options=self.options)
                )
            except OperationCancelled:
                self._mark_stopped(task, on_update)
                return
            except (GenerationError, CallCancelled) as exc:
                message = str(exc) or exc.__class__.__name__
            except Exception as exc:
                message = f"{exc.__class__.__name__}: {exc}"
                self.logger.debug("Task #%d raised unexpected error", task.sequence_number, exc_info=True)
            else:
                if run.cancelled:
                    self._mark_stopped(task, on_update)
                    return
                self._mark_succeeded(task, run, result, on_update)
                return

            if run.cancelled:
                self._mark_stopped(task, on_update)
                return

            if not self.retry_policy.should_retry(message, task.attempts):
                self._mark_failed(task, run, message, on_update)
                return

            delay = self.retry_policy.backoff(task.attempts)
            self.logger.warning(
                "Task #%d attempt %d failed (%s); retrying in %.1fs",
                task.sequence_number,
                task.attempts,
                message,
                delay,
                extra=_context(task),
            )
            if await run.token.sleep(delay):
                self._mark_stopped(task, on_update)
                return
            task.status = TaskStatus.IDLE
            self.notify(task, on_update)

    def _mark_succeeded(
        self,
        task: Task,
        run: BatchRun,
        result: GenerationResult,
        on_update: UpdateCallback,
    ) -> None:
        task.result_reference = result.result_reference
        task.remote_id = result.remote_id
        task.error_detail = None
        task.status = TaskStatus.SUCCEEDED
        task.selected = False
        run.progress.record_success()
        self.logger.info(
            "Task #%d succeeded after %d attempt(s) in %.1fs",
            task.sequence_number,
            task.attempts,
            result.elapsed,
            extra=_context(task),
        )
        self.notify(task, on_update)

    def _mark_failed(self, task: Task, run: BatchRun, message: str, on_update: UpdateCallback) -> None:
        task.result_reference = None
        task.error_detail = message
        task.status = TaskStatus.FAILED
        run.progress.record_failure()
        self.logger.error(
            "Task #%d failed after %d attempt(s): %s",
            task.sequence_number,
            task.attempts,
            message,
            extra=_context(task),
        )
        self.notify(task, on_update)

    def _mark_stopped(self, task: Task, on_update: UpdateCallback) -> None:
        if task.status is TaskStatus.STOPPED:
            return
        task.status = TaskStatus.STOPPED
        self.logger.debug("Task #%d stopped", task.sequence_number, extra=_context(task))
        self.notify(task, on_update)

    def notify(self, task: Task, on_update: UpdateCallback) -> None:
        try:
            on_update(task.snapshot())
        except Exception:
            self.logger.exception("Update callback failed for task #%d", task.sequence_number)


def _context(task: Task) -> Dict[str, int]:
    return {"task": task.sequence_number, "attempt": task.attempts}


__all__ = ["TaskExecutor"]
