from __future__ import annotations

import threading

from promptbatch.core.task import BatchProgress, ProgressTracker, Task, TaskStatus, rearm_task
from promptbatch.core.task_queue import TaskQueue


def test_queue_returns_tasks_in_order_exactly_once() -> None:
    tasks = [Task(sequence_number=idx, prompt=f"p{idx}") for idx in (3, 1, 2)]
    queue = TaskQueue(tasks)

    taken = [queue.take_next() for _ in range(4)]

    assert [task.sequence_number for task in taken[:3]] == [3, 1, 2]
    assert taken[3] is None
    assert queue.take_next() is None


def test_queue_is_safe_across_threads() -> None:
    tasks = [Task(sequence_number=idx, prompt="p") for idx in range(1, 501)]
    queue = TaskQueue(tasks)
    seen: list[int] = []
    lock = threading.Lock()

    def consume() -> None:
        while (task := queue.take_next()) is not None:
            with lock:
                seen.append(task.sequence_number)

    threads = [threading.Thread(target=consume) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(seen) == list(range(1, 501))


def test_rearm_resets_lifecycle_fields() -> None:
    task = Task(
        sequence_number=1,
        prompt="p",
        status=TaskStatus.SUCCEEDED,
        attempts=2,
        result_reference="https://img/1.png",
        remote_id="abc",
        selected=True,
    )

    rearm_task(task)

    assert task.status is TaskStatus.IDLE
    assert task.attempts == 0
    assert task.result_reference is None and task.error_detail is None and task.remote_id is None
    assert task.selected is True


def test_progress_tracker_keeps_done_consistent() -> None:
    tracker = ProgressTracker(5)
    tracker.record_success()
    tracker.record_failure()
    tracker.record_success()

    snapshot = tracker.snapshot()
    assert (snapshot.total, snapshot.done, snapshot.succeeded, snapshot.failed) == (5, 3, 2, 1)
    assert ProgressTracker().snapshot() == BatchProgress(total=0, done=0, succeeded=0, failed=0)


def test_terminal_statuses() -> None:
    assert TaskStatus.SUCCEEDED.is_terminal and TaskStatus.FAILED.is_terminal
    assert not TaskStatus.STOPPED.is_terminal
    assert TaskStatus("generating") is TaskStatus.GENERATING
