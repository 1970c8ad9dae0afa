from __future__ import annotations

import csv
import io
import logging
from pathlib import Path

import pytest
import requests

from promptbatch.core.task import Task, TaskStatus
from promptbatch.utils.export import (
    EXPORT_HEADERS,
    download_images,
    export_tasks_to_csv,
    filter_tasks,
    write_export,
)


@pytest.fixture
def finished_tasks() -> list[Task]:
    return [
        Task(1, "a cat, sleeping", TaskStatus.SUCCEEDED, 1, result_reference="https://cdn.test/1.png"),
        Task(2, 'say "hi"', TaskStatus.FAILED, 3, error_detail="Rate limited"),
        Task(3, "idle one"),
    ]


class _Response:
    def __init__(self, content: bytes, content_type: str | None = None, status: int = 200) -> None:
        self.content = content
        self.headers = {"Content-Type": content_type} if content_type else {}
        self.status_code = status

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class _Session:
    def __init__(self, responses) -> None:
        self.responses = responses
        self.requested: list[str] = []

    def get(self, url: str, timeout: float):
        self.requested.append(url)
        outcome = self.responses[url]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def test_export_csv_round_trips_through_csv_reader(finished_tasks) -> None:
    rows = list(csv.reader(io.StringIO(export_tasks_to_csv(finished_tasks))))

    assert tuple(rows[0]) == EXPORT_HEADERS
    assert rows[1] == ["1", "a cat, sleeping", "succeeded", "1", "https://cdn.test/1.png", ""]
    assert rows[2] == ["2", 'say "hi"', "failed", "3", "", "Rate limited"]
    assert rows[3] == ["3", "idle one", "idle", "0", "", ""]


def test_filter_tasks_by_scope(finished_tasks) -> None:
    assert [task.sequence_number for task in filter_tasks(finished_tasks, "all")] == [1, 2, 3]
    assert [task.sequence_number for task in filter_tasks(finished_tasks, "succeeded")] == [1]
    assert [task.sequence_number for task in filter_tasks(finished_tasks, "failed")] == [2]
    with pytest.raises(ValueError):
        filter_tasks(finished_tasks, "stopped")


def test_write_export_names_file_by_scope_and_timestamp(tmp_path: Path, finished_tasks) -> None:
    path = write_export(finished_tasks, tmp_path / "exports", scope="failed", timestamp="2024-01-02T03-04-05")

    assert path == tmp_path / "exports" / "failed-tasks-2024-01-02T03-04-05.csv"
    text = path.read_text(encoding="utf-8-sig")
    assert text.splitlines()[1].startswith('2,"say ""hi""",failed')
    assert not list((tmp_path / "exports").glob("*.tmp"))


def test_download_images_saves_succeeded_tasks(tmp_path: Path) -> None:
    tasks = [
        Task(1, "a", TaskStatus.SUCCEEDED, 1, result_reference="https://cdn.test/1"),
        Task(2, "b", TaskStatus.SUCCEEDED, 1, result_reference="https://cdn.test/2.webp"),
        Task(3, "c", TaskStatus.SUCCEEDED, 1, result_reference="https://cdn.test/3.png"),
        Task(4, "d", TaskStatus.FAILED, 3),
    ]
    session = _Session(
        {
            "https://cdn.test/1": _Response(b"jpeg", "image/jpeg"),
            "https://cdn.test/2.webp": _Response(b"webp"),
            "https://cdn.test/3.png": requests.ConnectionError("unreachable"),
        }
    )

    written = download_images(
        tasks, tmp_path, timeout=5, logger=logging.getLogger("promptbatch.test"), session=session
    )

    assert written == [tmp_path / "1.jpg", tmp_path / "2.webp"]
    assert (tmp_path / "1.jpg").read_bytes() == b"jpeg"
    assert len(session.requested) == 3
