"""Export task outcomes to CSV and download generated images."""

from __future__ import annotations

import csv
import io
import logging
import mimetypes
import time
from pathlib import Path
from typing import Iterable, List, Sequence
from urllib.parse import urlparse

import requests

from promptbatch.core.task import Task, TaskStatus

EXPORT_HEADERS = ("sequence_number", "prompt", "status", "attempts", "image_url", "error")
EXPORT_SCOPES = {
    "all": ("batch-results", None),
    "succeeded": ("successful-tasks", TaskStatus.SUCCEEDED),
    "failed": ("failed-tasks", TaskStatus.FAILED),
}


def export_tasks_to_csv(tasks: Iterable[Task]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(EXPORT_HEADERS)
    for task in tasks:
        writer.writerow(
            [
                task.sequence_number,
                task.prompt,
                task.status.value,
                task.attempts,
                task.result_reference or "",
                task.error_detail or "",
            ]
        )
    return buffer.getvalue()


def filter_tasks(tasks: Iterable[Task], scope: str) -> List[Task]:
    if scope not in EXPORT_SCOPES:
        raise ValueError(f"Unknown export scope: {scope}")
    status = EXPORT_SCOPES[scope][1]
    return [task for task in tasks if status is None or task.status is status]


def write_export(
    tasks: Sequence[Task],
    directory: str | Path,
    *,
    scope: str = "all",
    timestamp: str | None = None,
) -> Path:
    """Write the tasks in ``scope`` to a timestamped CSV and return its path."""

    selected = filter_tasks(tasks, scope)
    prefix = EXPORT_SCOPES[scope][0]
    target_dir = Path(directory)
    target_dir.mkdir(parents=True, exist_ok=True)
    stamp = timestamp or time.strftime("%Y-%m-%dT%H-%M-%S", time.localtime())
    path = target_dir / f"{prefix}-{stamp}.csv"
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    # utf-8-sig so spreadsheet tools detect the encoding of non-ASCII prompts
    tmp_path.write_text(export_tasks_to_csv(selected), encoding="utf-8-sig")
    tmp_path.replace(path)
    return path


def download_images(
    tasks: Iterable[Task],
    directory: str | Path,
    *,
    timeout: float,
    logger: logging.Logger,
    session: requests.Session | None = None,
) -> List[Path]:
    """Fetch the image of every succeeded task; failures are logged and skipped."""

    target_dir = Path(directory)
    target_dir.mkdir(parents=True, exist_ok=True)
    http = session or requests.Session()
    written: List[Path] = []
    try:
        for task in tasks:
            if task.status is not TaskStatus.SUCCEEDED or not task.result_reference:
                continue
            url = task.result_reference
            try:
                response = http.get(url, timeout=timeout)
                response.raise_for_status()
            except requests.RequestException as exc:
                logger.warning("Unable to download image for task #%d from %s: %s", task.sequence_number, url, exc)
                continue
            suffix = _guess_suffix(url, response.headers.get("Content-Type"))
            path = target_dir / f"{task.sequence_number}{suffix}"
            path.write_bytes(response.content)
            written.append(path)
            logger.debug("Saved image for task #%d to %s", task.sequence_number, path)
    finally:
        if session is None:
            http.close()
    logger.info("Downloaded %d image(s) to %s", len(written), target_dir)
    return written


def _guess_suffix(url: str, content_type: str | None) -> str:
    if content_type:
        guessed = mimetypes.guess_extension(content_type.split(";")[0].strip())
        if guessed:
            return ".jpg" if guessed == ".jpe" else guessed
    suffix = Path(urlparse(url).path).suffix
    return suffix if suffix else ".png"


__all__ = [
    "EXPORT_HEADERS",
    "download_images",
    "export_tasks_to_csv",
    "filter_tasks",
    "write_export",
]
