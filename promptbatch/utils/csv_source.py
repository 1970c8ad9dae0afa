"""Loading and validation of prompt batches from CSV files."""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from pathlib import Path
from typing import Collection, Iterable, List, Sequence

from promptbatch.core.task import Task

HEADER_MARKERS_FIRST = ("id", "序号")
HEADER_MARKERS_SECOND = ("prompt", "提示词")
VALID_EXTENSIONS = (".csv",)


@dataclass(frozen=True)
class CsvRow:
    sequence_number: int
    prompt: str


@dataclass
class CsvParseResult:
    valid_rows: List[CsvRow] = field(default_factory=list)
    invalid_rows: int = 0
    total_rows: int = 0
    errors: List[str] = field(default_factory=list)
    source: str | None = None


def parse_csv_content(content: str) -> CsvParseResult:
    """Parse ``sequence,prompt`` records, reporting rather than raising on bad rows."""

    if content.startswith("\ufeff"):
        content = content[1:]
    records = [
        row
        for row in csv.reader(io.StringIO(content, newline=""))
        if any(cell.strip() for cell in row)
    ]
    if not records:
        return CsvParseResult(errors=["CSV file is empty"])

    start = 1 if _looks_like_header(records[0]) else 0
    result = CsvParseResult(total_rows=len(records) - start)
    seen: set[int] = set()

    for index in range(start, len(records)):
        line = index + 1
        columns = [cell.strip() for cell in records[index]]
        if len(columns) < 2:
            result.invalid_rows += 1
            result.errors.append(f"Row {line}: expected at least 2 columns, found {len(columns)}")
            continue
        sequence = _parse_sequence(columns[0])
        if sequence is None:
            result.invalid_rows += 1
            result.errors.append(f'Row {line}: sequence number must be a positive integer, got "{columns[0]}"')
            continue
        prompt = columns[1]
        if not prompt:
            result.invalid_rows += 1
            result.errors.append(f"Row {line}: prompt must not be empty")
            continue
        if sequence in seen:
            result.invalid_rows += 1
            result.errors.append(f"Row {line}: duplicate sequence number {sequence}")
            continue
        seen.add(sequence)
        result.valid_rows.append(CsvRow(sequence_number=sequence, prompt=prompt))
    return result


def load_csv(path: str | Path) -> CsvParseResult:
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"CSV file not found: {file_path}")
    if file_path.suffix.lower() not in VALID_EXTENSIONS:
        raise ValueError(f"Not a CSV file: {file_path}")
    result = parse_csv_content(file_path.read_text(encoding="utf-8"))
    result.source = file_path.name
    return result


def build_tasks(rows: Iterable[CsvRow], select: Collection[int] | None = None) -> List[Task]:
    """Create tasks in row order; only ``select`` ids are selected when given."""

    return [
        Task(
            sequence_number=row.sequence_number,
            prompt=row.prompt,
            selected=select is None or row.sequence_number in select,
        )
        for row in rows
    ]


def generate_sample_csv() -> str:
    return (
        "id,prompt\n"
        "1,\"A small blue cat, pixel art\"\n"
        "2,\"City skyline at sunset, oil painting\"\n"
        "3,\"A futuristic robot, science fiction\"\n"
        "4,\"A wooden cabin in the forest, fairy tale\"\n"
        "5,\"An abstract artwork, modern style\"\n"
    )


def _looks_like_header(columns: Sequence[str]) -> bool:
    if len(columns) < 2:
        return False
    first = columns[0].strip().lower()
    second = columns[1].strip().lower()
    return (
        not _is_number(first)
        or any(marker in first for marker in HEADER_MARKERS_FIRST)
        or any(marker in second for marker in HEADER_MARKERS_SECOND)
    )


def _is_number(value: str) -> bool:
    try:
        float(value)
    except ValueError:
        return False
    return True


def _parse_sequence(value: str) -> int | None:
    try:
        number = float(value)
    except ValueError:
        return None
    if not number.is_integer() or number <= 0:
        return None
    return int(number)


__all__ = [
    "CsvParseResult",
    "CsvRow",
    "build_tasks",
    "generate_sample_csv",
    "load_csv",
    "parse_csv_content",
]
