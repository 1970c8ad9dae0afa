"""Logger setup: console lines above the progress bar, rotating file log."""

from __future__ import annotations

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Mapping

from tqdm import tqdm

LOGGER_NAME = "promptbatch"
LOG_FILENAME = "promptbatch.log"
CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
# Per-task fields the executor attaches through ``extra``.
TASK_FIELDS = ("task", "attempt")


class JsonFormatter(logging.Formatter):
    """One JSON object per line; task events carry their task and attempt."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in TASK_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


class TqdmHandler(logging.StreamHandler):
    """Console handler that prints above an active progress bar."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            tqdm.write(self.format(record), file=self.stream)
            self.flush()
        except Exception:  # pragma: no cover - mirrors logging.Handler semantics
            self.handleError(record)


def configure_logging(config: Mapping[str, object]) -> logging.Logger:
    """Attach console and (when ``log_dir`` is set) file handlers to the project logger."""

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = TqdmHandler(sys.stderr)
    console.setLevel(_level(config.get("console_level"), logging.INFO))
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    logger.addHandler(console)

    log_dir = config.get("log_dir") or config.get("logs")
    if log_dir:
        logger.addHandler(
            _file_handler(
                Path(str(log_dir)),
                _level(config.get("file_level"), logging.DEBUG),
                json_logs=bool(config.get("json_logs")),
            )
        )
    return logger


def _file_handler(directory: Path, level: int, *, json_logs: bool) -> logging.Handler:
    directory.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        directory / LOG_FILENAME,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(JsonFormatter() if json_logs else logging.Formatter(FILE_FORMAT))
    return handler


def _level(value: object, default: int) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        resolved = logging.getLevelName(value.strip().upper())
        if isinstance(resolved, int):
            return resolved
    return default


__all__ = ["LOGGER_NAME", "configure_logging"]
