"""Runtime orchestration for promptbatch."""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any, Collection, Dict, Iterable, List, Sequence

from promptbatch.core import BatchScheduler, GracefulShutdown, RetryPolicy, Task, TaskStatus
from promptbatch.core.generation import GenerationOptions, build_client, load_attachments
from promptbatch.progress import ProgressReporter
from promptbatch.utils.csv_source import build_tasks, load_csv
from promptbatch.utils.export import download_images, write_export


class PromptBatchRuntime:
    def __init__(self, config: Dict[str, Any], logger) -> None:
        self.config = config
        self.logger = logger
        self.tasks: List[Task] = []

    async def run(
        self,
        csv_path: str | Path,
        *,
        select: Collection[int] | None = None,
        concurrency: int | None = None,
        attachments: Sequence[str | Path] = (),
        export_scope: str = "all",
        download: bool = False,
    ) -> bool:
        """Process a CSV batch; return True when every selected task succeeded."""

        if self.config.get("testing", {}).get("dry_run"):
            self.logger.info("Dry-run mode enabled; configuration validated successfully.")
            return True

        try:
            parsed = load_csv(csv_path)
        except (FileNotFoundError, ValueError) as exc:
            self.logger.error("Unable to load CSV: %s", exc)
            return False
        for error in parsed.errors:
            self.logger.warning("%s", error)
        self.logger.info(
            "Loaded %d valid row(s) from %s (%d invalid)",
            len(parsed.valid_rows),
            parsed.source,
            parsed.invalid_rows,
        )
        if not parsed.valid_rows:
            self.logger.error("No valid rows to process.")
            return False

        self.tasks = build_tasks(parsed.valid_rows, select)
        targets = [task for task in self.tasks if task.selected]
        if not targets:
            self.logger.warning("None of the requested tasks exist in the batch.")
            return False

        generation_cfg = self.config.get("generation", {})
        try:
            loaded_attachments = load_attachments([*generation_cfg.get("attachments", []), *attachments])
        except FileNotFoundError as exc:
            self.logger.error("%s", exc)
            return False

        scheduler_cfg = self.config.get("scheduler", {})
        limit = int(concurrency or scheduler_cfg.get("concurrency", 1))
        max_concurrency = int(scheduler_cfg.get("max_concurrency", 3))
        if not 1 <= limit <= max_concurrency:
            self.logger.error("Concurrency must be between 1 and %d (got %d)", max_concurrency, limit)
            return False

        client = build_client(self.config, self.logger)
        scheduler = BatchScheduler(
            client,
            logger=self.logger,
            retry_policy=RetryPolicy.from_config(scheduler_cfg.get("retry", {})),
            attachments=loaded_attachments,
            options=GenerationOptions.from_config(generation_cfg),
        )
        reporter = ProgressReporter(
            scheduler,
            logger=self.logger,
            enabled=bool(self.config.get("progress", {}).get("enabled", True)),
        )
        shutdown = GracefulShutdown(on_trigger=scheduler.stop)
        shutdown.install()
        started = time.time()
        try:
            run = await scheduler.run(self.tasks, limit, reporter)
            passes = int(scheduler_cfg.get("retry_failed_passes", 0))
            while run is not None and passes > 0 and not shutdown.is_triggered():
                passes -= 1
                run = await scheduler.retry_failed(self.tasks, limit, reporter)
        finally:
            shutdown.uninstall()
            reporter.close()
            await client.aclose()

        summary = self._summarise(targets, started, interrupted=shutdown.is_triggered())
        paths = self.config.get("paths", {})
        self._export(paths, export_scope, summary)
        if download:
            download_images(
                self.tasks,
                paths.get("images", "data/images"),
                timeout=float(self.config.get("download", {}).get("timeout", 60)),
                logger=self.logger,
            )
        return not shutdown.is_triggered() and all(task.status is TaskStatus.SUCCEEDED for task in targets)

    def _summarise(self, targets: Iterable[Task], started: float, *, interrupted: bool) -> Dict[str, Any]:
        counts = {status.value: 0 for status in TaskStatus}
        for task in targets:
            counts[task.status.value] += 1
        summary = {
            "started_at": time.strftime("%Y-%m-%dT%H:%M:%S", time.localtime(started)),
            "elapsed_seconds": round(time.time() - started, 3),
            "interrupted": interrupted,
            "tasks": sum(counts.values()),
            "statuses": counts,
            "failures": {
                str(task.sequence_number): task.error_detail
                for task in targets
                if task.status is TaskStatus.FAILED
            },
        }
        self.logger.info(
            "Batch complete: %d succeeded, %d failed, %d stopped, %d not started",
            counts["succeeded"],
            counts["failed"],
            counts["stopped"],
            counts["idle"],
        )
        return summary

    def _export(self, paths: Dict[str, Any], scope: str, summary: Dict[str, Any]) -> None:
        if scope == "none":
            return
        directory = Path(paths.get("exports", "data/exports"))
        export_path = write_export(self.tasks, directory, scope=scope)
        self.logger.info("Results exported to %s", export_path)
        summary_path = export_path.with_name(export_path.stem + "-summary.json")
        summary_path.write_text(json.dumps(summary, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        self.logger.debug("Run summary written to %s", summary_path)


__all__ = ["PromptBatchRuntime"]
