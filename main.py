"""Command-line entry point for promptbatch."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Sequence, Set

from promptbatch.config import load_config
from promptbatch.logging_utils import configure_logging
from promptbatch.runtime import PromptBatchRuntime
from promptbatch.utils.csv_source import generate_sample_csv


def _id_list(value: str) -> Set[int]:
    try:
        ids = {int(part) for part in value.split(",") if part.strip()}
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid id list: {value!r}") from exc
    if not ids or any(item <= 0 for item in ids):
        raise argparse.ArgumentTypeError("ids must be positive integers")
    return ids


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="promptbatch", description="Generate images for a CSV of prompts.")
    parser.add_argument("csv", nargs="?", help="CSV file with sequence number and prompt columns")
    parser.add_argument("--config", help="additional YAML configuration file")
    parser.add_argument("--log-level", help="console log level (DEBUG, INFO, ...)")
    parser.add_argument("--concurrency", type=int, help="number of concurrent workers")
    parser.add_argument("--select", type=_id_list, help="comma-separated sequence numbers to run")
    parser.add_argument(
        "--attachment",
        action="append",
        default=[],
        metavar="PATH",
        help="reference image sent with prompts that mention its file name",
    )
    parser.add_argument(
        "--export",
        choices=("all", "succeeded", "failed", "none"),
        default="all",
        help="which tasks to export after the run",
    )
    parser.add_argument("--download", action="store_true", help="download generated images")
    parser.add_argument("--sample", metavar="PATH", help="write a sample CSV and exit")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.sample:
        Path(args.sample).write_text(generate_sample_csv(), encoding="utf-8")
        print(f"Sample CSV written to {args.sample}")
        return 0
    if not args.csv:
        parser.error("a CSV file is required")

    try:
        result = load_config(args.config, include_sources=True)
    except (FileNotFoundError, ValueError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1
    config, sources = result.config, result.sources
    logging_config = dict(config.get("logging", {}))
    if args.log_level:
        logging_config["console_level"] = args.log_level
    logging_config.setdefault("log_dir", config.get("paths", {}).get("logs"))
    logger = configure_logging(logging_config)
    logger.info("Loaded configuration from: %s", ", ".join(sources) or "<defaults>")

    runtime = PromptBatchRuntime(config, logger)
    attachments: List[str] = list(args.attachment)
    try:
        success = asyncio.run(
            runtime.run(
                args.csv,
                select=args.select,
                concurrency=args.concurrency,
                attachments=attachments,
                export_scope=args.export,
                download=args.download,
            )
        )
    except KeyboardInterrupt:  # pragma: no cover - manual interruption
        logger.warning("Interrupted by user.")
        return 1
    except Exception as exc:
        logger.exception("Runtime terminated due to unexpected error: %s", exc)
        return 1
    return 0 if success else 2


if __name__ == "__main__":
    sys.exit(main())
