"""Input and output helpers around the scheduler core."""

from .csv_source import CsvParseResult, CsvRow, build_tasks, generate_sample_csv, load_csv, parse_csv_content
from .export import download_images, export_tasks_to_csv, write_export

__all__ = [
    "CsvParseResult",
    "CsvRow",
    "build_tasks",
    "download_images",
    "export_tasks_to_csv",
    "generate_sample_csv",
    "load_csv",
    "parse_csv_content",
    "write_export",
]
