"""Core scheduling components for promptbatch."""

from .cancellation import CallCancelled, CancellationToken, OperationCancelled
from .executor import TaskExecutor
from .generation import (
    Attachment,
    GenerationClient,
    GenerationError,
    GenerationOptions,
    GenerationResult,
    SimulatedGenerationClient,
    build_client,
)
from .graceful_shutdown import GracefulShutdown
from .retry_policy import RetryPolicy
from .scheduler import BatchScheduler
from .task import BatchProgress, BatchRun, ProgressTracker, Task, TaskStatus
from .task_queue import TaskQueue

__all__ = [
    "Attachment",
    "BatchProgress",
    "BatchRun",
    "BatchScheduler",
    "CallCancelled",
    "CancellationToken",
    "GenerationClient",
    "GenerationError",
    "GenerationOptions",
    "GenerationResult",
    "GracefulShutdown",
    "OperationCancelled",
    "ProgressTracker",
    "RetryPolicy",
    "SimulatedGenerationClient",
    "Task",
    "TaskExecutor",
    "TaskQueue",
    "TaskStatus",
    "build_client",
]
