"""Domain models and DTOs."""

from flockcare.domain.batch import Batch, BatchStatus
from flockcare.domain.schedule import TaskCategory, TaskDefinition, TaskPriority
from flockcare.domain.task import (
    CompletionRecord,
    CompletionResult,
    CompletionStats,
    OverlayEntry,
    OverlayStatus,
    StatusChange,
    TaskInstance,
)


__all__ = [
    "Batch",
    "BatchStatus",
    "CompletionRecord",
    "CompletionResult",
    "CompletionStats",
    "OverlayEntry",
    "OverlayStatus",
    "StatusChange",
    "TaskCategory",
    "TaskDefinition",
    "TaskInstance",
    "TaskPriority",
]
