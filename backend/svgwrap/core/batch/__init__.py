"""Batch processing module for wrapping multiple images."""

from .manager import BatchOrchestrator
from .models import (
    Batch,
    BatchEvent,
    BatchStatistics,
    BatchStatus,
    HistoryRecord,
    ImageInput,
    StorageInfo,
    Task,
    TaskEvent,
    TaskStatus,
)

__all__ = [
    "BatchOrchestrator",
    "Batch",
    "BatchEvent",
    "BatchStatistics",
    "BatchStatus",
    "HistoryRecord",
    "ImageInput",
    "StorageInfo",
    "Task",
    "TaskEvent",
    "TaskStatus",
]
