"""Data models for batch conversion and history records."""

import mimetypes
import os
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from svgwrap.core.constants import (
    EXTENSION_MIME_TYPES,
    HISTORY_SCHEMA_VERSION,
    SVG_EXTENSION,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


def strip_extension(file_name: str) -> str:
    """Return the file name without its last extension."""
    stem, dot, _ = file_name.rpartition(".")
    return stem if dot and stem else file_name


class TaskStatus(str, Enum):
    """Status of a single conversion task."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCEEDED, TaskStatus.FAILED)


# Batch aggregate status shares the task vocabulary.
BatchStatus = TaskStatus


class ImageInput(BaseModel):
    """A user-supplied image waiting to become a task."""

    model_config = ConfigDict(
        frozen=True, ser_json_bytes="base64", val_json_bytes="base64"
    )

    name: str = Field(..., min_length=1, description="Original file name")
    mime_type: str = Field(..., description="Declared MIME type")
    content: bytes = Field(..., repr=False, description="Raw image bytes")

    @field_validator("name")
    @classmethod
    def sanitize_name(cls, v: str) -> str:
        """Keep only the base name, never path components."""
        return os.path.basename(v.replace("\\", "/")) or v

    @field_validator("mime_type")
    @classmethod
    def normalize_mime_type(cls, v: str) -> str:
        return v.strip().lower()

    @property
    def size(self) -> int:
        return len(self.content)

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "ImageInput":
        """Read an image file, guessing its MIME type from the extension."""
        path = Path(path)
        mime_type, _ = mimetypes.guess_type(path.name)
        if not mime_type:
            mime_type = EXTENSION_MIME_TYPES.get(
                path.suffix.lower(), "application/octet-stream"
            )
        return cls(name=path.name, mime_type=mime_type, content=path.read_bytes())


class SourceImage(BaseModel):
    """Source reference owned by a task for its whole lifetime."""

    model_config = ConfigDict(ser_json_bytes="base64", val_json_bytes="base64")

    name: str
    mime_type: str
    size: int = Field(..., ge=0)
    content: bytes = Field(..., repr=False)


class Task(BaseModel):
    """One image's unit of conversion work."""

    model_config = ConfigDict(validate_assignment=True)

    task_id: str = Field(default_factory=new_id, frozen=True)
    source: SourceImage
    display_name: str
    status: TaskStatus = Field(default=TaskStatus.PENDING)
    progress: int = Field(default=0, ge=0, le=100)
    document: Optional[str] = Field(default=None, repr=False)
    width: Optional[int] = None
    height: Optional[int] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def output_name(self) -> str:
        return f"{self.display_name}{SVG_EXTENSION}"

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class Batch(BaseModel):
    """An ordered group of tasks submitted and tracked together."""

    model_config = ConfigDict(validate_assignment=True)

    batch_id: str = Field(default_factory=new_id, frozen=True)
    tasks: List[Task] = Field(..., min_length=1)
    progress: int = Field(default=0, ge=0, le=100)
    status: BatchStatus = Field(default=BatchStatus.PENDING)
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def total(self) -> int:
        return len(self.tasks)

    @property
    def terminal_count(self) -> int:
        return sum(1 for task in self.tasks if task.is_terminal)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class BatchStatistics(BaseModel):
    """Counts of task states within a batch."""

    total: int
    succeeded: int
    failed: int
    running: int
    pending: int
    success_rate: int = Field(..., ge=0, le=100)


class TaskEvent(BaseModel):
    """Snapshot emitted whenever a task changes state."""

    batch_id: str
    task: Task
    timestamp: datetime = Field(default_factory=utcnow)


class BatchEvent(BaseModel):
    """Snapshot emitted whenever the batch aggregate changes."""

    batch: Batch
    timestamp: datetime = Field(default_factory=utcnow)


class HistoryRecord(BaseModel):
    """A durable point-in-time snapshot of a batch."""

    record_id: str = Field(default_factory=new_id)
    schema_version: int = Field(default=HISTORY_SCHEMA_VERSION)
    batch: Batch
    saved_at: datetime = Field(default_factory=utcnow)


class StorageInfo(BaseModel):
    """Record count and a coarse size estimate for the history store."""

    count: int = Field(..., ge=0)
    estimated_size_bytes: int = Field(
        ..., ge=0, description="Estimate only: count times an assumed average"
    )


class DownloadInfo(BaseModel):
    """What a batch can currently deliver."""

    available_files: int
    total_files: int
    estimated_size: int = Field(..., description="Sum of document lengths")
    can_download: bool


class DeliveryReport(BaseModel):
    """Outcome of delivering several artifacts one after another."""

    delivered: List[str] = Field(default_factory=list)
    failed: List[Tuple[str, str]] = Field(default_factory=list)

    @property
    def all_failed(self) -> bool:
        return not self.delivered and bool(self.failed)
