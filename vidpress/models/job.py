"""Job models for async processing."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    """Status of a processing job."""
    QUEUED = "queued"
    PROCESSING = "processing"
    FETCHING = "fetching"
    COMPRESSING = "compressing"
    COMPLETE = "complete"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETE, JobStatus.FAILED})


class JobSource(str, Enum):
    """How the input video reached the server."""
    UPLOAD = "upload"
    REMOTE = "remote"


class CompressionStats(BaseModel):
    """Size statistics for a completed job."""
    original_size: int  # bytes
    compressed_size: int  # bytes
    reduction: int = 0  # percent

    @classmethod
    def from_sizes(cls, original_size: int, compressed_size: int) -> "CompressionStats":
        if original_size > 0:
            reduction = round((1 - compressed_size / original_size) * 100)
        else:
            reduction = 0
        return cls(
            original_size=original_size,
            compressed_size=compressed_size,
            reduction=reduction,
        )


class Job(BaseModel):
    """Represents a download and/or compression job."""
    job_id: UUID = Field(default_factory=uuid4)
    source: JobSource
    status: JobStatus = JobStatus.QUEUED
    preset: str = "balanced"

    # File references
    input_ref: str  # uploaded file path or source URL
    output_path: Optional[str] = None

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    # Processing info
    progress: int = 0  # 0-100
    error_message: Optional[str] = None
    stats: Optional[CompressionStats] = None

    class Config:
        json_schema_extra = {
            "example": {
                "job_id": "550e8400-e29b-41d4-a716-446655440000",
                "source": "upload",
                "status": "complete",
                "preset": "efficient",
                "input_ref": "/tmp/vidpress/input/0b6d...-clip.mp4",
                "progress": 100,
                "created_at": "2026-02-11T18:00:00Z",
                "completed_at": "2026-02-11T18:03:10Z",
            }
        }

    def is_terminal(self) -> bool:
        """Check if the job reached complete or failed."""
        return self.status in TERMINAL_STATUSES
