"""Request/response models for the HTTP API."""

from datetime import datetime
from typing import Dict, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from .job import CompressionStats, JobStatus


class RemoteRequest(BaseModel):
    """Request to fetch (and possibly compress) a remote video."""
    url: str = Field(default="", description="Video page or media URL")
    preset: Optional[str] = Field(default=None, description="Preset: balanced, efficient or minimal (default if omitted)")

    class Config:
        json_schema_extra = {
            "example": {
                "url": "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
                "preset": "efficient",
            }
        }


class SubmitResponse(BaseModel):
    """Response after submitting a job."""
    success: bool = True
    job_id: UUID
    status: JobStatus
    status_url: str
    message: str = "Processing started"

    class Config:
        json_schema_extra = {
            "example": {
                "success": True,
                "job_id": "550e8400-e29b-41d4-a716-446655440000",
                "status": "queued",
                "status_url": "/api/status/550e8400-e29b-41d4-a716-446655440000",
                "message": "Processing started",
            }
        }


class JobStatusResponse(BaseModel):
    """Response for job status check."""
    job_id: UUID
    status: JobStatus
    progress: int
    preset: str
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    download_url: Optional[str] = None
    error: Optional[str] = None
    stats: Optional[CompressionStats] = None

    class Config:
        json_schema_extra = {
            "example": {
                "job_id": "550e8400-e29b-41d4-a716-446655440000",
                "status": "complete",
                "progress": 100,
                "preset": "efficient",
                "created_at": "2026-02-11T18:00:00Z",
                "completed_at": "2026-02-11T18:03:10Z",
                "download_url": "/api/download/550e8400-e29b-41d4-a716-446655440000",
                "stats": {
                    "original_size": 2097152000,
                    "compressed_size": 734003200,
                    "reduction": 65,
                },
            }
        }


class CancelResponse(BaseModel):
    """Response for a cancellation request."""
    job_id: UUID
    cancelled: bool
    status: JobStatus


class HealthReport(BaseModel):
    """External tool availability and runtime counters."""
    status: str  # "ok" or "degraded"
    tools: Dict[str, bool]
    active_processes: int = 0
    tracked_jobs: int = 0
    pending_deletions: int = 0
