"""Data models for vidpress."""

from .api import (
    CancelResponse,
    HealthReport,
    JobStatusResponse,
    RemoteRequest,
    SubmitResponse,
)
from .job import TERMINAL_STATUSES, CompressionStats, Job, JobSource, JobStatus

__all__ = [
    "Job",
    "JobSource",
    "JobStatus",
    "TERMINAL_STATUSES",
    "CompressionStats",
    "RemoteRequest",
    "SubmitResponse",
    "JobStatusResponse",
    "CancelResponse",
    "HealthReport",
]
