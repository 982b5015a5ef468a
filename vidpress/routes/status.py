"""Status endpoints - check job status, download results, cancel jobs."""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse

from ..dependencies import get_orchestrator
from ..errors import NotFoundError
from ..models import CancelResponse, Job, JobStatus, JobStatusResponse
from ..services import JobOrchestrator

logger = logging.getLogger("vidpress.routes.status")

router = APIRouter()


def _status_response(job: Job) -> JobStatusResponse:
    response = JobStatusResponse(
        job_id=job.job_id,
        status=job.status,
        progress=job.progress,
        preset=job.preset,
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
        error=job.error_message,
        stats=job.stats,
    )
    if job.status == JobStatus.COMPLETE and job.output_path:
        response.download_url = f"/api/download/{job.job_id}"
    return response


@router.get("/status/{job_id}", response_model=JobStatusResponse)
async def get_job_status(
    job_id: UUID,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """Check the status of a job.

    When complete, the response includes a download_url and size stats.
    """
    job = orchestrator.get_status(job_id)
    if job is None:
        raise NotFoundError("Job not found")
    return _status_response(job)


@router.get("/download/{job_id}")
async def download_result(
    job_id: UUID,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """Download the finished video for a completed job.

    The file stays available for a short grace period after the first
    download, then it is deleted.
    """
    path = await orchestrator.get_artifact_path(job_id)
    if path is None:
        raise NotFoundError("File not found")

    logger.info(f"Serving {path.name} for job {job_id}")
    return FileResponse(
        path=path,
        media_type="video/mp4",
        filename=orchestrator.settings.download_filename,
    )


@router.delete("/jobs/{job_id}", response_model=CancelResponse)
async def cancel_job(
    job_id: UUID,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """Cancel a queued or running job."""
    if orchestrator.get_status(job_id) is None:
        raise NotFoundError("Job not found")

    cancelled = await orchestrator.cancel(job_id)
    job = orchestrator.get_status(job_id)
    return CancelResponse(
        job_id=job_id,
        cancelled=cancelled,
        status=job.status if job else JobStatus.FAILED,
    )
