"""Submit endpoints - upload a video or point at a remote one."""

import asyncio
import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from ..dependencies import get_orchestrator
from ..errors import ValidationError, VidpressError
from ..models import JobStatus, RemoteRequest, SubmitResponse
from ..services import JobOrchestrator

logger = logging.getLogger("vidpress.routes.submit")

router = APIRouter()


def _submitted(orchestrator: JobOrchestrator, job_id) -> SubmitResponse:
    job = orchestrator.get_status(job_id)
    return SubmitResponse(
        job_id=job_id,
        status=job.status if job else JobStatus.QUEUED,
        status_url=f"/api/status/{job_id}",
    )


@router.post("/compress", response_model=SubmitResponse)
async def compress_upload(
    video: Annotated[Optional[UploadFile], File(description="Video file to compress")] = None,
    preset: Annotated[Optional[str], Form(description="Preset: balanced, efficient or minimal")] = None,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """Upload a video for compression.

    Returns a job_id immediately; poll GET /api/status/{job_id} for progress.
    A missing or unknown preset falls back to the configured default.
    """
    if video is None or not video.filename:
        raise ValidationError("No file uploaded")

    source_path = await asyncio.to_thread(
        orchestrator.storage.save_upload,
        video.filename,
        video.file,
        orchestrator.settings.max_upload_bytes,
    )
    try:
        job_id = await orchestrator.submit_upload(source_path, preset)
    except VidpressError:
        await asyncio.to_thread(orchestrator.storage.delete_file, source_path)
        raise

    return _submitted(orchestrator, job_id)


@router.post("/download", response_model=SubmitResponse)
async def download_remote(
    request: RemoteRequest,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """Fetch a remote video, compressing it if it exceeds the preset's size ceiling."""
    job_id = await orchestrator.submit_remote(request.url, request.preset)
    return _submitted(orchestrator, job_id)
