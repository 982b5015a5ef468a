"""Job orchestrator.

Accepts jobs, queues them for a fixed pool of asyncio workers and drives
each one through either the upload pipeline (transcode the uploaded file)
or the remote pipeline (download, then transcode only if the result is
over the preset's size ceiling). All job state lives in the registry;
workers report back only through it.
"""

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Optional, Sequence, Union
from urllib.parse import urlparse
from uuid import UUID

from ..config import Settings
from ..errors import (
    ExternalToolFailure,
    FilesystemError,
    JobCancelled,
    ValidationError,
    VidpressError,
)
from ..models import CompressionStats, HealthReport, Job, JobSource, JobStatus
from ..presets import Preset, PresetCatalog
from . import commands
from .progress import ProgressParser
from .registry import JobRegistry
from .retention import RetentionScheduler
from .runner import OutputSink, ProcessResult, ProcessRunner
from .storage import Storage

logger = logging.getLogger("vidpress.orchestrator")

# Progress shown as soon as a pipeline step starts
COMPRESS_START_PROGRESS = 5
FETCH_START_PROGRESS = 5

MAX_URL_LENGTH = 2048
ALLOWED_URL_SCHEMES = {"http", "https"}

Pipeline = Callable[[Job, Preset], Awaitable[None]]


def validate_url(url: Optional[str]) -> str:
    """Check that ``url`` is a plain http(s) URL.

    Raises:
        ValidationError: if it is missing or not acceptable
    """
    url = (url or "").strip()
    if not url:
        raise ValidationError("URL is required")
    if len(url) > MAX_URL_LENGTH or any(ch.isspace() or ord(ch) < 32 for ch in url):
        raise ValidationError("Invalid URL")
    parsed = urlparse(url)
    if parsed.scheme.lower() not in ALLOWED_URL_SCHEMES or not parsed.netloc:
        raise ValidationError("URL must start with http:// or https://")
    return url


def _mb(size: int) -> str:
    return f"{size / (1024 * 1024):.2f}"


class JobOrchestrator:
    """Runs download/compress jobs on a bounded pool of workers."""

    def __init__(
        self,
        registry: JobRegistry,
        runner: ProcessRunner,
        scheduler: RetentionScheduler,
        storage: Storage,
        presets: PresetCatalog,
        settings: Settings,
    ):
        self.registry = registry
        self.runner = runner
        self.scheduler = scheduler
        self.storage = storage
        self.presets = presets
        self.settings = settings
        self._queue: Optional[asyncio.Queue] = None
        self._workers: list[asyncio.Task] = []
        self._sweeper: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def start(self):
        """Start the worker pool and the stale file sweeper."""
        if self._workers:
            return
        self._queue = asyncio.Queue()
        count = max(1, self.settings.max_concurrent_jobs)
        self._workers = [
            asyncio.create_task(self._worker(n), name=f"vidpress-worker-{n}")
            for n in range(count)
        ]
        if self.settings.sweep_interval_minutes > 0:
            self._sweeper = asyncio.create_task(self._sweep_periodically(), name="vidpress-sweeper")
        logger.info(f"Started {count} job workers")

    async def shutdown(self):
        """Stop workers, kill running processes and drop pending timers."""
        tasks = [*self._workers]
        if self._sweeper is not None:
            tasks.append(self._sweeper)
        for task in tasks:
            task.cancel()
        await self.runner.terminate_all()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._workers = []
        self._sweeper = None
        self._queue = None
        self.scheduler.shutdown()
        logger.info("Job workers stopped")

    async def join(self):
        """Wait until every queued job has been processed."""
        if self._queue is not None:
            await self._queue.join()

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    async def submit_upload(self, source_path: Union[str, Path, None], preset_name: Optional[str] = None) -> UUID:
        """Queue an uploaded file for compression and return its job id."""
        if not source_path:
            raise ValidationError("No file uploaded")
        path = Path(source_path)
        if not await asyncio.to_thread(path.is_file):
            raise ValidationError("No file uploaded")

        preset = self.presets.resolve(preset_name)
        job = Job(source=JobSource.UPLOAD, preset=preset.name, input_ref=str(path))
        self.registry.create(job)
        self._enqueue(job.job_id, self._run_upload)
        logger.info(f"New compression job {job.job_id}: {path.name} with preset '{preset.name}'")
        return job.job_id

    async def submit_remote(self, url: Optional[str], preset_name: Optional[str] = None) -> UUID:
        """Queue a remote video for download and return its job id."""
        url = validate_url(url)
        preset = self.presets.resolve(preset_name)
        job = Job(source=JobSource.REMOTE, preset=preset.name, input_ref=url)
        self.registry.create(job)
        self._enqueue(job.job_id, self._run_remote)
        logger.info(f"New download job {job.job_id} with preset '{preset.name}'")
        return job.job_id

    def _enqueue(self, job_id: UUID, pipeline: Pipeline):
        self.start()
        self._queue.put_nowait((job_id, pipeline))

    # ------------------------------------------------------------------
    # Queries and client actions
    # ------------------------------------------------------------------

    def get_status(self, job_id: UUID) -> Optional[Job]:
        """Snapshot of a job, or None if unknown."""
        return self.registry.get(job_id)

    async def get_artifact_path(self, job_id: UUID) -> Optional[Path]:
        """Path of a finished artifact, or None if there is nothing to serve.

        Serving an artifact swaps its long retention timer for a short grace
        period, long enough for the client to retry the download once.
        """
        job = self.registry.get(job_id)
        if job is None or job.status != JobStatus.COMPLETE or not job.output_path:
            return None
        path = Path(job.output_path)
        if not await asyncio.to_thread(self.storage.exists, path):
            return None
        # the retention timer may have fired while the file was being checked
        if path not in self.scheduler or job_id not in self.registry:
            return None
        self.scheduler.arm(path, self.settings.download_grace_seconds, job_id)
        return path

    async def cancel(self, job_id: UUID) -> bool:
        """Cancel a job that has not finished yet.

        Returns:
            True if the job was running or queued and is now being failed
        """
        job = self.registry.get(job_id)
        if job is None or job.is_terminal():
            return False
        if self.runner.cancel(job_id):
            # the pipeline sees the killed process and fails the job
            return True
        if not self._fail(job_id, JobCancelled.message):
            return False
        logger.info(f"Cancelled job {job_id} before its next step")
        if job.status == JobStatus.QUEUED and job.source == JobSource.UPLOAD:
            await self._discard(Path(job.input_ref))
        return True

    async def health_probe(self) -> HealthReport:
        """Check that both external tools answer a version query."""
        tools = {
            "downloader": self.settings.downloader_bin,
            "transcoder": self.settings.transcoder_bin,
        }
        results: Sequence[ProcessResult] = await asyncio.gather(
            *(
                self.runner.run(
                    executable,
                    commands.version_args(executable),
                    timeout=self.settings.health_timeout_seconds,
                )
                for executable in tools.values()
            )
        )
        available = {}
        for name, result in zip(tools, results):
            available[name] = result.ok
            if not result.ok:
                logger.warning(f"Health probe: {name} ({result.executable}) unavailable")
        return HealthReport(
            status="ok" if all(available.values()) else "degraded",
            tools=available,
            active_processes=self.runner.active_count,
            tracked_jobs=len(self.registry),
            pending_deletions=len(self.scheduler),
        )

    async def sweep_stale_files(self) -> int:
        """Remove old files that no live job or timer accounts for.

        Returns:
            Number of files removed
        """
        max_age = self.settings.stale_file_minutes * 60
        candidates = await asyncio.to_thread(self.storage.stale_files, max_age)
        active = [job for job in self.registry.list() if not job.is_terminal()]
        active_ids = {str(job.job_id) for job in active}
        active_inputs = {Path(job.input_ref) for job in active if job.source == JobSource.UPLOAD}

        removed = 0
        for path in candidates:
            if path in self.scheduler or path in active_inputs:
                continue
            if any(path.name.startswith(job_id) for job_id in active_ids):
                continue
            if await self._discard(path):
                removed += 1
        return removed

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    async def _worker(self, number: int):
        while True:
            job_id, pipeline = await self._queue.get()
            try:
                await self._process_job(job_id, pipeline)
            except Exception:
                logger.exception(f"Worker {number} failed while handling job {job_id}")
            finally:
                self._queue.task_done()

    async def _sweep_periodically(self):
        interval = self.settings.sweep_interval_minutes * 60
        while True:
            await asyncio.sleep(interval)
            try:
                removed = await self.sweep_stale_files()
            except Exception:
                logger.exception("Stale file sweep failed")
                continue
            if removed:
                logger.info(f"Swept {removed} stale files")

    async def _process_job(self, job_id: UUID, pipeline: Pipeline):
        job = self._transition(job_id, JobStatus.PROCESSING, started_at=datetime.utcnow())
        if job is None or job.status != JobStatus.PROCESSING:
            logger.info(f"Skipping job {job_id}: no longer queued")
            return

        preset = self.presets.resolve(job.preset)
        logger.info(f"Processing job {job_id} ({job.source.value}) with preset '{preset.name}'")

        try:
            await pipeline(job, preset)
        except ExternalToolFailure as e:
            logger.error(f"Job {job_id}: {e.describe()}")
            summary = e.result.summary()
            if summary:
                logger.error(f"Job {job_id} tool output:\n{summary}")
            self._fail(job_id, e.message)
        except VidpressError as e:
            logger.error(f"Job {job_id} failed: {e.message}", exc_info=e.__cause__ is not None)
            self._fail(job_id, e.message)
        except Exception:
            logger.exception(f"Unexpected error processing job {job_id}")
            self._fail(job_id, "Unexpected processing error")
        finally:
            final = self.registry.get(job_id)
            if final is not None and final.status == JobStatus.FAILED:
                await self._discard_job_files(job)

    # ------------------------------------------------------------------
    # Pipelines
    # ------------------------------------------------------------------

    async def _run_upload(self, job: Job, preset: Preset):
        input_path = Path(job.input_ref)
        output_path = self.storage.output_path(job.job_id)
        original_size = await asyncio.to_thread(self.storage.size, input_path)

        if self.settings.upload_passthrough and original_size <= preset.max_size_bytes:
            logger.info(f"Job {job.job_id}: {_mb(original_size)}MB is within the ceiling, not compressing")
            await asyncio.to_thread(self.storage.move, input_path, output_path)
            self._complete(job.job_id, output_path, original_size, original_size)
            return

        self._transition(job.job_id, JobStatus.COMPRESSING, progress=COMPRESS_START_PROGRESS)
        try:
            await self._transcode(job.job_id, input_path, output_path, preset)
        finally:
            await self._discard(input_path)

        compressed_size = await asyncio.to_thread(self.storage.size, output_path)
        self._complete(job.job_id, output_path, original_size, compressed_size)

    async def _run_remote(self, job: Job, preset: Preset):
        fetch_path = self.storage.fetch_path(job.job_id)
        output_path = self.storage.output_path(job.job_id)

        self._transition(job.job_id, JobStatus.FETCHING, progress=FETCH_START_PROGRESS)
        await self._invoke(
            job.job_id,
            self.settings.downloader_bin,
            commands.downloader_args(job.input_ref, preset, fetch_path),
            action="download",
        )
        if not await asyncio.to_thread(self.storage.exists, fetch_path):
            raise FilesystemError("Downloaded file is missing")
        fetched_size = await asyncio.to_thread(self.storage.size, fetch_path)

        if fetched_size > preset.max_size_bytes:
            logger.info(
                f"Compressing job {job.job_id}: {_mb(fetched_size)}MB > {_mb(preset.max_size_bytes)}MB"
            )
            self._transition(job.job_id, JobStatus.COMPRESSING, progress=COMPRESS_START_PROGRESS)
            try:
                await self._transcode(job.job_id, fetch_path, output_path, preset)
            finally:
                await self._discard(fetch_path)
            compressed_size = await asyncio.to_thread(self.storage.size, output_path)
        else:
            await asyncio.to_thread(self.storage.move, fetch_path, output_path)
            compressed_size = fetched_size

        self._complete(job.job_id, output_path, fetched_size, compressed_size)

    async def _transcode(self, job_id: UUID, input_path: Path, output_path: Path, preset: Preset):
        parser = ProgressParser(lambda percent: self._report_progress(job_id, percent))
        await self._invoke(
            job_id,
            self.settings.transcoder_bin,
            commands.transcoder_args(input_path, output_path, preset),
            action="compress",
            sink=parser.feed,
        )
        parser.close()

    async def _invoke(
        self,
        job_id: UUID,
        executable: str,
        argv: Sequence[str],
        action: str,
        sink: Optional[OutputSink] = None,
    ) -> ProcessResult:
        current = self.registry.get(job_id)
        if current is None or current.is_terminal():
            raise JobCancelled()
        result = await self.runner.run(
            executable,
            argv,
            sink=sink,
            timeout=self.settings.process_timeout_seconds,
            job_id=job_id,
        )
        result.check(action)
        logger.info(f"Job {job_id}: {Path(executable).name} finished in {result.elapsed:.1f}s")
        return result

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def _transition(self, job_id: UUID, status: JobStatus, progress: Optional[int] = None, **changes) -> Optional[Job]:
        """Move a job to a non-terminal status. Terminal jobs are left alone."""
        def merge(job: Job) -> Job:
            if job.is_terminal():
                return job
            job.status = status
            if progress is not None:
                job.progress = max(job.progress, progress)
            for name, value in changes.items():
                setattr(job, name, value)
            return job

        return self.registry.update(job_id, merge)

    def _report_progress(self, job_id: UUID, percent: int):
        def merge(job: Job) -> Job:
            if job.status != JobStatus.COMPRESSING:
                return job
            job.progress = max(job.progress, min(percent, 99))
            return job

        self.registry.update(job_id, merge)

    def _finish(self, job_id: UUID, status: JobStatus, **changes) -> bool:
        """Write the single terminal update for a job.

        Returns:
            False if the job was already terminal (or unknown)
        """
        applied = False

        def merge(job: Job) -> Job:
            nonlocal applied
            if job.is_terminal():
                return job
            applied = True
            job.status = status
            job.completed_at = datetime.utcnow()
            for name, value in changes.items():
                setattr(job, name, value)
            return job

        self.registry.update(job_id, merge)
        return applied

    def _complete(self, job_id: UUID, output_path: Path, original_size: int, compressed_size: int) -> bool:
        stats = CompressionStats.from_sizes(original_size, compressed_size)
        applied = self._finish(
            job_id,
            JobStatus.COMPLETE,
            progress=100,
            output_path=str(output_path),
            stats=stats,
        )
        if applied:
            self.scheduler.arm(output_path, self.settings.retention_seconds, job_id)
            logger.info(
                f"Job {job_id} complete: {_mb(original_size)}MB -> {_mb(compressed_size)}MB "
                f"({stats.reduction}% reduction)"
            )
        return applied

    def _fail(self, job_id: UUID, message: str) -> bool:
        applied = self._finish(job_id, JobStatus.FAILED, error_message=message)
        if applied:
            logger.info(f"Job {job_id} failed: {message}")
        return applied

    # ------------------------------------------------------------------
    # File cleanup
    # ------------------------------------------------------------------

    async def _discard(self, path: Path) -> bool:
        try:
            return await asyncio.to_thread(self.storage.delete_file, path)
        except FilesystemError as e:
            logger.warning(f"Could not delete {path}: {e.__cause__}")
            return False

    async def _discard_job_files(self, job: Job):
        """Remove everything a failed job produced or consumed."""
        if job.source == JobSource.UPLOAD:
            await self._discard(Path(job.input_ref))
        try:
            await asyncio.to_thread(self.storage.cleanup_job_files, job.job_id)
        except FilesystemError as e:
            logger.warning(f"Could not clean up files for job {job.job_id}: {e.__cause__}")
        await self._discard(self.storage.output_path(job.job_id))
