"""In-memory job registry.

Holds the current snapshot of every tracked job. All reads hand out copies
and all writes go through ``update`` with a merge function, so a progress
callback and a pipeline step can never interleave inside a read-modify-write.
"""

import logging
import threading
from typing import Callable, Dict, Optional
from uuid import UUID

from ..errors import CapacityError
from ..models import Job

logger = logging.getLogger("vidpress.registry")

MergeFn = Callable[[Job], Job]


class JobRegistry:
    """Concurrency-safe map of job id to job snapshot."""

    def __init__(self, max_jobs: int = 500):
        self.max_jobs = max_jobs
        self._jobs: Dict[UUID, Job] = {}
        self._lock = threading.Lock()

    def create(self, job: Job) -> Job:
        """Start tracking a new job.

        Evicts the oldest finished jobs when the table is full.

        Raises:
            CapacityError: if the table is full of in-progress jobs
            ValueError: if the job id is already tracked
        """
        with self._lock:
            if job.job_id in self._jobs:
                raise ValueError(f"Job {job.job_id} already exists")
            if len(self._jobs) >= self.max_jobs:
                self._evict_locked(len(self._jobs) - self.max_jobs + 1)
            self._jobs[job.job_id] = job.model_copy(deep=True)
        return job

    def get(self, job_id: UUID) -> Optional[Job]:
        """Get a snapshot of a job, or None if it is not tracked."""
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job is not None else None

    def update(self, job_id: UUID, merge: MergeFn) -> Optional[Job]:
        """Atomically replace a job with ``merge(current)``.

        ``merge`` receives a copy of the current snapshot and returns the
        replacement. It runs under the registry lock and must not block.

        Returns:
            The stored job after the update, or None if the job is unknown
        """
        with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                return None
            updated = merge(current.model_copy(deep=True))
            self._jobs[job_id] = updated
            return updated.model_copy(deep=True)

    def delete(self, job_id: UUID) -> bool:
        """Stop tracking a job. Returns False if it was not tracked."""
        with self._lock:
            return self._jobs.pop(job_id, None) is not None

    def list(self) -> list[Job]:
        """Snapshots of all tracked jobs, oldest first."""
        with self._lock:
            jobs = [job.model_copy(deep=True) for job in self._jobs.values()]
        jobs.sort(key=lambda j: j.created_at)
        return jobs

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._jobs

    def _evict_locked(self, count: int):
        finished = sorted(
            (job for job in self._jobs.values() if job.is_terminal()),
            key=lambda j: j.completed_at or j.created_at,
        )
        if len(finished) < count:
            raise CapacityError()
        for job in finished[:count]:
            del self._jobs[job.job_id]
            logger.info(f"Evicted finished job {job.job_id} ({job.status.value})")
