"""Timed deletion of job files.

Every artifact gets exactly one pending deletion. Arming a path that already
has a timer replaces it, so a retrieval can swap the long retention timer for
a short grace period without two timers racing on the same file.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Union
from uuid import UUID

from .registry import JobRegistry

logger = logging.getLogger("vidpress.retention")

PathLike = Union[str, Path]


@dataclass(eq=False)
class ScheduledDeletion:
    """A pending removal of one file."""
    path: Path
    delay: float
    fire_at: float  # event loop time
    job_id: Optional[UUID] = None
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    def remaining(self) -> float:
        return max(0.0, self.fire_at - asyncio.get_running_loop().time())


class RetentionScheduler:
    """Schedules, replaces and cancels file deletions."""

    def __init__(self, registry: JobRegistry):
        self.registry = registry
        self._pending: Dict[Path, ScheduledDeletion] = {}

    def arm(self, path: PathLike, delay: float, job_id: Optional[UUID] = None) -> ScheduledDeletion:
        """Delete ``path`` after ``delay`` seconds, replacing any pending timer.

        If ``job_id`` is given, the job is dropped from the registry when the
        file is deleted.
        """
        key = Path(path)
        self.cancel(key)

        loop = asyncio.get_running_loop()
        entry = ScheduledDeletion(
            path=key,
            delay=delay,
            fire_at=loop.time() + delay,
            job_id=job_id,
        )
        entry.task = loop.create_task(self._fire_later(entry))
        self._pending[key] = entry
        logger.debug(f"Armed deletion of {key} in {delay:.0f}s")
        return entry

    def cancel(self, path: PathLike) -> bool:
        """Cancel the pending deletion of ``path``, if any."""
        entry = self._pending.pop(Path(path), None)
        if entry is None:
            return False
        entry.task.cancel()
        logger.debug(f"Cancelled deletion of {entry.path}")
        return True

    def pending(self, path: PathLike) -> Optional[ScheduledDeletion]:
        return self._pending.get(Path(path))

    def shutdown(self):
        """Cancel every pending deletion."""
        for entry in self._pending.values():
            entry.task.cancel()
        self._pending.clear()

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, path: object) -> bool:
        return isinstance(path, (str, Path)) and Path(path) in self._pending

    async def _fire_later(self, entry: ScheduledDeletion):
        await asyncio.sleep(entry.delay)

        # Detach before suspending again; a cancel() from here on is a no-op.
        if self._pending.get(entry.path) is not entry:
            return
        del self._pending[entry.path]

        try:
            removed = await asyncio.to_thread(_remove, entry.path)
        except OSError as e:
            # the job is released anyway; the stale file sweep retries the file
            logger.error(f"Failed to delete {entry.path}: {e}")
        else:
            if removed:
                logger.info(f"Deleted expired file {entry.path}")
            else:
                logger.debug(f"Expired file {entry.path} was already gone")

        if entry.job_id is not None and self.registry.delete(entry.job_id):
            logger.info(f"Released job {entry.job_id}")


def _remove(path: Path) -> bool:
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True
