"""File storage service.

Local filesystem only: an input directory for uploads and downloader
output, and an output directory for finished artifacts. Every path is
derived from a fresh uuid or a job id, so two jobs never share a file.
"""

import logging
import re
import shutil
import time
from pathlib import Path
from typing import BinaryIO, Optional
from uuid import UUID, uuid4

from ..errors import FilesystemError, ValidationError

logger = logging.getLogger("vidpress.storage")

CHUNK_SIZE = 1024 * 1024
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(filename: str) -> str:
    """Reduce a client-supplied filename to a harmless basename."""
    name = Path(filename.replace("\\", "/")).name
    name = _UNSAFE_CHARS.sub("_", name).strip("._")
    return name[:100] or "video"


class Storage:
    """File storage abstraction layer."""

    def __init__(self, input_dir: Path, output_dir: Path):
        """Initialize storage and create both directories."""
        self.input_dir = Path(input_dir)
        self.output_dir = Path(output_dir)
        self.input_dir.mkdir(parents=True, exist_ok=True)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Storage initialized at {self.input_dir} and {self.output_dir}")

    def save_upload(self, filename: str, content: BinaryIO, max_bytes: Optional[int] = None) -> Path:
        """Save an uploaded file.

        Args:
            filename: Original filename
            content: File content as binary stream
            max_bytes: Reject uploads larger than this

        Returns:
            Path to saved file

        Raises:
            ValidationError: if the upload exceeds max_bytes
        """
        file_path = self.input_dir / f"{uuid4()}-{safe_filename(filename)}"

        written = 0
        with open(file_path, "wb") as f:
            while True:
                chunk = content.read(CHUNK_SIZE)
                if not chunk:
                    break
                written += len(chunk)
                if max_bytes is not None and written > max_bytes:
                    f.close()
                    file_path.unlink(missing_ok=True)
                    raise ValidationError(f"File exceeds {max_bytes // (1024 * 1024)}MB limit")
                f.write(chunk)

        logger.info(f"Saved upload to {file_path} ({written} bytes)")
        return file_path

    def fetch_path(self, job_id: UUID) -> Path:
        """Where the downloader writes the fetched video for a job."""
        return self.input_dir / f"{job_id}_raw.mp4"

    def output_path(self, job_id: UUID) -> Path:
        """Where the finished artifact for a job lives."""
        return self.output_dir / f"{job_id}.mp4"

    def exists(self, file_path: Path) -> bool:
        return Path(file_path).is_file()

    def size(self, file_path: Path) -> int:
        """Size of a file in bytes.

        Raises:
            FilesystemError: if the file can not be stat'ed
        """
        try:
            return Path(file_path).stat().st_size
        except OSError as e:
            raise FilesystemError() from e

    def move(self, src: Path, dst: Path) -> Path:
        """Move a file, across filesystems if needed."""
        try:
            shutil.move(str(src), str(dst))
        except OSError as e:
            raise FilesystemError() from e
        logger.info(f"Moved {src} to {dst}")
        return Path(dst)

    def delete_file(self, file_path: Path) -> bool:
        """Delete a file.

        Args:
            file_path: Path to file

        Returns:
            True if deleted, False if not found

        Raises:
            FilesystemError: for failures other than a missing file
        """
        try:
            Path(file_path).unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise FilesystemError() from e
        logger.info(f"Deleted {file_path}")
        return True

    def cleanup_job_files(self, job_id: UUID) -> int:
        """Delete intermediate files in the input directory for a job.

        Covers the downloader's partial files (``<id>_raw.mp4.part`` etc).
        """
        removed = 0
        for file_path in self.input_dir.glob(f"{job_id}*"):
            if self.delete_file(file_path):
                removed += 1
        return removed

    def stale_files(self, max_age_seconds: float) -> list[Path]:
        """Files in either directory not modified for ``max_age_seconds``."""
        cutoff = time.time() - max_age_seconds
        stale = []
        for directory in (self.input_dir, self.output_dir):
            for file_path in directory.iterdir():
                try:
                    if file_path.is_file() and file_path.stat().st_mtime < cutoff:
                        stale.append(file_path)
                except FileNotFoundError:
                    continue
        return stale
