"""Exception types shared by the job pipeline and the HTTP layer.

Every exception carries a ``message`` that is safe to show to a client.
Tool diagnostics (command lines, internal paths, raw output) stay on the
exception object for server-side logging only.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .services.runner import ProcessResult


class VidpressError(Exception):
    """Base class for all vidpress errors."""

    message = "Internal error"

    def __init__(self, message: Optional[str] = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class ValidationError(VidpressError):
    """Missing or invalid input at intake. No job is created."""

    message = "Invalid request"


class NotFoundError(VidpressError):
    """Unknown job or missing artifact."""

    message = "Not found"


class CapacityError(VidpressError):
    """The job table is full of in-progress jobs."""

    message = "Server is busy, try again later"


class FilesystemError(VidpressError):
    """A stat, rename or unlink failed for a reason other than a missing file."""

    message = "Failed to process video file"


class JobCancelled(VidpressError):
    """The job reached a terminal state before its next step could start."""

    message = "Job cancelled"


class ExternalToolFailure(VidpressError):
    """The downloader or transcoder exited non-zero, was killed or timed out."""

    def __init__(self, result: "ProcessResult", action: str = "process"):
        self.result = result
        self.action = action
        if result.cancelled:
            message = "Job cancelled"
        elif result.timed_out:
            message = "Processing timed out"
        else:
            message = f"Failed to {action} video"
        super().__init__(message)

    def describe(self) -> str:
        """Describe the failure for server logs."""
        result = self.result
        if result.cancelled:
            reason = "cancelled"
        elif result.timed_out:
            reason = f"timed out after {result.elapsed:.1f}s"
        elif result.returncode is None:
            reason = "could not be started"
        elif result.signal is not None:
            reason = f"killed by signal {result.signal}"
        else:
            reason = f"exited with code {result.returncode}"
        return f"{result.executable} {reason}"
