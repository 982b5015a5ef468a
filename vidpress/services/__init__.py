"""Business logic services for vidpress."""

from .orchestrator import JobOrchestrator
from .progress import ProgressParser
from .registry import JobRegistry
from .retention import RetentionScheduler
from .runner import ProcessResult, ProcessRunner
from .storage import Storage

__all__ = [
    "JobOrchestrator",
    "JobRegistry",
    "ProcessResult",
    "ProcessRunner",
    "ProgressParser",
    "RetentionScheduler",
    "Storage",
]
