"""Service wiring for the API.

The orchestrator and the stores it owns are built once, on first use, and
handed to route handlers through FastAPI's dependency system so tests can
swap in their own instance.
"""

from typing import Optional

from .config import Settings, settings
from .presets import PRESETS, PresetCatalog
from .services import JobOrchestrator, JobRegistry, ProcessRunner, RetentionScheduler, Storage

_orchestrator: Optional[JobOrchestrator] = None


def build_orchestrator(config: Settings = settings) -> JobOrchestrator:
    """Construct an orchestrator and its collaborators from settings."""
    registry = JobRegistry(max_jobs=config.max_tracked_jobs)
    return JobOrchestrator(
        registry=registry,
        runner=ProcessRunner(
            default_timeout=config.process_timeout_seconds,
            output_limit=config.diagnostic_buffer_kb * 1024,
        ),
        scheduler=RetentionScheduler(registry),
        storage=Storage(config.input_dir, config.output_dir),
        presets=PresetCatalog(PRESETS, default=config.default_preset),
        settings=config,
    )


def get_orchestrator() -> JobOrchestrator:
    """FastAPI dependency returning the process-wide orchestrator."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_orchestrator()
    return _orchestrator


async def shutdown_orchestrator():
    """Stop the process-wide orchestrator if it was ever built."""
    global _orchestrator
    if _orchestrator is not None:
        await _orchestrator.shutdown()
        _orchestrator = None
