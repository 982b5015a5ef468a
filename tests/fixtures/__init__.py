"""Test fixtures for vidpress tests."""

import asyncio
import time
from dataclasses import replace
from pathlib import Path
from typing import Dict, Optional

from vidpress.config import Settings
from vidpress.models import Job
from vidpress.presets import PRESETS, PresetCatalog
from vidpress.services import (
    JobOrchestrator,
    JobRegistry,
    ProcessResult,
    RetentionScheduler,
    Storage,
)

# What ffmpeg prints to stderr for a 10 second clip
FFMPEG_OUTPUT = (
    "ffmpeg version 6.0 Copyright (c) 2000-2023 the FFmpeg developers\n"
    "Input #0, mov,mp4,m4a,3gp,3g2,mj2, from 'input.mp4':\n"
    "  Duration: 00:00:10.00, start: 0.000000, bitrate: 1205 kb/s\n"
    "Output #0, mp4, to 'output.mp4':\n"
    "frame=   60 fps=0.0 q=28.0 size=     256kB time=00:00:02.00 bitrate=1048.6kbits/s speed=3.9x\r"
    "frame=  150 fps=148 q=28.0 size=     512kB time=00:00:05.00 bitrate= 838.9kbits/s speed=4.9x\r"
    "frame=  240 fps=150 q=28.0 size=     768kB time=00:00:08.00 bitrate= 786.4kbits/s speed=5.0x\r"
    "frame=  300 fps=151 q=-1.0 Lsize=    1000kB time=00:00:10.00 bitrate= 819.2kbits/s speed=5.0x\n"
)

# Size ceilings scaled down to bytes so tests can use tiny files
TEST_CEILINGS = {"balanced": "4K", "efficient": "1K", "minimal": "512"}


def make_presets(default: str = "balanced") -> PresetCatalog:
    return PresetCatalog(
        {name: replace(preset, max_size=TEST_CEILINGS[name]) for name, preset in PRESETS.items()},
        default=default,
    )


def make_settings(base_dir: Path, **overrides) -> Settings:
    values = dict(
        input_dir=base_dir / "input",
        output_dir=base_dir / "output",
        process_timeout_seconds=5,
        retention_minutes=30,
        download_grace_seconds=60,
        sweep_interval_minutes=0,
        max_concurrent_jobs=2,
        max_upload_size_mb=1,
    )
    values.update(overrides)
    return Settings(**values)


class RecordingRegistry(JobRegistry):
    """JobRegistry that remembers every (status, progress) it stored."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.history: Dict = {}

    def create(self, job: Job) -> Job:
        self.history[job.job_id] = [(job.status, job.progress)]
        return super().create(job)

    def update(self, job_id, merge):
        updated = super().update(job_id, merge)
        if updated is not None:
            self.history.setdefault(job_id, []).append((updated.status, updated.progress))
        return updated


class FakeRunner:
    """Stands in for ProcessRunner; writes files instead of running tools."""

    def __init__(self, downloader: str = "yt-dlp", transcoder: str = "ffmpeg"):
        self.downloader = downloader
        self.transcoder = transcoder
        self.calls = []
        self.fetch_size = 300
        self.output_size = 500
        self.returncodes: Dict[str, int] = {}
        self.timeouts = set()
        self.available = {downloader: True, transcoder: True}
        self.output = FFMPEG_OUTPUT
        self.chunk_size = 7
        self.gate: Optional[asyncio.Event] = None
        self.concurrent = 0
        self.max_concurrent = 0
        self._active: Dict = {}

    @property
    def active_count(self) -> int:
        return len(self._active)

    def is_running(self, job_id) -> bool:
        return job_id in self._active

    def calls_to(self, executable: str) -> list:
        return [argv for exe, argv in self.calls if exe == executable]

    def cancel(self, job_id) -> bool:
        if job_id not in self._active:
            return False
        self._active[job_id] = True
        return True

    async def terminate_all(self):
        for job_id in self._active:
            self._active[job_id] = True

    async def run(self, executable, argv, sink=None, timeout=None, job_id=None):
        argv = list(argv)
        self.calls.append((executable, argv))
        if argv in (["--version"], ["-version"]):
            return ProcessResult(executable, 0 if self.available.get(executable) else 127)

        self._active[job_id] = False
        self.concurrent += 1
        self.max_concurrent = max(self.max_concurrent, self.concurrent)
        try:
            while self.gate is not None and not self.gate.is_set() and not self._active[job_id]:
                await asyncio.sleep(0.01)
            if self._active[job_id]:
                return ProcessResult(executable, -9, "killed", cancelled=True)
            if executable in self.timeouts:
                return ProcessResult(executable, -9, "", timed_out=True)
            if executable == self.downloader:
                return self._download(argv)
            return self._transcode(argv, sink)
        finally:
            self.concurrent -= 1
            self._active.pop(job_id, None)

    def _download(self, argv) -> ProcessResult:
        target = Path(argv[argv.index("-o") + 1])
        code = self.returncodes.get(self.downloader, 0)
        if code:
            Path(f"{target}.part").write_bytes(b"\0" * 10)
            return ProcessResult(self.downloader, code, "ERROR: Unsupported URL")
        target.write_bytes(b"\0" * self.fetch_size)
        return ProcessResult(self.downloader, 0, "[download] 100%")

    def _transcode(self, argv, sink) -> ProcessResult:
        target = Path(argv[-1])
        if sink is not None:
            for start in range(0, len(self.output), self.chunk_size):
                sink(self.output[start:start + self.chunk_size])
        code = self.returncodes.get(self.transcoder, 0)
        if code:
            target.write_bytes(b"\0" * 10)
            return ProcessResult(self.transcoder, code, "Conversion failed!")
        target.write_bytes(b"\0" * self.output_size)
        return ProcessResult(self.transcoder, 0, self.output)


def make_orchestrator(settings: Settings, runner: FakeRunner, registry: Optional[JobRegistry] = None) -> JobOrchestrator:
    registry = registry or RecordingRegistry(max_jobs=settings.max_tracked_jobs)
    return JobOrchestrator(
        registry=registry,
        runner=runner,
        scheduler=RetentionScheduler(registry),
        storage=Storage(settings.input_dir, settings.output_dir),
        presets=make_presets(settings.default_preset),
        settings=settings,
    )


async def wait_until(predicate, timeout: float = 3.0):
    """Poll ``predicate`` on the running loop until it is true."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)
