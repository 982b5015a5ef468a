"""External process runner.

Launches the downloader and transcoder as subprocesses with a discrete
argument vector (never through a shell), streams their output to a sink
as it arrives, enforces a wall-clock timeout and keeps a table of running
processes so a job can be cancelled from outside.
"""

import asyncio
import codecs
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Hashable, Optional, Sequence

from ..errors import ExternalToolFailure, ValidationError

logger = logging.getLogger("vidpress.runner")

OutputSink = Callable[[str], None]

KILL_WAIT_SECONDS = 5.0


@dataclass
class ProcessResult:
    """Outcome of one external process invocation."""
    executable: str
    returncode: Optional[int]
    output: str = ""
    timed_out: bool = False
    cancelled: bool = False
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out and not self.cancelled

    @property
    def signal(self) -> Optional[int]:
        """Signal number that terminated the process, if any."""
        if self.returncode is not None and self.returncode < 0:
            return -self.returncode
        return None

    def check(self, action: str = "process") -> "ProcessResult":
        """Raise ExternalToolFailure unless the process succeeded."""
        if not self.ok:
            raise ExternalToolFailure(self, action)
        return self

    def summary(self, lines: int = 10) -> str:
        """Last few lines of captured output, for logs."""
        tail = [line for line in self.output.splitlines() if line.strip()]
        return "\n".join(tail[-lines:])


class _OutputTail:
    """Keeps the last ``limit`` characters of a stream."""

    def __init__(self, limit: int):
        self.limit = limit
        self._text = ""

    def append(self, text: str):
        self._text += text
        if len(self._text) > self.limit:
            self._text = self._text[-self.limit:]

    def getvalue(self) -> str:
        return self._text


class _ActiveProcess:
    def __init__(self):
        self.process: Optional[asyncio.subprocess.Process] = None
        self.cancelled = False


class ProcessRunner:
    """Runs external tools and tracks them by job id."""

    def __init__(
        self,
        default_timeout: float = 600,
        output_limit: int = 64 * 1024,
        chunk_size: int = 4096,
    ):
        self.default_timeout = default_timeout
        self.output_limit = output_limit
        self.chunk_size = chunk_size
        self._active: Dict[Hashable, _ActiveProcess] = {}

    @property
    def active_count(self) -> int:
        """Number of processes running or being started."""
        return len(self._active)

    def active_jobs(self) -> list:
        return [key for key in self._active if not isinstance(key, _AnonymousKey)]

    def is_running(self, job_id: Hashable) -> bool:
        return job_id in self._active

    async def run(
        self,
        executable: str,
        argv: Sequence[str],
        sink: Optional[OutputSink] = None,
        timeout: Optional[float] = None,
        job_id: Optional[Hashable] = None,
    ) -> ProcessResult:
        """Run ``executable`` with ``argv`` and wait for it to exit.

        Args:
            executable: Program name or path
            argv: Arguments, passed to the program as-is
            sink: Called with each decoded chunk of combined stdout/stderr
            timeout: Wall-clock limit in seconds (defaults to default_timeout)
            job_id: Key for the process table, enables cancel(job_id)

        Returns:
            ProcessResult; failures are reported in the result, not raised
        """
        args = _validate_argv(argv)
        timeout = self.default_timeout if timeout is None else timeout
        key = job_id if job_id is not None else _AnonymousKey()
        if key in self._active:
            raise RuntimeError(f"A process is already running for job {job_id}")

        # Registered before spawning so a cancel during startup is not lost
        entry = _ActiveProcess()
        self._active[key] = entry
        tail = _OutputTail(self.output_limit)
        timed_out = False
        started = time.monotonic()

        try:
            try:
                process = await asyncio.create_subprocess_exec(
                    executable,
                    *args,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.STDOUT,
                )
            except OSError as e:
                logger.error(f"Failed to start {executable}: {e}")
                return ProcessResult(
                    executable=executable,
                    returncode=None,
                    output=str(e),
                    cancelled=entry.cancelled,
                )

            entry.process = process
            logger.debug(f"Started {executable} (pid {process.pid}) for job {job_id}")
            if entry.cancelled:
                logger.info(f"Job {job_id} was cancelled while {executable} was starting")
                _signal_kill(process)

            try:
                await asyncio.wait_for(self._pump(process, tail, sink), timeout)
            except asyncio.TimeoutError:
                timed_out = True
                logger.warning(f"{executable} timed out after {timeout}s for job {job_id}")
                await _kill(process)
        finally:
            if self._active.get(key) is entry:
                del self._active[key]
            if entry.process is not None and entry.process.returncode is None:
                await _kill(entry.process)

        return ProcessResult(
            executable=executable,
            returncode=process.returncode,
            output=tail.getvalue(),
            timed_out=timed_out,
            cancelled=entry.cancelled,
            elapsed=time.monotonic() - started,
        )

    def cancel(self, job_id: Hashable) -> bool:
        """Kill the process registered for ``job_id``.

        A process that is still being started is killed as soon as it exists.

        Returns:
            True if a running or starting process was found
        """
        entry = self._active.get(job_id)
        if entry is None:
            return False
        entry.cancelled = True
        if entry.process is not None:
            _signal_kill(entry.process)
        logger.info(f"Cancelled process for job {job_id}")
        return True

    async def terminate_all(self):
        """Kill every registered process and wait for them to exit."""
        entries = list(self._active.values())
        for entry in entries:
            entry.cancelled = True
        await asyncio.gather(*(_kill(entry.process) for entry in entries if entry.process is not None))

    async def _pump(
        self,
        process: asyncio.subprocess.Process,
        tail: _OutputTail,
        sink: Optional[OutputSink],
    ) -> int:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await process.stdout.read(self.chunk_size)
            final = not chunk
            text = decoder.decode(chunk, final=final)
            if text:
                tail.append(text)
                if sink is not None:
                    _deliver(sink, text)
            if final:
                break
        return await process.wait()


class _AnonymousKey:
    """Process table key for invocations without a job (health probes)."""

    def __repr__(self) -> str:
        return f"<anonymous {id(self):#x}>"


def _validate_argv(argv: Sequence[str]) -> list[str]:
    if isinstance(argv, (str, bytes)):
        raise ValidationError("Arguments must be a sequence, not a single string")
    args = list(argv)
    for arg in args:
        if not isinstance(arg, str):
            raise ValidationError(f"Invalid argument type: {type(arg).__name__}")
        if "\x00" in arg:
            raise ValidationError("Arguments must not contain NUL characters")
    return args


def _deliver(sink: OutputSink, text: str):
    try:
        sink(text)
    except Exception:
        logger.exception("Output sink raised; continuing")


def _signal_kill(process: asyncio.subprocess.Process):
    try:
        process.kill()
    except ProcessLookupError:
        pass


async def _kill(process: asyncio.subprocess.Process):
    if process.returncode is None:
        _signal_kill(process)
    try:
        await asyncio.wait_for(process.wait(), timeout=KILL_WAIT_SECONDS)
    except asyncio.TimeoutError:
        logger.error(f"Process {process.pid} did not exit after kill")
