"""Tests for the external process runner, using the test interpreter as the tool."""

import asyncio
import signal
import sys

import pytest

from vidpress.errors import ExternalToolFailure, ValidationError
from vidpress.services import ProcessRunner
from tests.fixtures import wait_until

PYTHON = sys.executable


@pytest.fixture
def runner():
    return ProcessRunner(default_timeout=10)


@pytest.mark.asyncio
async def test_successful_run(runner):
    result = await runner.run(PYTHON, ["-c", "print('hello')"])

    assert result.ok
    assert result.returncode == 0
    assert "hello" in result.output
    assert result.check() is result
    assert runner.active_count == 0


@pytest.mark.asyncio
async def test_non_zero_exit_is_reported(runner):
    result = await runner.run(PYTHON, ["-c", "import sys; print('boom'); sys.exit(3)"])

    assert not result.ok
    assert result.returncode == 3
    assert result.summary() == "boom"
    with pytest.raises(ExternalToolFailure) as exc_info:
        result.check("compress")
    assert exc_info.value.message == "Failed to compress video"
    assert exc_info.value.describe().endswith("exited with code 3")


@pytest.mark.asyncio
async def test_stderr_is_streamed_to_sink(runner):
    chunks = []
    script = "import sys; sys.stdout.write('out\\n'); sys.stdout.flush(); sys.stderr.write('err\\n')"
    result = await runner.run(PYTHON, ["-c", script], sink=chunks.append)

    combined = "".join(chunks)
    assert "out" in combined
    assert "err" in combined
    assert combined == result.output


@pytest.mark.asyncio
async def test_multibyte_output_split_across_reads():
    runner = ProcessRunner(chunk_size=1)
    chunks = []
    script = "import sys; sys.stdout.buffer.write('héllo ✓'.encode('utf-8'))"
    await runner.run(PYTHON, ["-c", script], sink=chunks.append)

    assert "".join(chunks) == "héllo ✓"


@pytest.mark.asyncio
async def test_timeout_kills_process(runner):
    result = await runner.run(PYTHON, ["-c", "import time; time.sleep(30)"], timeout=0.3)

    assert result.timed_out
    assert not result.ok
    assert result.elapsed < 5
    assert runner.active_count == 0
    with pytest.raises(ExternalToolFailure) as exc_info:
        result.check("compress")
    assert exc_info.value.message == "Processing timed out"


@pytest.mark.asyncio
async def test_cancel_running_process(runner):
    task = asyncio.create_task(
        runner.run(PYTHON, ["-c", "import time; time.sleep(30)"], job_id="job-1")
    )
    await wait_until(lambda: runner.is_running("job-1"))
    assert runner.active_jobs() == ["job-1"]

    assert runner.cancel("job-1") is True
    result = await asyncio.wait_for(task, 5)

    assert result.cancelled
    assert result.signal == signal.SIGKILL
    assert not runner.is_running("job-1")
    assert runner.cancel("job-1") is False
    with pytest.raises(ExternalToolFailure) as exc_info:
        result.check()
    assert exc_info.value.message == "Job cancelled"


@pytest.mark.asyncio
async def test_cancel_while_process_is_starting(runner):
    """A cancel that arrives before the process exists still kills it."""
    task = asyncio.create_task(
        runner.run(PYTHON, ["-c", "import time; time.sleep(30)"], job_id="job-1")
    )
    await asyncio.sleep(0)

    assert runner.is_running("job-1")
    assert runner.cancel("job-1") is True
    result = await asyncio.wait_for(task, 5)

    assert result.cancelled
    assert result.signal == signal.SIGKILL
    assert result.elapsed < 5
    assert not runner.is_running("job-1")


@pytest.mark.asyncio
async def test_one_process_per_job(runner):
    task = asyncio.create_task(
        runner.run(PYTHON, ["-c", "import time; time.sleep(30)"], job_id="job-1")
    )
    await wait_until(lambda: runner.is_running("job-1"))
    try:
        with pytest.raises(RuntimeError):
            await runner.run(PYTHON, ["-c", "pass"], job_id="job-1")
    finally:
        runner.cancel("job-1")
        await task


@pytest.mark.asyncio
async def test_terminate_all(runner):
    tasks = [
        asyncio.create_task(runner.run(PYTHON, ["-c", "import time; time.sleep(30)"], job_id=n))
        for n in range(2)
    ]
    await wait_until(lambda: runner.active_count == 2)

    await runner.terminate_all()
    results = await asyncio.gather(*tasks)

    assert all(result.cancelled for result in results)
    assert runner.active_count == 0


@pytest.mark.asyncio
async def test_missing_executable(runner):
    result = await runner.run("/nonexistent/vidpress-tool", ["--version"])

    assert result.returncode is None
    assert not result.ok
    with pytest.raises(ExternalToolFailure) as exc_info:
        result.check("download")
    assert exc_info.value.message == "Failed to download video"
    assert "could not be started" in exc_info.value.describe()


@pytest.mark.asyncio
@pytest.mark.parametrize("argv", ["-c print(1)", b"-c", ["-c", 1], ["-c", "print(1)\x00"]])
async def test_invalid_arguments_rejected(runner, argv):
    with pytest.raises(ValidationError):
        await runner.run(PYTHON, argv)
    assert runner.active_count == 0


@pytest.mark.asyncio
async def test_shell_metacharacters_are_literal(runner):
    hostile = "$(echo pwned); echo also-pwned | cat && `id`"
    result = await runner.run(PYTHON, ["-c", "import sys; print(sys.argv[1])", hostile])

    assert result.output.strip() == hostile


@pytest.mark.asyncio
async def test_retained_output_is_bounded():
    runner = ProcessRunner(output_limit=1000)
    received = []
    result = await runner.run(
        PYTHON, ["-c", "print('x' * 100000)"], sink=lambda text: received.append(len(text))
    )

    assert result.ok
    assert len(result.output) <= 1000
    assert sum(received) == 100001


@pytest.mark.asyncio
async def test_failing_sink_does_not_break_run(runner):
    def sink(text):
        raise RuntimeError("sink exploded")

    result = await runner.run(PYTHON, ["-c", "print('still here')"], sink=sink)

    assert result.ok
    assert "still here" in result.output
