"""Transcoder progress parsing.

ffmpeg reports the input duration once (``Duration: 00:01:02.50``) and then
periodic status lines ending in a carriage return
(``frame=  120 fps= 60 ... time=00:00:04.00 bitrate=...``). The parser is
fed raw chunks as they are read from the process, so a marker may be split
across two chunks.
"""

import logging
import re
from typing import Callable, Optional

logger = logging.getLogger("vidpress.progress")

_DURATION_PATTERN = re.compile(r"Duration:\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")
_TIME_PATTERN = re.compile(r"time=\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")
_LINE_BREAK = re.compile(r"[\r\n]")

# Longest partial line kept between chunks
MAX_PENDING = 4096

MAX_PERCENT = 99


def _to_seconds(hours: str, minutes: str, seconds: str) -> float:
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


class ProgressParser:
    """Derives a completion percentage from transcoder output.

    ``on_progress`` is called with an int in 0..99 whenever the percentage
    increases. 100 is never reported here; the orchestrator sets it when the
    job actually completes.
    """

    def __init__(self, on_progress: Callable[[int], None]):
        self.on_progress = on_progress
        self.duration: Optional[float] = None
        self.elapsed = 0.0
        self.percent = -1
        self._pending = ""

    def feed(self, chunk: str):
        """Consume the next chunk of output."""
        data = self._pending + chunk
        lines = _LINE_BREAK.split(data)
        self._pending = lines.pop()
        if len(self._pending) > MAX_PENDING:
            # no line break for a long time; scan what we have and keep the tail
            self._scan(self._pending)
            self._pending = self._pending[-MAX_PENDING:]
        for line in lines:
            if line:
                self._scan(line)

    def close(self):
        """Scan a trailing line that never got a terminator."""
        if self._pending:
            self._scan(self._pending)
            self._pending = ""

    def _scan(self, line: str):
        if self.duration is None:
            match = _DURATION_PATTERN.search(line)
            if match:
                duration = _to_seconds(*match.groups())
                if duration > 0:
                    self.duration = duration
                    logger.debug(f"Input duration {duration:.2f}s")

        for match in _TIME_PATTERN.finditer(line):
            elapsed = _to_seconds(*match.groups())
            if elapsed <= self.elapsed:
                continue
            self.elapsed = elapsed
            if self.duration is None:
                continue
            percent = min(MAX_PERCENT, round(elapsed / self.duration * 100))
            if percent > self.percent:
                self.percent = percent
                self.on_progress(percent)
