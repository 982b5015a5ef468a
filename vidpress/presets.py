"""Transcode presets for vidpress."""

import re
from dataclasses import dataclass
from typing import Dict, Iterator, Optional

_SIZE_UNITS = {"": 1, "K": 1024, "M": 1024**2, "G": 1024**3}
_SIZE_PATTERN = re.compile(r"^\s*(\d+)\s*([KMG]?)\s*$", re.IGNORECASE)


def parse_size(value: str) -> int:
    """Convert an ffmpeg-style size ("1400M", "1G", "512K") to bytes."""
    match = _SIZE_PATTERN.match(value)
    if not match:
        raise ValueError(f"Invalid size: {value!r}")
    number, unit = match.groups()
    return int(number) * _SIZE_UNITS[unit.upper()]


@dataclass(frozen=True)
class Preset:
    """Configuration preset for transcoding a video."""
    name: str
    description: str

    # Output geometry
    resolution: int = 1080  # target height in pixels
    fps: int = 30

    # Encoder
    crf: int = 23
    speed: str = "medium"

    # Size ceiling, also passed to the transcoder as a hard output limit
    max_size: str = "1400M"

    @property
    def max_size_bytes(self) -> int:
        return parse_size(self.max_size)


# Available transcode presets
PRESETS: Dict[str, Preset] = {
    "balanced": Preset(
        name="balanced",
        description="1080p at 30 fps, good quality (default)",
        resolution=1080,
        fps=30,
        crf=23,
        speed="medium",
        max_size="1400M",
    ),
    "efficient": Preset(
        name="efficient",
        description="720p at 30 fps, smaller files",
        resolution=720,
        fps=30,
        crf=28,
        speed="fast",
        max_size="800M",
    ),
    "minimal": Preset(
        name="minimal",
        description="720p at 24 fps, smallest files",
        resolution=720,
        fps=24,
        crf=32,
        speed="veryfast",
        max_size="500M",
    ),
}

DEFAULT_PRESET = "balanced"


class PresetCatalog:
    """Read-only lookup of presets by name with a fallback default."""

    def __init__(self, presets: Dict[str, Preset], default: str = DEFAULT_PRESET):
        if default not in presets:
            raise ValueError(f"Default preset '{default}' is not in the catalog")
        self._presets = dict(presets)
        self.default = default

    def resolve(self, name: Optional[str]) -> Preset:
        """Get a preset by name, falling back to the default if not found."""
        if not name:
            return self._presets[self.default]
        return self._presets.get(name.strip().lower(), self._presets[self.default])

    def names(self) -> list[str]:
        return list(self._presets)

    def __contains__(self, name: object) -> bool:
        return name in self._presets

    def __iter__(self) -> Iterator[Preset]:
        return iter(self._presets.values())


catalog = PresetCatalog(PRESETS)


def get_preset(name: Optional[str]) -> Preset:
    """Get a transcode preset by name, defaults to 'balanced' if not found."""
    return catalog.resolve(name)
