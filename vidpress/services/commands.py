"""Argument vectors for the external tools.

User-controlled values (the URL, file paths) always travel as single,
separate arguments. The URL is placed after ``--`` so the downloader can
not mistake it for an option.
"""

from pathlib import Path

from ..presets import Preset

DOWNLOADER_CLIENT_ARGS = [
    "--extractor-args", "youtube:player_client=android",
    "--user-agent", "com.google.android.youtube/17.36.4 (Linux; U; Android 12; GB) gzip",
]


def format_filter(preset: Preset) -> str:
    """Downloader format selector capped at the preset's resolution."""
    return f"bestvideo[height<={preset.resolution}][ext=mp4]+bestaudio[ext=m4a]/best"


def downloader_args(url: str, preset: Preset, output_path: Path) -> list[str]:
    return [
        *DOWNLOADER_CLIENT_ARGS,
        "--no-playlist",
        "--newline",
        "-f", format_filter(preset),
        "--merge-output-format", "mp4",
        "-o", str(output_path),
        "--",
        url,
    ]


def transcoder_args(input_path: Path, output_path: Path, preset: Preset) -> list[str]:
    return [
        "-nostdin",
        "-y",
        "-i", str(input_path),
        "-vcodec", "libx264",
        "-crf", str(preset.crf),
        "-preset", preset.speed,
        "-vf", f"scale=-2:{preset.resolution}",
        "-r", str(preset.fps),
        "-fs", preset.max_size,
        "-movflags", "+faststart",
        str(output_path),
    ]


def version_args(tool: str) -> list[str]:
    """Trivial invocation used by the health probe."""
    if Path(tool).name.startswith("ff"):
        return ["-version"]
    return ["--version"]
