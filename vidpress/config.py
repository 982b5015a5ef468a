"""Application configuration and settings."""

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Configuration
    cors_origins: str = "*"  # Comma-separated allowed origins

    # Storage
    input_dir: Path = Path("/tmp/vidpress/input")
    output_dir: Path = Path("/tmp/vidpress/output")
    max_upload_size_mb: int = 5 * 1024

    # External tools
    downloader_bin: str = "yt-dlp"
    transcoder_bin: str = "ffmpeg"
    process_timeout_seconds: float = 600
    health_timeout_seconds: float = 5
    diagnostic_buffer_kb: int = 64

    # Processing
    default_preset: str = "balanced"
    max_concurrent_jobs: int = 2
    max_tracked_jobs: int = 500
    upload_passthrough: bool = False  # skip transcoding uploads already under the ceiling

    # Retention
    retention_minutes: float = 30
    download_grace_seconds: float = 120
    sweep_interval_minutes: float = 30
    stale_file_minutes: float = 60
    download_filename: str = "video_optimized.mp4"

    # Logging
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 8080

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    def get_cors_origins(self) -> list[str]:
        """Parse and return CORS origins."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024

    @property
    def retention_seconds(self) -> float:
        return self.retention_minutes * 60


# Global settings instance
settings = Settings()
