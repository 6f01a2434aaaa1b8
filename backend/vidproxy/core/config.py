"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
No sensitive values should be hardcoded here.
"""

from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "Video Proxy Pipeline API"
    VERSION: str = "0.1.0"
    API_V1_PREFIX: str = "/api/v1"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Tracing (optional OTLP collector)
    OTLP_ENDPOINT: Optional[str] = None

    # Database - REQUIRED
    DATABASE_URL: str

    # Redis (Celery broker/backend when QUEUE_BACKEND=celery)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Storage Configuration
    # STORAGE_BACKEND: local, s3, minio
    STORAGE_BACKEND: str = "local"

    # Local Storage (when STORAGE_BACKEND=local)
    LOCAL_STORAGE_PATH: str = "./uploads"
    PUBLIC_BASE_URL: str = "http://localhost:8000"

    # S3/MinIO/Compatible Storage (when STORAGE_BACKEND=s3 or minio)
    STORAGE_BUCKET: str = ""
    STORAGE_REGION: str = ""
    STORAGE_ACCESS_KEY: str = ""
    STORAGE_SECRET_KEY: str = ""
    STORAGE_ENDPOINT_URL: Optional[str] = None  # Required for MinIO
    STORAGE_USE_SSL: bool = True
    SIGNED_URL_TTL_SECONDS: int = 900

    # CDN Configuration (optional, S3 backend only)
    CDN_DOMAIN: Optional[str] = None
    CDN_ENABLED: bool = False

    # Upload validation
    MAX_FILE_SIZE: int = 104857600  # 100 MiB
    ALLOWED_VIDEO_FORMATS: str = "mp4,avi,mov,mkv"  # comma separated

    # Queue / workers
    # QUEUE_BACKEND: local (in-process pool) or celery
    QUEUE_BACKEND: str = "local"
    WORKER_POOL_SIZE: int = 2
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY_SECONDS: float = 2.0
    RETRY_MAX_DELAY_SECONDS: float = 300.0
    RETRY_PERMANENT_ERRORS: bool = False
    QUEUE_RETENTION_COUNT: int = 1000
    QUEUE_RETENTION_SECONDS: int = 86400

    # Media toolkit
    FFMPEG_PATH: str = "ffmpeg"
    FFPROBE_PATH: str = "ffprobe"
    TEMP_DIR: Optional[str] = None  # defaults to <system tmp>/video-processing
    LOW_RES_TARGET_HEIGHT: int = 480
    LOW_RES_VIDEO_BITRATE: str = "500k"
    LOW_RES_AUDIO_BITRATE: str = "128k"
    THUMBNAIL_WIDTH: int = 320
    THUMBNAIL_HEIGHT: int = 240
    THUMBNAIL_OFFSET_PERCENT: float = 10.0

    @field_validator(
        "WORKER_POOL_SIZE",
        "RETRY_MAX_ATTEMPTS",
        "LOW_RES_TARGET_HEIGHT",
        "MAX_FILE_SIZE",
    )
    @classmethod
    def _must_be_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be a positive integer")
        return value

    @property
    def allowed_video_formats(self) -> list[str]:
        """Allowed upload extensions, lower-cased and without the dot."""
        return [
            fmt.strip().lower().lstrip(".")
            for fmt in self.ALLOWED_VIDEO_FORMATS.split(",")
            if fmt.strip()
        ]

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
