import logging
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings

from services.errors import ConfigurationError


logger = logging.getLogger(__name__)


class AppMode(str, Enum):
    DEV = "dev"
    PROD = "prod"


class StorageBackendName(str, Enum):
    BLOB = "blob"
    S3 = "s3"
    LOCAL = "local"


class Settings(BaseSettings):
    # Application mode - defaults to DEV for safety
    APP_MODE: AppMode = AppMode.DEV

    # Debug mode - MUST be False in production
    DEBUG: bool = False

    # Server configuration
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Image generation provider (OpenAI Images "edits" endpoint)
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    # Empty means "let the provider pick its default edit model"
    OPENAI_IMAGE_MODEL: str = ""

    # Storage backend: "blob" (HTTP object store), "s3", or "local" for dev
    STORAGE_BACKEND: StorageBackendName = StorageBackendName.BLOB
    RESULTS_PREFIX: str = "results"

    # HTTP blob store (Vercel Blob compatible)
    BLOB_READ_WRITE_TOKEN: str = ""
    BLOB_API_URL: str = "https://blob.vercel-storage.com"

    # S3 settings (used when STORAGE_BACKEND="s3")
    S3_BUCKET: str = ""
    S3_REGION: str = "us-east-1"
    S3_ACCESS_KEY_ID: str = ""
    S3_SECRET_ACCESS_KEY: str = ""
    S3_PREFIX: str = ""
    # S3 endpoint (for Cloudflare R2, MinIO, etc.)
    S3_ENDPOINT_URL: str = ""
    S3_PUBLIC_URL: str = ""

    # Local storage directory (used when STORAGE_BACKEND="local")
    LOCAL_STORAGE_DIR: str = "storage"

    # Time budget (seconds). The deadline must cover two upstream attempts,
    # the retry backoff, the remote fetch and the publish step.
    UPSTREAM_ATTEMPT_TIMEOUT_SECONDS: float = 55.0
    UPSTREAM_RETRY_BACKOFF_SECONDS: float = 1.0
    REMOTE_FETCH_TIMEOUT_SECONDS: float = 15.0
    PUBLISH_TIMEOUT_SECONDS: float = 15.0
    GENERATION_DEADLINE_SECONDS: float = 150.0

    # Image normalization and generation parameters
    TARGET_IMAGE_SIZE: int = 512
    NORMALIZED_JPEG_QUALITY: int = 70
    OUTPUT_SIZE: str = "1024x1024"
    MAX_UPLOAD_SIZE_BYTES: int = 10 * 1024 * 1024  # 10MB

    # Comma-separated list of allowed origins
    CORS_ALLOWED_ORIGINS: str = ""

    @property
    def CORS_ORIGINS(self) -> List[str]:
        """
        Get allowed CORS origins.

        In production, never return ["*"]; origins must be configured
        explicitly through CORS_ALLOWED_ORIGINS.
        """
        origins = []

        if self.APP_MODE == AppMode.DEV:
            origins = [
                "http://localhost:3000",
                "http://127.0.0.1:3000",
            ]

        if self.CORS_ALLOWED_ORIGINS:
            custom_origins = [
                o.strip() for o in self.CORS_ALLOWED_ORIGINS.split(",") if o.strip()
            ]
            origins.extend(custom_origins)

        if not origins and self.APP_MODE == AppMode.PROD:
            logger.warning(
                "No CORS_ALLOWED_ORIGINS configured in production. "
                "Cross-origin requests will be blocked."
            )
        return origins

    @property
    def storage_credential_present(self) -> bool:
        """Whether the write credential for the selected backend is set."""
        if self.STORAGE_BACKEND == StorageBackendName.BLOB:
            return bool(self.BLOB_READ_WRITE_TOKEN)
        if self.STORAGE_BACKEND == StorageBackendName.S3:
            return bool(
                self.S3_BUCKET and self.S3_ACCESS_KEY_ID and self.S3_SECRET_ACCESS_KEY
            )
        return True

    @property
    def LOG_LEVEL(self) -> str:
        return "DEBUG" if self.DEBUG else "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env variables


@dataclass(frozen=True)
class PipelineConfig:
    """
    Explicit configuration value for one generation pipeline.

    Built from Settings at the edge of the application and passed into the
    pipeline constructor, so nothing below the route layer reads the
    environment.
    """

    api_key: str
    endpoint_url: str
    model: Optional[str] = None
    attempt_timeout: float = 55.0
    retry_backoff: float = 1.0
    fetch_timeout: float = 15.0
    publish_timeout: float = 15.0
    deadline: float = 150.0
    target_size: int = 512
    jpeg_quality: int = 70
    output_size: str = "1024x1024"
    max_source_bytes: int = 10 * 1024 * 1024

    @classmethod
    def from_settings(cls, settings: Settings) -> "PipelineConfig":
        return cls(
            api_key=settings.OPENAI_API_KEY,
            endpoint_url=f"{settings.OPENAI_BASE_URL.rstrip('/')}/images/edits",
            model=settings.OPENAI_IMAGE_MODEL or None,
            attempt_timeout=settings.UPSTREAM_ATTEMPT_TIMEOUT_SECONDS,
            retry_backoff=settings.UPSTREAM_RETRY_BACKOFF_SECONDS,
            fetch_timeout=settings.REMOTE_FETCH_TIMEOUT_SECONDS,
            publish_timeout=settings.PUBLISH_TIMEOUT_SECONDS,
            deadline=settings.GENERATION_DEADLINE_SECONDS,
            target_size=settings.TARGET_IMAGE_SIZE,
            jpeg_quality=settings.NORMALIZED_JPEG_QUALITY,
            output_size=settings.OUTPUT_SIZE,
            max_source_bytes=settings.MAX_UPLOAD_SIZE_BYTES,
        )

    @property
    def worst_case_seconds(self) -> float:
        """Longest time the guarded steps may legitimately take."""
        return (
            2 * self.attempt_timeout
            + self.retry_backoff
            + self.fetch_timeout
            + self.publish_timeout
        )

    def validate(self) -> "PipelineConfig":
        if not self.api_key:
            raise ConfigurationError("OPENAI_API_KEY is not configured")
        for name in ("attempt_timeout", "fetch_timeout", "publish_timeout", "deadline"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        if self.retry_backoff < 0:
            raise ConfigurationError("retry_backoff must not be negative")
        if self.deadline <= self.worst_case_seconds:
            raise ConfigurationError(
                f"Generation deadline ({self.deadline:.1f}s) must exceed the "
                f"worst-case step budget ({self.worst_case_seconds:.1f}s)"
            )
        if not 16 <= self.target_size <= 4096:
            raise ConfigurationError("TARGET_IMAGE_SIZE must be between 16 and 4096")
        if not 1 <= self.jpeg_quality <= 95:
            raise ConfigurationError("NORMALIZED_JPEG_QUALITY must be between 1 and 95")
        return self


def _validate_settings(settings: Settings) -> Settings:
    """
    Fail fast on misconfiguration that would make production unsafe.

    Missing provider/storage credentials are checked by
    validate_generation_settings(), which runs at startup.
    """
    if settings.APP_MODE == AppMode.PROD and settings.DEBUG:
        error_msg = (
            "CRITICAL SECURITY ERROR: DEBUG=True in production! "
            "Debug mode exposes sensitive information in error responses."
        )
        logger.critical(error_msg)
        raise ValueError(error_msg)
    return settings


def validate_generation_settings(settings: Settings) -> PipelineConfig:
    """
    Check every precondition for serving generation requests.

    Raises ConfigurationError when a credential is missing or the time budget
    does not fit inside the overall deadline.
    """
    if not settings.storage_credential_present:
        raise ConfigurationError(
            f"Storage credential for backend '{settings.STORAGE_BACKEND.value}' "
            "is not configured"
        )
    return PipelineConfig.from_settings(settings).validate()


@lru_cache()
def get_settings() -> Settings:
    """Get application settings (cached)."""
    settings = Settings()
    return _validate_settings(settings)
