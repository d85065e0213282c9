"""Application configuration using Pydantic Settings."""

from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageProvider(str, Enum):
    GCS = "gcs"
    S3 = "s3"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    app_name: str = "Field Jobs"
    debug: bool = False
    api_v1_prefix: str = "/v1"
    log_level: str = "INFO"
    allowed_origins: str = "http://localhost:3000"

    # Database
    database_url: str

    # Firebase Auth
    firebase_project_id: str
    google_application_credentials: Optional[str] = None

    # Storage
    storage_provider: StorageProvider = StorageProvider.GCS

    # GCS Config
    gcs_bucket_name: Optional[str] = None
    gcs_project_id: Optional[str] = None

    # S3 Config
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    aws_region: Optional[str] = "us-east-1"
    s3_bucket_name: Optional[str] = None

    # Photo uploads
    photo_max_dimension: int = 1600
    photo_jpeg_quality: int = 90
    upload_timeout_seconds: float = 20.0
    max_upload_size_mb: int = 50

    # Realtime relay (optional, events are always fanned out in-process)
    realtime_webhook_url: Optional[str] = None
    realtime_queue_size: int = 100

    @property
    def bucket_name(self) -> str:
        """Get the appropriate bucket name based on storage provider."""
        if self.storage_provider == StorageProvider.GCS:
            if not self.gcs_bucket_name:
                raise ValueError("GCS_BUCKET_NAME required when STORAGE_PROVIDER=gcs")
            return self.gcs_bucket_name
        else:
            if not self.s3_bucket_name:
                raise ValueError("S3_BUCKET_NAME required when STORAGE_PROVIDER=s3")
            return self.s3_bucket_name


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()
