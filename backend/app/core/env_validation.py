"""
Runtime Environment Validation Module

Validates the environment at application startup. If validation fails, the
application refuses to start (hard fail) instead of failing on the first
request that touches storage or auth.
"""

import os
import sys
from typing import Optional

from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_DATABASE_SCHEMES = ("postgresql", "sqlite")


class ProductionSettings(BaseSettings):
    """
    Strict validation schema for deployment environment variables.

    All required fields MUST be present and valid, or the application will not start.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================================================
    # CRITICAL: Database Configuration
    # ========================================================================
    database_url: str  # REQUIRED: postgresql+asyncpg:// (sqlite+aiosqlite:// for local runs)

    # ========================================================================
    # CRITICAL: Firebase Authentication
    # ========================================================================
    firebase_project_id: str  # REQUIRED: Firebase project ID
    google_application_credentials: Optional[str] = None  # Path to service account JSON

    # ========================================================================
    # CRITICAL: Storage Provider
    # ========================================================================
    storage_provider: str = "gcs"  # "gcs" or "s3"

    gcs_bucket_name: Optional[str] = None
    gcs_project_id: Optional[str] = None

    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    aws_region: Optional[str] = None
    s3_bucket_name: Optional[str] = None

    # ========================================================================
    # Application Configuration
    # ========================================================================
    app_name: str = "Field Jobs"
    debug: bool = False
    allowed_origins: str  # REQUIRED: Comma-separated list of allowed origins

    # ========================================================================
    # Photo uploads
    # ========================================================================
    photo_max_dimension: int = 1600
    photo_jpeg_quality: int = 90
    upload_timeout_seconds: float = 20.0
    max_upload_size_mb: int = 50


def collect_problems(settings: ProductionSettings) -> list[str]:
    """Cross-field checks pydantic cannot express on single fields."""
    problems = []

    if not settings.debug:
        origins = [o.strip() for o in settings.allowed_origins.split(",")]
        if "*" in origins:
            problems.append(
                "Wildcard CORS origin (*) detected in production mode. "
                "Set ALLOWED_ORIGINS to specific domains (comma-separated)."
            )

    if settings.storage_provider == "gcs":
        if not settings.gcs_bucket_name:
            problems.append("GCS_BUCKET_NAME required when STORAGE_PROVIDER=gcs")
    elif settings.storage_provider == "s3":
        if not settings.s3_bucket_name:
            problems.append("S3_BUCKET_NAME required when STORAGE_PROVIDER=s3")
    else:
        problems.append(
            f"Invalid STORAGE_PROVIDER '{settings.storage_provider}'. Must be 'gcs' or 's3'."
        )

    if settings.google_application_credentials:
        if not os.path.exists(settings.google_application_credentials):
            problems.append(
                f"Firebase credentials file not found: {settings.google_application_credentials}"
            )

    if not settings.database_url.startswith(SUPPORTED_DATABASE_SCHEMES):
        problems.append(
            "DATABASE_URL must be a PostgreSQL (postgresql+asyncpg://) "
            "or SQLite (sqlite+aiosqlite://) connection string"
        )

    if not 1 <= settings.photo_jpeg_quality <= 100:
        problems.append("PHOTO_JPEG_QUALITY must be between 1 and 100")
    if settings.photo_max_dimension < 1:
        problems.append("PHOTO_MAX_DIMENSION must be positive")
    if settings.upload_timeout_seconds <= 0:
        problems.append("UPLOAD_TIMEOUT_SECONDS must be positive")

    return problems


def validate_environment() -> ProductionSettings:
    """
    Validate all required environment variables at startup.

    Returns:
        ProductionSettings: Validated settings object

    Raises:
        SystemExit: If validation fails (exit code 1)
    """
    try:
        settings = ProductionSettings()
    except ValidationError as e:
        print("❌ FATAL: Environment validation failed", file=sys.stderr)
        print("\nMissing or invalid environment variables:", file=sys.stderr)
        for error in e.errors():
            field = " -> ".join(str(loc) for loc in error["loc"])
            print(f"   • {field}: {error['msg']}", file=sys.stderr)
        print("\nPlease check your .env file or environment variables.", file=sys.stderr)
        sys.exit(1)

    problems = collect_problems(settings)
    if problems:
        for problem in problems:
            print(f"❌ FATAL: {problem}", file=sys.stderr)
        sys.exit(1)

    print("✅ Environment validation passed")
    print(f"   App: {settings.app_name}")
    print(f"   Debug: {settings.debug}")
    print(f"   Storage: {settings.storage_provider}")
    print(f"   CORS Origins: {settings.allowed_origins}")

    return settings


if __name__ == "__main__":
    validate_environment()
    print("\n✅ All environment variables are valid!")
