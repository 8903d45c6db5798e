from __future__ import annotations

import os

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict


# Load .env early for local development
load_dotenv()


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_ignore_empty=True)

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./directory.db")

    # Security
    app_secret_key: str = os.getenv("APP_SECRET_KEY", "dev-secret-change-me")
    access_token_exp_minutes: int = int(os.getenv("ACCESS_TOKEN_EXP_MINUTES", str(60 * 24)))

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_dir: str = os.getenv("LOG_DIR", "./logs")

    # CORS, comma-separated
    cors_origins: str = os.getenv("CORS_ORIGINS", "*")

    # Image storage
    storage_backend: str = os.getenv("STORAGE_BACKEND", "local")  # local | s3
    media_dir: str = os.getenv("MEDIA_DIR", "./media")
    media_url_prefix: str = os.getenv("MEDIA_URL_PREFIX", "/media")
    public_base_url: str = os.getenv("PUBLIC_BASE_URL", "http://127.0.0.1:8000")
    s3_bucket: str = os.getenv("S3_BUCKET", "business-images")
    s3_region: str = os.getenv("S3_REGION", "us-east-1")
    s3_endpoint_url: str = os.getenv("S3_ENDPOINT_URL", "")
    image_max_bytes: int = int(os.getenv("IMAGE_MAX_BYTES", str(5 * 1024 * 1024)))
    placeholder_image_url: str = os.getenv("PLACEHOLDER_IMAGE_URL", "/placeholder.svg")

    # Rate limiting
    rate_limit_enabled: bool = os.getenv("RATE_LIMIT_ENABLED", "true").lower() in {"1", "true", "yes"}

    # Reviews
    aggregate_retry_attempts: int = int(os.getenv("AGGREGATE_RETRY_ATTEMPTS", "3"))

    # Listing
    default_page_size: int = int(os.getenv("DEFAULT_PAGE_SIZE", "30"))

    # Analytics; 0 keeps view records forever
    view_retention_days: int = int(os.getenv("VIEW_RETENTION_DAYS", "0"))


settings = Settings()
