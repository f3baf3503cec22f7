"""
Configuration and settings for the healthcare records API.
"""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_JWT_SECRET = "healthcare_management_secret_key_2025"


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    env: str = Field(default="development")
    log_level: str = Field(default="INFO")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=5000)

    # Database (any SQLAlchemy URL, Postgres expected in production)
    database_url: Optional[str] = Field(default=None)
    database_config_file: str = Field(default="config/database.json")

    # JSON fallback + local uploads
    use_local_backends: bool = Field(default=False)
    data_dir: str = Field(default="data")
    uploads_dir: str = Field(default="uploads")

    # S3-compatible storage for uploaded images
    s3_endpoint: Optional[str] = Field(default=None)
    s3_region: Optional[str] = Field(default=None)
    s3_bucket: Optional[str] = Field(default=None)
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)

    # Auth
    jwt_secret: str = Field(default=DEFAULT_JWT_SECRET)
    jwt_algorithm: str = Field(default="HS256")
    jwt_expires_minutes: int = Field(default=24 * 60)

    # Google sign-in
    google_client_id: Optional[str] = Field(default=None)
    google_tokeninfo_url: str = Field(
        default="https://oauth2.googleapis.com/tokeninfo"
    )

    # Email notifications
    email_host: str = Field(default="smtp.gmail.com")
    email_port: int = Field(default=587)
    email_user: Optional[str] = Field(default=None)
    email_pass: Optional[str] = Field(default=None)
    email_use_tls: bool = Field(default=True)
    email_sender_name: str = Field(default="Healthcare Management System")
    client_url: str = Field(default="http://localhost:3000")

    cors_origins: list[str] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
            "http://localhost:3001",
            "http://localhost:5000",
            "https://medizo.life",
            "https://www.medizo.life",
        ]
    )

    seed_demo_users: bool = Field(default=True)

    @property
    def is_production(self) -> bool:
        return self.env.strip().lower() in ("prod", "production")


def resolve_database_url(settings: Settings) -> Optional[str]:
    """
    Return the database URL from the environment, else from the local
    development config file. None means the JSON fallback should be used.
    """
    if settings.database_url:
        return settings.database_url

    config_path = Path(settings.database_config_file)
    if not config_path.exists():
        return None
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.error("Failed to read local database config %s: %s", config_path, e)
        return None
    return data.get("DATABASE_URL") or data.get("uri") or None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
