import logging
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_prefix="CLINIC_", env_file=".env", case_sensitive=False)

    # Database
    database_url: str = Field(default="sqlite+aiosqlite:///./clinic.db")

    # Blob storage
    upload_dir: str = Field(default="./uploads")
    blob_base_url: str = Field(default="http://localhost:8080/files")

    # Sessions
    jwt_secret_key: str = Field(default="change-me")
    token_expire_seconds: int = Field(default=86400)  # 24 hours
    min_secret_length: int = Field(default=6)

    # Login throttling
    max_failed_logins: int = Field(default=5)
    login_lockout_seconds: int = Field(default=300)

    log_level: str = Field(default="INFO")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(settings: Settings = None) -> None:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
