"""Process-wide settings shared by every pipeline (environment and logging)."""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LoggingSettings(BaseSettings):
    """``LOG_*`` environment variables."""

    model_config = SettingsConfigDict(env_prefix="LOG_", extra="ignore")

    level: str = Field(default="INFO")
    format: str = Field(default="%(asctime)s %(levelname)-8s %(name)s: %(message)s")
    file_path: Optional[str] = Field(default=None, description="Rotating log file; console only when unset")
    max_file_size: int = Field(default=10 * 1024 * 1024, ge=1024)
    backup_count: int = Field(default=5, ge=0)


class Settings(BaseSettings):
    """Deployment environment plus logging settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    environment: str = Field(default="development")
    debug: bool = Field(default=False)

    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("environment")
    @classmethod
    def normalize_environment(cls, v: str) -> str:
        return v.strip().lower()

    @property
    def is_development(self) -> bool:
        return self.environment in ("development", "dev", "local")

    @property
    def is_production(self) -> bool:
        return self.environment in ("production", "prod")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from the environment once per process."""
    return Settings()
