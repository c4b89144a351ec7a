"""
Application configuration management using Pydantic settings.

Every group reads its own environment prefix; the root settings also read a
``.env`` file from the working directory.
"""
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError


class DatabaseSettings(BaseSettings):
    """Database connection configuration"""

    database_url: str = Field(
        "sqlite:///vehicle_reconciliation.db",
        description="SQLAlchemy database URL",
    )
    database_echo: bool = Field(False, description="Echo emitted SQL")

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        """Ensure the URL can be handed to SQLAlchemy"""
        try:
            make_url(v)
        except ArgumentError as e:
            raise ValueError(f"Invalid database URL: {v}") from e
        return v

    model_config = SettingsConfigDict(env_prefix="DB_")


class VpicSettings(BaseSettings):
    """NHTSA vPIC batch decoding service configuration"""

    base_url: str = Field(
        "https://vpic.nhtsa.dot.gov/api/vehicles/DecodeVINValuesBatch/",
        description="Batch decode endpoint",
    )
    # vPIC rejects batches larger than 50 entries
    batch_size: int = Field(50, ge=1, le=50)
    timeout_seconds: int = Field(30, ge=5, le=300)
    user_agent: str = Field("vehicle-reconciliation/1.0")

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v):
        if not v.startswith(("http://", "https://")):
            raise ValueError("vPIC base URL must be an http(s) URL")
        return v

    model_config = SettingsConfigDict(env_prefix="VPIC_")


class PipelineSettings(BaseSettings):
    """Reconciliation behaviour switches"""

    enforce_check_digit: bool = Field(
        True, description="Drop VINs whose 9th character fails the check digit"
    )
    default_engine_type: str = Field(
        "Gasoline", description="Engine type for spec rows that leave it blank"
    )

    model_config = SettingsConfigDict(env_prefix="PIPELINE_")


class MonitoringSettings(BaseSettings):
    """Logging configuration"""

    log_level: str = Field("WARNING")
    log_format: str = Field("text")  # json, text

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v):
        """Validate log format"""
        if v not in ["json", "text"]:
            raise ValueError('Log format must be "json" or "text"')
        return v

    model_config = SettingsConfigDict(env_prefix="MONITORING_")


class ApplicationSettings(BaseSettings):
    """Main application configuration"""

    app_name: str = Field("Vehicle Software Reconciliation")
    app_version: str = Field("1.0.0")
    environment: str = Field("development")

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    vpic: VpicSettings = Field(default_factory=VpicSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v):
        """Validate environment name"""
        valid_environments = ["development", "staging", "production"]
        if v not in valid_environments:
            raise ValueError(f"Environment must be one of {valid_environments}")
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache
def get_settings() -> ApplicationSettings:
    """
    Get application settings with caching.
    Uses LRU cache to avoid re-reading environment on every call.
    """
    return ApplicationSettings()


def get_environment_info() -> dict:
    """Get current environment information for debugging"""
    settings = get_settings()

    return {
        "app_name": settings.app_name,
        "app_version": settings.app_version,
        "environment": settings.environment,
        "database_backend": make_url(settings.database.database_url).get_backend_name(),
        "vpic_batch_size": settings.vpic.batch_size,
        "enforce_check_digit": settings.pipeline.enforce_check_digit,
    }


__all__ = [
    "ApplicationSettings",
    "DatabaseSettings",
    "MonitoringSettings",
    "PipelineSettings",
    "VpicSettings",
    "get_settings",
    "get_environment_info",
]
