"""
Settings Module
===============

Pydantic-based configuration with environment variable loading.

Version: 0.1.0
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class BackendMode(str, Enum):
    """Proving backend selection."""

    MOCK = "mock"
    SNARKJS = "snarkjs"


class ZKSettings(BaseSettings):
    """Proof system configuration."""

    model_config = SettingsConfigDict(env_prefix="ZK_")

    backend: BackendMode = BackendMode.MOCK

    # Circuit artifacts for the snarkjs backend
    build_dir: Path = Field(
        default_factory=lambda: Path(__file__).parent.parent.parent / "circuits" / "build"
    )
    snarkjs_command: str = "npx"
    beacon_iterations_exp: int = Field(default=10, ge=1, le=63)

    # Trusted setup ceremonies
    min_contributions: int = Field(default=2, ge=1)
    max_participants: int = Field(default=10, ge=1)
    ceremony_timeout_minutes: int = Field(default=60, ge=1)
    require_unique_contributions: bool = True

    # Proof generation
    max_parallel_proofs: int = Field(default=4, ge=1)
    proof_timeout_seconds: float = Field(default=30.0, gt=0)
    proving_max_attempts: int = Field(default=2, ge=1)

    # Proof history
    history_max_entries: int = Field(default=10_000, ge=1)

    @field_validator("max_participants")
    @classmethod
    def participants_cover_quorum(cls, v: int, info: ValidationInfo) -> int:
        min_contributions = info.data.get("min_contributions", 2)
        if v < min_contributions:
            raise ValueError(
                f"max_participants {v} must be >= min_contributions {min_contributions}"
            )
        return v


class Settings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables with sensible defaults.
    Use the global `settings` singleton or call `get_settings()`.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # General
    environment: Environment = Environment.DEVELOPMENT
    log_level: LogLevel = LogLevel.INFO
    json_logs: bool = False

    # Proof system
    zk: ZKSettings = Field(default_factory=ZKSettings)

    @field_validator("log_level", mode="before")
    @classmethod
    def uppercase_log_level(cls, v: str | LogLevel) -> LogLevel:
        """Ensure log level is uppercase."""
        if isinstance(v, str):
            return LogLevel(v.upper())
        return v

    @model_validator(mode="after")
    def no_mock_backend_in_production(self) -> "Settings":
        """The mock backend is not zero-knowledge and must not serve production."""
        if self.environment == Environment.PRODUCTION and self.zk.backend == BackendMode.MOCK:
            raise ValueError("The mock proving backend cannot be used in production")
        return self


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings singleton.
    """
    return Settings()
