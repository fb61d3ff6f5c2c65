"""
Configuration Module
====================

Centralized configuration management using Pydantic Settings.
Loads from environment variables with type validation and defaults.

Usage:
    from dealproof.config import settings

    print(settings.environment)
    print(settings.zk.min_contributions)
"""

from dealproof.config.settings import (
    BackendMode,
    Environment,
    LogLevel,
    Settings,
    ZKSettings,
    get_settings,
)


# Global settings instance (singleton)
settings = get_settings()

__all__ = [
    "Settings",
    "ZKSettings",
    "get_settings",
    "settings",
    "Environment",
    "LogLevel",
    "BackendMode",
]
