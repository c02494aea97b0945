"""Pipecount configuration module.

Provides centralized configuration management using pydantic-settings.

Usage:
    from pipecount.config import get_settings

    settings = get_settings()
    print(settings.history_capacity)
"""

from functools import lru_cache

from pipecount.config.settings import Settings

__all__ = ["Settings", "get_settings"]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns a singleton Settings instance that is cached for the lifetime
    of the process.

    To reload settings, call get_settings.cache_clear() first.
    """
    return Settings()
