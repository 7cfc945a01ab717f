"""Configuration settings for ukbuild.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_cache_dir() -> Path:
    """Return the default package cache directory."""
    return Path.home() / ".cache" / "ukbuild"


def _default_db_url() -> str:
    """Return the default database URL (SQLite)."""
    db_path = Path.home() / ".local" / "share" / "ukbuild" / "sources.sqlite"
    return f"sqlite:///{db_path}"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the UKBUILD_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="UKBUILD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    cache_dir: Path = Field(
        default_factory=_default_cache_dir,
        description="Root directory for catalog indexes and package archives",
    )
    db_url: str = Field(
        default_factory=_default_db_url,
        description="Database URL of the package source registry",
    )

    # Package management
    manager: str = Field(
        default="auto",
        description="Default package manager format ('auto' lets ukbuild decide)",
    )
    offline: bool = Field(
        default=False,
        description="Offline mode - never fetch indexes or archives over the network",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Timeouts (in seconds)
    download_timeout: int = Field(
        default=600,
        ge=10,
        description="Timeout for index and archive downloads",
    )
    make_timeout: int | None = Field(
        default=None,
        ge=60,
        description="Timeout for a single make invocation (unset = no timeout)",
    )

    @property
    def index_dir(self) -> Path:
        """Directory holding cached catalog indexes."""
        return self.cache_dir / "index"

    @property
    def archive_dir(self) -> Path:
        """Directory holding downloaded package archives."""
        return self.cache_dir / "archives"


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
