"""Configuration settings for builder_contract.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_cache_dir() -> Path:
    """Return the default build cache directory."""
    return Path.home() / ".cache" / "builder-contract" / "build-cache"


def _default_work_root() -> Path:
    """Return the default root for per-entrypoint work directories."""
    return Path.home() / ".local" / "share" / "builder-contract" / "work"


class Settings(BaseSettings):
    """Orchestrator settings.

    Settings are loaded from environment variables with the
    BUILDER_CONTRACT_ prefix. CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="BUILDER_CONTRACT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    cache_dir: Path = Field(
        default_factory=_default_cache_dir,
        description="Root directory for build caches handed off between builds",
    )
    work_root: Path = Field(
        default_factory=_default_work_root,
        description="Root directory for per-entrypoint work directories",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Concurrency
    max_concurrent_builds: int = Field(
        default=4,
        ge=1,
        le=32,
        description="Maximum entrypoints built concurrently",
    )

    # Timeouts (in seconds)
    build_timeout: float = Field(
        default=3600,
        gt=0,
        description="Timeout for a single builder build() call",
    )
    prepare_cache_timeout: float = Field(
        default=600,
        gt=0,
        description="Timeout for a single builder prepare_cache() call",
    )
    dev_server_timeout: float = Field(
        default=60,
        gt=0,
        description="Time to wait for a dev server listener to accept connections",
    )
    fetch_timeout: float = Field(
        default=120,
        gt=0,
        description="Timeout for downloading remote file content",
    )

    # Dev servers
    dev_server_host: str = Field(
        default="127.0.0.1",
        description="Host dev servers are expected to listen on",
    )

    # Remote file content
    blob_base_url: str = Field(
        default="http://127.0.0.1:3000/v2/files",
        description="Base URL that remote file digests are resolved against",
    )

    default_runtime: str = Field(
        default="nodejs18.x",
        description="Runtime assigned to functions when the config names none",
    )


def get_settings() -> Settings:
    """Get the application settings singleton.

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
