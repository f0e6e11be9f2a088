"""Centralized configuration management for the ESI access layer.

This module provides application-level configuration from environment variables.

Features:
- Environment variable support via .env files
- Fallback priority: .env → hardcoded defaults
- Type-safe configuration using Pydantic
- Singleton pattern for global access

Usage:
    from utils import global_config

    manager = CacheManager(
        repository,
        memory_capacity=global_config.cache.memory_capacity,
        promotion_ttl=global_config.cache.promotion_ttl,
    )
"""

from __future__ import annotations

import threading
import tomllib
from logging import getLogger
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = getLogger(__name__)


def _read_pyproject() -> dict:
    """Read pyproject.toml and extract project name and version."""
    pyproject_path = Path(__file__).parent.parent.parent / "pyproject.toml"
    try:
        with open(pyproject_path, "rb") as f:
            project = tomllib.load(f).get("project", {})
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning("Could not read pyproject.toml: %s", e)
        project = {}

    urls = project.get("urls") if isinstance(project.get("urls"), dict) else {}
    return {
        "name": project.get("name", "esi-access-layer"),
        "version": project.get("version", "?.?.?"),
        "repository": urls.get("Repository") or urls.get("repository"),
    }


# Read project metadata once at module load
_PROJECT_METADATA = _read_pyproject()


class ESIConfig(BaseSettings):
    """ESI proxy and token endpoint configuration."""

    functions_url: str = Field(
        default="http://localhost:54321/functions/v1",
        description="Base URL of the serverless functions hosting the ESI proxy",
    )
    api_key: str = Field(
        default="",
        description="Anonymous API key sent to the serverless functions",
    )
    proxy_function: str = Field(
        default="esi-core-proxy",
        description="Name of the call-through proxy function",
    )
    token_refresh_function: str = Field(
        default="esi-token-refresh",
        description="Name of the refresh token exchange function",
    )
    request_timeout: float = Field(
        default=10.0,
        description="Seconds to wait for a proxied ESI call",
        gt=0,
    )
    token_refresh_timeout: float = Field(
        default=10.0,
        description="Seconds to wait for a refresh token exchange",
        gt=0,
    )
    max_retries: int = Field(
        default=2,
        description="Retries for server errors and timeouts on proxied calls",
        ge=0,
    )

    # ESI Scopes - Centralized scope management
    default_scopes: list[str] = Field(
        default=[
            "esi-location.read_location.v1",
            "esi-location.read_ship_type.v1",
            "esi-location.read_online.v1",
            "esi-skills.read_skills.v1",
            "esi-skills.read_skillqueue.v1",
            "esi-wallet.read_character_wallet.v1",
            "esi-assets.read_assets.v1",
            "esi-clones.read_clones.v1",
            "esi-clones.read_implants.v1",
            "esi-characters.read_contacts.v1",
        ],
        description="ESI scopes requested during character authentication",
    )

    model_config = SettingsConfigDict(
        env_prefix="ESI_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    @property
    def proxy_url(self) -> str:
        """Full URL of the call-through proxy function."""
        return f"{self.functions_url.rstrip('/')}/{self.proxy_function}"

    @property
    def token_refresh_url(self) -> str:
        """Full URL of the refresh token exchange function."""
        return f"{self.functions_url.rstrip('/')}/{self.token_refresh_function}"


class CacheConfig(BaseSettings):
    """Two-tier cache and name resolution configuration."""

    memory_capacity: int = Field(
        default=1000,
        description="Maximum number of entries held in the memory tier",
        ge=1,
    )
    promotion_ttl: int = Field(
        default=120,
        description="Seconds a persistent hit stays in the memory tier",
        ge=1,
    )
    cleanup_interval: int = Field(
        default=300,
        description="Seconds between expired-entry sweeps",
        ge=1,
    )
    default_ttl: int = Field(
        default=300,
        description="TTL in seconds for endpoints that match no category",
        ge=1,
    )
    ttl_by_category: dict[str, int] = Field(
        default={
            "realtime": 30,
            "frequent": 300,
            "moderate": 3600,
            "stable": 86400,
            "static": 2592000,
        },
        description="TTL in seconds for each data category",
    )
    preload_band_delays: list[float] = Field(
        default=[0.0, 2.0, 5.0],
        description="Delay in seconds before each preload band fires",
    )
    db_file: str = Field(
        default="esi/esi_access.db",
        description="SQLite database for cache, names, tokens and sync metadata",
    )
    name_ttl_days: int = Field(
        default=30,
        description="Days a resolved name stays valid",
        ge=1,
    )
    name_batch_size: int = Field(
        default=1000,
        description="Maximum IDs per upstream name resolution call",
        ge=1,
        le=1000,
    )

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    @field_validator("preload_band_delays")
    @classmethod
    def validate_band_delays(cls, v: list[float]) -> list[float]:
        """Preload needs exactly three non-negative band delays."""
        if len(v) != 3 or any(d < 0 for d in v):
            raise ValueError(
                f"preload_band_delays must be three non-negative values, got: {v}"
            )
        return v

    @property
    def db_path(self) -> Path:
        """Resolved database path (relative paths live under user_data_dir)."""
        path = Path(self.db_file)
        if path.is_absolute():
            return path
        return get_config().app.user_data_dir / self.db_file


class TokenConfig(BaseSettings):
    """Token lifecycle and refresh scheduler configuration."""

    refresh_buffer_minutes: float = Field(
        default=10.0,
        description="Refresh tokens expiring within this many minutes",
        gt=0,
    )
    max_validation_failures: int = Field(
        default=5,
        description="Failed refreshes before auto refresh is disabled",
        ge=1,
    )
    scheduler_interval_minutes: float = Field(
        default=5.0,
        description="Minutes between background token checks",
        gt=0,
    )
    scheduler_refresh_threshold_minutes: float = Field(
        default=10.0,
        description="Background check refreshes tokens expiring within this window",
        gt=0,
    )
    stale_token_days: int = Field(
        default=30,
        description="Days after expiry before a failed token may be cleaned up",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="TOKEN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )


class AppConfig(BaseSettings):
    """Application-wide configuration."""

    name: str = Field(
        default_factory=lambda: _PROJECT_METADATA["name"],
        description="Application name (from pyproject.toml)",
    )
    version: str = Field(
        default_factory=lambda: _PROJECT_METADATA["version"],
        description="Application version (from pyproject.toml)",
    )
    user_agent: str = Field(
        default="",
        description="User-Agent forwarded by the proxy (auto-generated if empty)",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="WARNING",
        description="Logging level",
    )

    data_dir: Path = Field(
        default_factory=lambda: Path(__file__).parent.parent.parent / "data",
        description="Directory for the database, logs and other writable files",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    @property
    def user_data_dir(self) -> Path:
        """Get user data directory for writable files.

        Returns:
            Path to directory for the database, logs and other writable data.
        """
        self.data_dir.mkdir(parents=True, exist_ok=True)
        return self.data_dir

    @property
    def computed_user_agent(self) -> str:
        """Generate User-Agent header if not explicitly set."""
        if self.user_agent:
            return self.user_agent
        agent = f"{self.name}/{self.version}"
        if _PROJECT_METADATA.get("repository"):
            agent += f" (+{_PROJECT_METADATA['repository']})"
        return agent


class Config:
    """Main configuration container."""

    def __init__(self) -> None:
        """Initialize configuration from environment and defaults."""
        self.app = AppConfig()
        self.esi = ESIConfig()
        self.cache = CacheConfig()
        self.token = TokenConfig()

    def reload(self) -> None:
        """Reload configuration from environment variables."""
        self.__init__()

    def __repr__(self) -> str:
        """String representation of config."""
        return (
            f"Config(\n  app={self.app},\n  esi={self.esi},\n"
            f"  cache={self.cache},\n  token={self.token}\n)"
        )


# Global configuration instance (singleton)
_config_instance: Config | None = None
_config_lock = threading.Lock()


def get_config(config: Config | None = None) -> Config:
    """Get the global configuration instance (lazy initialization).

    Args:
        config: Optional config instance to use instead of singleton.
                If provided, it replaces the singleton.
                Useful for dependency injection.

    Returns:
        Global Config instance
    """
    global _config_instance  # noqa: PLW0603

    if config is not None:
        with _config_lock:
            _config_instance = config
        return _config_instance

    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = Config()

    # Type checker needs assurance - will always be set at this point
    assert _config_instance is not None
    return _config_instance


def reload_config() -> Config:
    """Reload configuration from environment.

    Returns:
        Reloaded Config instance
    """
    global _config_instance  # noqa: PLW0603
    with _config_lock:
        _config_instance = Config()
    return _config_instance


def reset_config() -> None:
    """Reset the global config instance.

    Primarily for testing.
    """
    global _config_instance  # noqa: PLW0603
    with _config_lock:
        _config_instance = None


# Create the global config instance for convenience
global_config = get_config()
