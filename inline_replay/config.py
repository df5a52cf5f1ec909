"""
Configuration for the inline replay harness.

Uses pydantic-settings for type-safe configuration with environment
variable loading and defaults. Every value is a mode or identity
selector read once at process start; nothing here is reloaded later.

Configuration is loaded from:
1. Environment variables prefixed with INLINE_REPLAY_ (highest priority)
2. .env file in the working directory
3. Default values defined here (lowest priority)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Harness settings loaded from environment variables.

    Identity selectors (package, version, experiment, inline set) are
    optional at this layer. Which of them are load-bearing depends on the
    selected mode and is decided by ``inline_replay.mode.resolve_mode``.
    """

    model_config = SettingsConfigDict(
        env_prefix="INLINE_REPLAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # =========================================================================
    # Mode Selection
    # =========================================================================

    MODE: str | None = Field(
        default=None,
        description=(
            "Operating mode: disabled, recording_inline_set, using_inline_set, "
            "recording_c2_early_compile or using_c2_early_compile"
        ),
    )

    DISABLED: bool = Field(
        default=False,
        description="Disable switch, takes precedence over MODE",
    )

    # =========================================================================
    # Identity Selectors
    # =========================================================================

    PACKAGE_NAME: str | None = Field(
        default=None,
        description="Name of the package the experiment belongs to",
    )

    PACKAGE_VERSION: str | None = Field(
        default=None,
        description="Version of the package the experiment belongs to",
    )

    EXPERIMENT_NAME: str | None = Field(
        default=None,
        description="Experiment scoping all recorded decisions",
    )

    INLINE_SET_NAME: str | None = Field(
        default=None,
        description=(
            "Pre-provisioned inline set of the recording_inline_set and "
            "using_inline_set modes"
        ),
    )

    # =========================================================================
    # Database Settings (PostgreSQL)
    # =========================================================================

    DATABASE_URL: str = Field(
        default="dbname=project_totus",
        description="libpq connection string or postgresql:// URL",
    )

    DB_POOL_MIN_SIZE: int = Field(
        default=1,
        ge=1,
        le=64,
        description="Connections kept open by the pool",
    )

    DB_POOL_MAX_SIZE: int = Field(
        default=4,
        ge=1,
        le=256,
        description="Upper bound on connections, sized to compiler thread concurrency",
    )

    DB_POOL_TIMEOUT: float = Field(
        default=30.0,
        ge=1.0,
        le=600.0,
        description="Seconds to wait for the pool to open or hand out a connection",
    )

    RESOLVE_STRATEGY: Literal["upsert", "insert_select"] = Field(
        default="upsert",
        description=(
            "Get-or-create statement shape: a single atomic upsert returning the "
            "id, or an insert that ignores conflicts followed by a select"
        ),
    )

    MIGRATION_APP: str = Field(
        default="project_totus",
        description="App label of the required schema migration marker",
    )

    MIGRATION_NAME: str = Field(
        default="0011_add_c2_compile_is_enabled",
        description="Name of the required schema migration marker",
    )

    # =========================================================================
    # Logging
    # =========================================================================

    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level applied to the inline_replay logger",
    )

    @field_validator(
        "MODE",
        "PACKAGE_NAME",
        "PACKAGE_VERSION",
        "EXPERIMENT_NAME",
        "INLINE_SET_NAME",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        """Treat empty or whitespace-only values as absent."""
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def _upper_log_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.upper()
        return value

    @property
    def pool_bounds(self) -> tuple[int, int]:
        """Pool (min, max) sizes with min clamped to max."""
        return min(self.DB_POOL_MIN_SIZE, self.DB_POOL_MAX_SIZE), self.DB_POOL_MAX_SIZE


# =============================================================================
# Settings Singleton
# =============================================================================


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached settings.

    Settings are read once per process. To refresh them (e.g., in tests),
    clear the cache:

        get_settings.cache_clear()

    Returns:
        Settings instance with loaded configuration
    """
    return Settings()


__all__ = [
    "Settings",
    "get_settings",
]
