"""Configuration management for campusgraph.

Uses pydantic-settings to load configuration from environment variables
(prefixed with ``CAMPUSGRAPH_``) and an optional ``.env`` file.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _find_env_file() -> Path | None:
    """Search for .env file in the working directory and its parents."""
    check_dir = Path.cwd()
    for _ in range(5):
        if (check_dir / ".env").exists():
            return check_dir / ".env"
        parent = check_dir.parent
        if parent == check_dir:
            break
        check_dir = parent

    return None


_env_file = _find_env_file()


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CAMPUSGRAPH_",
        env_file=str(_env_file) if _env_file else ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # =========================
    # Environment
    # =========================
    environment: Literal["development", "staging", "production"] = "development"

    # =========================
    # API Settings
    # =========================
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_debug: bool = False
    cors_origins: str = "http://localhost:3000"

    # =========================
    # Backing store
    # =========================
    store_backend: Literal["postgres", "memory"] = "postgres"
    # JSON file used to seed the in-memory store (development only)
    memory_seed_file: str | None = None
    store_timeout_seconds: float = 10.0

    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "campusgraph"
    postgres_user: str = "campusgraph"
    postgres_password: str = Field(default="", repr=False)

    @computed_field
    @property
    def database_url(self) -> str:
        """SQLAlchemy database URL for PostgreSQL."""
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # =========================
    # Cache
    # =========================
    cache_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"

    # =========================
    # Entity Resolution
    # =========================
    resolution_fuzzy_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    resolution_cache_ttl_seconds: int = 15 * 60
    # Misses are cached for a shorter window so new rows show up quickly
    resolution_negative_cache_ttl_seconds: int = 2 * 60
    resolution_batch_limit: int = 100
    resolution_batch_concurrency: int = 10
    # Rows returned by the store-side name prefilter
    resolution_prefilter_limit: int = 500
    # Candidates kept after the rapidfuzz shortlist and scored exactly
    resolution_fuzzy_candidate_pool: int = 50

    # =========================
    # Graph traversal
    # =========================
    graph_default_depth: int = Field(default=2, ge=0, le=5)
    graph_max_depth: int = Field(default=5, ge=1, le=5)
    graph_max_path_hops: int = 5
    graph_level_concurrency: int = 8

    # =========================
    # Recommendations
    # =========================
    recommendation_default_limit: int = 10
    recommendation_trending_window_days: int = 30
    recommendation_clamp_scores: bool = False

    # =========================
    # Integrity
    # =========================
    integrity_sample_size: int = 1000

    # =========================
    # Logging
    # =========================
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "json"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins as a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
