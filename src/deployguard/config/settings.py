"""
Application settings using Pydantic.

Provides environment-based configuration loading with DEPLOYGUARD_ prefix.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Database (optional SQLAlchemy-backed verdict store)
    database_url: str = "postgresql+asyncpg://localhost/deployguard"
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_timeout: int = 30
    db_pool_recycle: int = 1800

    # Debug
    debug: bool = False
    log_level: str = "INFO"

    # Verdict queries
    default_query_limit: int = 50
    max_query_limit: int = 1000

    # Runner polling (safe-retry-runner): 30 x 10s
    poll_max_attempts: int = 30
    poll_interval_seconds: float = 10.0

    # ECS stability observation (service-health-reset)
    stability_max_wait_seconds: int = 300
    stability_check_interval_seconds: int = 10

    # Files
    lawbook_path: str | None = None
    policy_path: str | None = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "DEPLOYGUARD_"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
