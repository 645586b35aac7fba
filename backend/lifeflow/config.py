"""Application Configuration — environment-driven settings via pydantic-settings.

Invariants:
    - All endpoints and secrets come from environment variables (never hardcoded)
    - get_settings() is cached (lru_cache) — single instance per process
    - Resilience defaults match the breaker table in core/circuit_breaker.py

Design Decisions:
    - pydantic-settings over raw os.environ: validation, type coercion, .env file support
    - Defaults provided for all settings: works out-of-the-box with docker-compose
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Database
    database_url: str = (
        "postgresql+asyncpg://lifeflow:lifeflow@db:5432/lifeflow"
    )

    @field_validator("database_url", mode="before")
    @classmethod
    def convert_postgres_url(cls, v: str) -> str:
        """Hosted Postgres provides postgresql:// but asyncpg needs postgresql+asyncpg://."""
        if isinstance(v, str) and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    database_pool_size: int = 20
    database_max_overflow: int = 10
    database_auto_create: bool = True

    # Collaborators
    inventory_service_url: str = "http://inventory-service:8003"
    donor_service_url: str = "http://donor-service:8002"
    geolocation_service_url: str = "http://geolocation-service:8005"
    notification_service_url: str = "http://notification-service:8006"
    analytics_service_url: str = "http://analytics-service:8008"

    # Resilience
    downstream_timeout_seconds: float = 5.0
    retry_max_attempts: int = 3
    retry_base_delay_ms: int = 1000
    retry_max_delay_ms: int = 4000
    breaker_window_size: int = 100
    breaker_minimum_calls: int = 100
    breaker_half_open_calls: int = 3

    # Matching
    matching_max_results: int = 10
    matching_max_concurrency: int = 8

    # Deadline sweeper
    sweeper_enabled: bool = True
    sweeper_interval_seconds: float = 30.0

    # API
    cors_origins: list[str] = ["http://localhost:5173"]

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"


@lru_cache
def get_settings() -> Settings:
    return Settings()
