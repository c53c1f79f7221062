"""
Runtime settings using Pydantic.

Provides environment-based configuration loading with FORGELINE_ prefix.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Runtime settings."""

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    # Tracing
    service_name: str = "forgeline"
    xray_enabled: bool = False

    # Default API endpoint for the shared client
    api_base_url: str = "http://localhost:8080"
    api_token: str | None = None
    user_agent: str = "forgeline/0.1.0"

    # HTTP client settings
    http_timeout: float = 30.0
    http_max_retries: int = 3
    http_retry_backoff_factor: float = 2.0
    http_retry_min_wait: float = 1.0
    http_retry_max_wait: float = 30.0

    # Circuit breaker
    circuit_failure_threshold: int = 5
    circuit_recovery_timeout: int = 60

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "FORGELINE_"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
