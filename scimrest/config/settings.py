"""Connector settings loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Endpoint registry
    endpoints_config_path: str = "endpoints.json"  # JSON document with "endpoints" map

    # Request execution
    idle_timeout: int = 120  # Seconds; endpoint-level idle_timeout wins when set
    default_retry_after: int = 10  # 429 without a Retry-After header
    ratelimit_retry_after: int = 60  # non-429 failure whose body mentions a rate limit

    # HTTP front (/api passthrough)
    # Comma-separated list of valid API keys for callers
    gateway_api_keys: str = "dev-key-1"

    # Logging
    log_level: str = "INFO"
    audit_log_file: str = ""  # Empty = stdout only

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def api_keys_list(self) -> list[str]:
        """Parse comma-separated API keys, dropping blanks."""
        return [k.strip() for k in self.gateway_api_keys.split(",") if k.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
