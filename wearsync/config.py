"""Application configuration loaded from environment variables."""

from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "wearsync"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Supabase ---
    supabase_db_url: str  # direct postgres connection string for asyncpg
    db_pool_min_size: int = 1
    db_pool_max_size: int = 10
    db_command_timeout_s: float = 30.0

    # --- Health Connect bridge ---
    health_bridge_url: str = "http://127.0.0.1:8765"
    health_bridge_timeout_s: float = 20.0

    # --- Sync ---
    sync_service_key: str  # shared secret for POST /wearables/sync
    local_timezone: str = "UTC"  # defines local hours and calendar days

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @field_validator("local_timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value!r}") from exc
        return value

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.local_timezone)


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
