"""Application settings."""

from functools import lru_cache
import logging
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    api_url: str = "http://localhost:3005/api"
    request_timeout_s: float = Field(default=5.0, gt=0.0)
    debounce_s: float = Field(default=1.0, ge=0.0)
    # Empty path keeps the cache in process memory.
    cache_path: str = ""
    signal_poll_interval_s: float = Field(default=0.5, gt=0.0)
    auth_token: str = ""
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="OFFLINE_SYNC_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )

    def resolved_cache_path(self) -> Path | None:
        if not self.cache_path.strip():
            return None
        return Path(self.cache_path).expanduser()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: str | None = None) -> None:
    """Install a basic root handler for entry points (mock server, scripts)."""
    resolved = (level or get_settings().log_level).upper()
    logging.basicConfig(
        level=getattr(logging, resolved, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
