"""Configuration settings for carryzone."""

import logging
import os
import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


def get_carryzone_home() -> Path:
    """Resolve the carryzone data directory.

    Uses CARRYZONE_HOME when set, otherwise ~/.carryzone. Falls back to the
    system temp directory when the home directory is not writable
    (sandboxed/container/CI environments).
    """
    env_home = os.environ.get("CARRYZONE_HOME")
    home = Path(env_home).expanduser() if env_home else Path.home() / ".carryzone"
    try:
        home.mkdir(parents=True, exist_ok=True)
        return home
    except OSError as e:
        fallback = Path(tempfile.gettempdir()) / ".carryzone"
        logger.warning(f"Cannot write to {home} ({e}), falling back to {fallback}")
        fallback.mkdir(parents=True, exist_ok=True)
        return fallback


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Local storage
    home: Optional[Path] = None
    db_path: Optional[Path] = None

    # Supabase (remote pin storage); both unset means an in-memory remote
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    # Remote request timeout (seconds), enforced by the transport
    remote_timeout: float = 10.0

    # Connectivity probe
    health_url: Optional[str] = None
    connectivity_timeout: float = 5.0
    connectivity_cache_ttl: float = 30.0  # seconds

    # Sync
    max_retries: int = 3
    sync_on_write: bool = False

    # Logging (CLI only; library modules never configure handlers)
    log_level: str = "WARNING"

    class Config:
        env_prefix = "CARRYZONE_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env vars not in model

    @property
    def has_remote_backend(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    def resolve_home(self) -> Path:
        if self.home is not None:
            self.home.mkdir(parents=True, exist_ok=True)
            return self.home
        return get_carryzone_home()

    def resolve_db_path(self) -> Path:
        if self.db_path is not None:
            return self.db_path
        return self.resolve_home() / "carryzone.db"

    def resolve_health_url(self) -> Optional[str]:
        """URL probed for connectivity; defaults to the Supabase REST root."""
        if self.health_url:
            return self.health_url
        if self.supabase_url:
            return f"{self.supabase_url.rstrip('/')}/rest/v1/"
        return None


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
