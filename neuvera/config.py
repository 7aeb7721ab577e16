from __future__ import annotations
import logging
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

REPO_ROOT = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    """Ingest service settings, read from ``NEUVERA_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="NEUVERA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Redis
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    events_queue: str = "events"
    optout_key: str = "optout:users"

    # Drain worker
    parquet_dir: Path = REPO_ROOT / "data" / "parquet"
    writer_batch_size: int = 100      # write every 100 events
    writer_flush_seconds: float = 10  # or every 10s, whichever first

    # HTTP
    host: str = "0.0.0.0"
    port: int = 8123
    cors_origins: str = "*"
    log_level: str = "INFO"

    # Analytics: page rows seen fewer than k times are suppressed
    analytics_k: int = 1

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()


class TrackerConfig(BaseModel):
    """Client-side tracker options; ``PixelTracker.init(**options)`` merges into this."""

    endpoint: str = "http://localhost:8123/api/track"
    opt_out_endpoint: Optional[str] = "http://localhost:8123/api/privacy/opt-out"
    flush_interval: float = Field(5.0, gt=0)
    max_queue_size: int = Field(10, ge=1)
    max_retries: int = Field(1, ge=0)
    beacon_max_bytes: int = 64 * 1024
    request_timeout: float = 5.0
    anonymize: bool = True
    requires_consent: bool = False
    debug: bool = False
    storage_path: Optional[Path] = None


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(level.upper())
    if root.handlers:
        root.handlers = []
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
    root.addHandler(handler)
