"""
Runtime configuration read from the environment.
"""
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./ipam.db"
    max_candidates: int = 16
    max_jitter: float = 1.0  # seconds
    log_level: str = "INFO"
    log_dir: Optional[str] = None


def load_settings() -> Settings:
    """Build settings from IPAM_* environment variables."""
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./ipam.db"),
        max_candidates=int(os.getenv("IPAM_MAX_CANDIDATES", "16")),
        max_jitter=int(os.getenv("IPAM_MAX_JITTER_MS", "1000")) / 1000.0,
        log_level=os.getenv("IPAM_LOG_LEVEL", "INFO").upper(),
        log_dir=os.getenv("IPAM_LOG_DIR") or None,
    )


@lru_cache()
def get_settings() -> Settings:
    return load_settings()
