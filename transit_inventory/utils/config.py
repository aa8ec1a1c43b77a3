"""Environment-driven runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration.

    Tests derive isolated variants with ``dataclasses.replace`` instead of
    mutating environment variables.
    """

    app_name: str
    app_version: str
    log_level: str
    database_path: Path
    seed_demo_data: bool

    wifi_adoption_rate: float
    avg_sessions_per_rider_per_day: float
    fallback_base_cpm: float
    legacy_missing_sov_fallback: float

    ledger_busy_timeout_seconds: float
    admission_max_retries: int
    admission_retry_backoff_seconds: float


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings(
        app_name=_env_str("APP_NAME", "Transit SOV Inventory Engine"),
        app_version=_env_str("APP_VERSION", "1.0.0"),
        log_level=_env_str("LOG_LEVEL", "INFO"),
        database_path=Path(_env_str("DATABASE_PATH", "data/inventory.db")),
        seed_demo_data=_env_bool("SEED_DEMO_DATA", True),
        wifi_adoption_rate=_env_float("WIFI_ADOPTION_RATE", 0.6),
        avg_sessions_per_rider_per_day=_env_float("AVG_SESSIONS_PER_RIDER_PER_DAY", 1.8),
        fallback_base_cpm=_env_float("FALLBACK_BASE_CPM", 100.0),
        legacy_missing_sov_fallback=_env_float("LEGACY_MISSING_SOV_FALLBACK", 0.5),
        ledger_busy_timeout_seconds=_env_float("LEDGER_BUSY_TIMEOUT_SECONDS", 5.0),
        admission_max_retries=_env_int("ADMISSION_MAX_RETRIES", 3),
        admission_retry_backoff_seconds=_env_float("ADMISSION_RETRY_BACKOFF_SECONDS", 0.05),
    )
