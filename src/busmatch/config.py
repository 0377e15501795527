"""Runtime settings loaded from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from .exceptions import ConfigurationError

SEVEN_DAYS_IN_SECONDS = 7 * 24 * 60 * 60


@dataclass(frozen=True)
class Settings:
    app_id: str
    app_key: str
    base_url: str = "https://tdx.transportdata.tw/"
    cache_dir: str = ".busmatch_cache"
    cache_ttl_seconds: float = SEVEN_DAYS_IN_SECONDS
    poll_interval_seconds: float = 30.0
    grouping_threshold_meters: float = 150.0
    nearby_radius_meters: float = 500.0
    max_concurrency: int = 8
    request_timeout: float = 30.0
    timezone: str = "Asia/Taipei"


def _parse_float(raw: str, name: str) -> float:
    try:
        return float(raw.strip())
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got '{raw}'.") from exc


def load_settings() -> Settings:
    load_dotenv()

    app_id = os.getenv("TDX_APP_ID", "").strip()
    app_key = os.getenv("TDX_APP_KEY", "").strip()
    if not app_id or not app_key:
        raise ConfigurationError("Set TDX_APP_ID and TDX_APP_KEY in your environment.")

    ttl_days = _parse_float(os.getenv("BUSMATCH_CACHE_TTL_DAYS", "7"), "BUSMATCH_CACHE_TTL_DAYS")

    return Settings(
        app_id=app_id,
        app_key=app_key,
        base_url=os.getenv("TDX_BASE_URL", "https://tdx.transportdata.tw/"),
        cache_dir=os.getenv("BUSMATCH_CACHE_DIR", ".busmatch_cache"),
        cache_ttl_seconds=ttl_days * 24 * 60 * 60,
        poll_interval_seconds=_parse_float(
            os.getenv("BUSMATCH_POLL_INTERVAL", "30"), "BUSMATCH_POLL_INTERVAL"
        ),
        max_concurrency=int(_parse_float(os.getenv("BUSMATCH_MAX_CONCURRENCY", "8"), "BUSMATCH_MAX_CONCURRENCY")),
        timezone=os.getenv("BUSMATCH_TIMEZONE", "Asia/Taipei"),
    )
