from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_SEASON_DAYS = (
    "2025-12-15",
    "2025-12-16",
    "2025-12-17",
    "2025-12-18",
    "2025-12-19",
    "2025-12-20",
    "2025-12-21",
    "2025-12-22",
)


def _get_env(*keys: str, default: str | None = None) -> str | None:
    for k in keys:
        v = os.getenv(k)
        if v is not None and str(v).strip() != "":
            return v.strip()
    return default


def _get_int(*keys: str, default: int) -> int:
    v = _get_env(*keys)
    if v is None:
        return default
    return int(v)


def _get_float(*keys: str, default: float) -> float:
    v = _get_env(*keys)
    if v is None:
        return default
    return float(v)


def _get_list(*keys: str, default: tuple[str, ...]) -> tuple[str, ...]:
    v = _get_env(*keys)
    if v is None:
        return default
    return tuple(part.strip() for part in v.split(",") if part.strip())


def parse_bool(value: str | None) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "y"}


@dataclass(frozen=True, slots=True)
class Settings:
    square_adapter: str
    square_access_token: str
    square_location_id: str
    square_env: str
    square_timeout_seconds: float
    square_webhook_signature_key: str
    square_webhook_url: str

    daily_limit: int
    tax_percent: str
    pickup_utc_offset: str
    success_path: str
    reservation_ttl_minutes: int

    season_days: tuple[str, ...]
    season_start: str
    season_end: str

    admin_token: str
    log_level: str


def get_settings() -> Settings:
    """Read settings from the environment.

    Values are read on every call so tests can override env vars with monkeypatch.
    """

    return Settings(
        square_adapter=(_get_env("RICOTTA_SQUARE_ADAPTER", default="mock") or "mock").lower(),
        square_access_token=_get_env("SQUARE_ACCESS_TOKEN", default="") or "",
        square_location_id=_get_env("SQUARE_LOCATION_ID", default="L54AH5T8V5HVN") or "",
        square_env=(_get_env("SQUARE_ENV", default="production") or "production").lower(),
        square_timeout_seconds=_get_float("RICOTTA_SQUARE_TIMEOUT_SECONDS", default=10.0),
        square_webhook_signature_key=_get_env(
            "RICOTTA_SQUARE_WEBHOOK_SIGNATURE_KEY", "SQUARE_WEBHOOK_SIGNATURE_KEY", default=""
        )
        or "",
        square_webhook_url=_get_env("RICOTTA_SQUARE_WEBHOOK_URL", default="") or "",
        daily_limit=_get_int("RICOTTA_DAILY_LIMIT", "DAILY_LIMIT", default=250),
        tax_percent=_get_env("RICOTTA_TAX_PERCENT", default="8.875") or "8.875",
        pickup_utc_offset=_get_env("RICOTTA_PICKUP_UTC_OFFSET", default="-05:00") or "-05:00",
        success_path=_get_env("RICOTTA_SUCCESS_PATH", default="/success.html") or "/success.html",
        reservation_ttl_minutes=_get_int("RICOTTA_RESERVATION_TTL_MINUTES", default=30),
        season_days=_get_list("RICOTTA_SEASON_DAYS", default=DEFAULT_SEASON_DAYS),
        season_start=_get_env("RICOTTA_SEASON_START", default="2025-12-14T00:00:00-05:00") or "",
        season_end=_get_env("RICOTTA_SEASON_END", default="2025-12-23T23:59:59-05:00") or "",
        admin_token=_get_env("RICOTTA_ADMIN_TOKEN", default="") or "",
        log_level=(_get_env("RICOTTA_LOG_LEVEL", default="INFO") or "INFO").upper(),
    )
