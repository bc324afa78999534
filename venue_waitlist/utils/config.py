"""Environment-driven runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_thresholds(name: str, default: tuple[int, ...]) -> tuple[int, ...]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    values = sorted({int(item) for item in raw.split(",") if item.strip()}, reverse=True)
    return tuple(values)


@dataclass(frozen=True)
class Settings:
    app_name: str = "Venue Waitlist & Temporary Reservations"
    app_version: str = "1.0.0"
    database_path: Path = Path("data/venue_waitlist.db")
    log_level: str = "INFO"

    admin_token: str = ""
    system_actor_id: str = "sistema"

    hold_ttl_hours: int = 48
    hold_max_extension_hours: int = 72
    hold_warning_thresholds_hours: tuple[int, ...] = (24, 12, 2)

    waitlist_min_priority: int = 1
    waitlist_max_priority: int = 10
    waitlist_default_priority: int = 5

    notification_default_channel: str = "sistema"
    notification_template_slot_freed: str = "vaga_liberada"
    notification_template_hold_expiring: str = "reserva_expirando"
    notification_template_demand_alert: str = "alerta_alta_demanda"
    notification_template_daily_report: str = "relatorio_diario"
    notification_rate_capacity: int = 20
    notification_rate_refill_per_second: float = 2.0
    notification_webhook_url: Optional[str] = None
    notification_timeout_seconds: float = 5.0

    demand_alert_threshold: int = 10
    demand_alert_lookback_hours: int = 24
    admin_email: str = "admin@venue-waitlist.local"

    promotion_max_attempts: int = 3
    seed_demo_data: bool = True


@lru_cache
def get_settings() -> Settings:
    """Build settings from the environment once per process."""
    defaults = Settings()
    return Settings(
        app_name=os.getenv("APP_NAME", defaults.app_name),
        app_version=os.getenv("APP_VERSION", defaults.app_version),
        database_path=Path(os.getenv("DATABASE_PATH", str(defaults.database_path))),
        log_level=os.getenv("LOG_LEVEL", defaults.log_level),
        admin_token=os.getenv("ADMIN_TOKEN", defaults.admin_token),
        system_actor_id=os.getenv("SYSTEM_ACTOR_ID", defaults.system_actor_id),
        hold_ttl_hours=_env_int("HOLD_TTL_HOURS", defaults.hold_ttl_hours),
        hold_max_extension_hours=_env_int(
            "HOLD_MAX_EXTENSION_HOURS", defaults.hold_max_extension_hours
        ),
        hold_warning_thresholds_hours=_env_thresholds(
            "HOLD_WARNING_THRESHOLDS_HOURS", defaults.hold_warning_thresholds_hours
        ),
        waitlist_min_priority=_env_int("WAITLIST_MIN_PRIORITY", defaults.waitlist_min_priority),
        waitlist_max_priority=_env_int("WAITLIST_MAX_PRIORITY", defaults.waitlist_max_priority),
        waitlist_default_priority=_env_int(
            "WAITLIST_DEFAULT_PRIORITY", defaults.waitlist_default_priority
        ),
        notification_default_channel=os.getenv(
            "NOTIFICATION_DEFAULT_CHANNEL", defaults.notification_default_channel
        ),
        notification_rate_capacity=_env_int(
            "NOTIFICATION_RATE_CAPACITY", defaults.notification_rate_capacity
        ),
        notification_rate_refill_per_second=_env_float(
            "NOTIFICATION_RATE_REFILL_PER_SECOND",
            defaults.notification_rate_refill_per_second,
        ),
        notification_webhook_url=os.getenv("NOTIFICATION_WEBHOOK_URL") or None,
        notification_timeout_seconds=_env_float(
            "NOTIFICATION_TIMEOUT_SECONDS", defaults.notification_timeout_seconds
        ),
        demand_alert_threshold=_env_int("DEMAND_ALERT_THRESHOLD", defaults.demand_alert_threshold),
        demand_alert_lookback_hours=_env_int(
            "DEMAND_ALERT_LOOKBACK_HOURS", defaults.demand_alert_lookback_hours
        ),
        admin_email=os.getenv("ADMIN_EMAIL", defaults.admin_email),
        promotion_max_attempts=_env_int("PROMOTION_MAX_ATTEMPTS", defaults.promotion_max_attempts),
        seed_demo_data=_env_bool("SEED_DEMO_DATA", defaults.seed_demo_data),
    )
