"""Lifecycle rules: status transition tables and input validation."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from venue_waitlist.domain.errors import InvalidArgumentError, InvalidStateError
from venue_waitlist.domain.models import ReservationStatus, SpaceWindow, WaitlistStatus


RESERVATION_TRANSITIONS: dict[ReservationStatus, frozenset[ReservationStatus]] = {
    ReservationStatus.ATIVA: frozenset(
        {
            ReservationStatus.CONVERTIDA,
            ReservationStatus.LIBERADA,
            ReservationStatus.EXPIRADA,
            ReservationStatus.CANCELADO,
        }
    ),
    ReservationStatus.CONVERTIDA: frozenset(),
    ReservationStatus.LIBERADA: frozenset(),
    ReservationStatus.EXPIRADA: frozenset(),
    ReservationStatus.CANCELADO: frozenset(),
}

WAITLIST_TRANSITIONS: dict[WaitlistStatus, frozenset[WaitlistStatus]] = {
    WaitlistStatus.ATIVO: frozenset(
        {WaitlistStatus.NOTIFICADO, WaitlistStatus.ATENDIDO, WaitlistStatus.CANCELADO}
    ),
    WaitlistStatus.NOTIFICADO: frozenset({WaitlistStatus.ATENDIDO, WaitlistStatus.CANCELADO}),
    WaitlistStatus.ATENDIDO: frozenset(),
    WaitlistStatus.CANCELADO: frozenset(),
}

_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


@dataclass(frozen=True)
class LifecycleConfig:
    hold_ttl_hours: int
    hold_max_extension_hours: int
    min_priority: int
    max_priority: int
    default_priority: int

    @classmethod
    def from_settings(cls, settings: Any) -> "LifecycleConfig":
        config = cls(
            hold_ttl_hours=settings.hold_ttl_hours,
            hold_max_extension_hours=settings.hold_max_extension_hours,
            min_priority=settings.waitlist_min_priority,
            max_priority=settings.waitlist_max_priority,
            default_priority=settings.waitlist_default_priority,
        )
        validate_lifecycle_config(config)
        return config


def validate_lifecycle_config(config: LifecycleConfig) -> None:
    if config.hold_ttl_hours <= 0:
        raise ValueError("hold_ttl_hours must be > 0")
    if config.hold_max_extension_hours <= 0:
        raise ValueError("hold_max_extension_hours must be > 0")
    if config.min_priority < 1:
        raise ValueError("min_priority must be >= 1")
    if config.min_priority > config.max_priority:
        raise ValueError("min_priority must not exceed max_priority")
    if not config.min_priority <= config.default_priority <= config.max_priority:
        raise ValueError("default_priority must lie within the priority bounds")


def reservation_transition_allowed(current: ReservationStatus, target: ReservationStatus) -> bool:
    return target in RESERVATION_TRANSITIONS[current]


def waitlist_transition_allowed(current: WaitlistStatus, target: WaitlistStatus) -> bool:
    return target in WAITLIST_TRANSITIONS[current]


def ensure_reservation_transition(
    reservation_id: str,
    current: ReservationStatus,
    target: ReservationStatus,
) -> None:
    if not reservation_transition_allowed(current, target):
        raise InvalidStateError(
            f"Reservation {reservation_id} cannot move from {current.value} to {target.value}"
        )


def ensure_waitlist_transition(
    entry_id: str,
    current: WaitlistStatus,
    target: WaitlistStatus,
) -> None:
    if not waitlist_transition_allowed(current, target):
        raise InvalidStateError(
            f"Waitlist entry {entry_id} cannot move from {current.value} to {target.value}"
        )


def waitlist_sources_for(target: WaitlistStatus) -> list[WaitlistStatus]:
    """Statuses from which ``target`` is reachable, used as update guards."""
    return [status for status, targets in WAITLIST_TRANSITIONS.items() if target in targets]


def validate_priority(priority: int, config: LifecycleConfig) -> int:
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise InvalidArgumentError("priority must be an integer")
    if not config.min_priority <= priority <= config.max_priority:
        raise InvalidArgumentError(
            f"priority must be between {config.min_priority} and {config.max_priority}"
        )
    return priority


def validate_date(value: str, field_name: str = "date") -> str:
    try:
        datetime.strptime(value, "%Y-%m-%d")
    except (TypeError, ValueError) as exc:
        raise InvalidArgumentError(f"{field_name} must follow YYYY-MM-DD format") from exc
    return value


def validate_window(window: SpaceWindow) -> SpaceWindow:
    if not window.space_id:
        raise InvalidArgumentError("space_id is required")
    validate_date(window.date_start, "date_start")
    validate_date(window.date_end, "date_end")
    if window.date_end < window.date_start:
        raise InvalidArgumentError("date_end must not precede date_start")

    if (window.time_start is None) != (window.time_end is None):
        raise InvalidArgumentError("time_start and time_end must be provided together")
    if window.time_start is not None and window.time_end is not None:
        for label, value in (("time_start", window.time_start), ("time_end", window.time_end)):
            if _TIME_PATTERN.fullmatch(value) is None:
                raise InvalidArgumentError(f"{label} must follow HH:MM format")
        if window.date_start == window.date_end and window.time_end <= window.time_start:
            raise InvalidArgumentError("time_end must be after time_start")
    return window


def append_observation(existing: str | None, at: datetime, actor_id: str, text: str) -> str:
    """Append a timestamped, actor-stamped line to a free-text audit field."""
    line = f"[{at.strftime('%Y-%m-%d %H:%M')} UTC] {text} ({actor_id})"
    if not existing:
        return line
    return f"{existing}\n\n{line}"
