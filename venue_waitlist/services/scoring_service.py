"""Waitlist score computation."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from venue_waitlist.utils.timeutils import hours_between


MAX_SCORE = 100

_DEAL_VALUE_BANDS: tuple[tuple[float, int], ...] = (
    (50000.0, 40),
    (20000.0, 30),
    (10000.0, 20),
    (5000.0, 10),
)

_SOURCE_POINTS: dict[str, int] = {
    "indicacao": 20,
    "google": 15,
    "facebook": 10,
}
_DEFAULT_SOURCE_POINTS = 5

_PRIORITY_WEIGHT = 3

_TENURE_BANDS: tuple[tuple[float, int], ...] = (
    (365.0, 10),
    (180.0, 7),
    (90.0, 5),
    (30.0, 3),
)


@dataclass(frozen=True)
class ScoreInput:
    deal_value: Any = 0.0
    source: Optional[str] = None
    priority: Any = 0
    tenure_days: Any = 0


def _as_number(value: Any) -> float:
    """Coerce to a finite number; anything unusable contributes nothing."""
    if isinstance(value, bool) or value is None:
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def _band_points(value: float, bands: tuple[tuple[float, int], ...]) -> int:
    for threshold, points in bands:
        if value >= threshold:
            return points
    return 0


def deal_value_points(deal_value: Any) -> int:
    return _band_points(_as_number(deal_value), _DEAL_VALUE_BANDS)


def source_points(source: Optional[str]) -> int:
    if not source:
        return _DEFAULT_SOURCE_POINTS
    return _SOURCE_POINTS.get(source.strip().lower(), _DEFAULT_SOURCE_POINTS)


def priority_points(priority: Any) -> int:
    return int(max(_as_number(priority), 0.0)) * _PRIORITY_WEIGHT


def tenure_points(tenure_days: Any) -> int:
    return _band_points(_as_number(tenure_days), _TENURE_BANDS)


def compute_score(score_input: ScoreInput) -> int:
    """Additive score from deal value, lead source, priority and tenure, capped at 100."""
    total = (
        deal_value_points(score_input.deal_value)
        + source_points(score_input.source)
        + priority_points(score_input.priority)
        + tenure_points(score_input.tenure_days)
    )
    return min(total, MAX_SCORE)


def tenure_days_since(created_at: Optional[datetime], now: datetime) -> int:
    """Whole days a client has existed; 0 when the creation date is unknown."""
    if created_at is None:
        return 0
    return max(int(hours_between(created_at, now) // 24), 0)
