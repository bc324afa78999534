"""Availability checks against reservations and blackout periods."""

from __future__ import annotations

import sqlite3
from datetime import date, datetime
from typing import Callable, Optional
from uuid import uuid4

from venue_waitlist.domain.constraints import validate_window
from venue_waitlist.domain.errors import AvailabilityCheckFailedError, NotFoundError
from venue_waitlist.domain.models import (
    AvailabilityResult,
    BlackoutPeriod,
    ConflictCounts,
    ReservationStatus,
    SpaceWindow,
)
from venue_waitlist.repository.data_repository import DataRepository
from venue_waitlist.utils.logger import get_logger
from venue_waitlist.utils.timeutils import to_timestamp, utc_now


logger = get_logger(__name__)


def _as_date_string(value: str | date) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return value


class AvailabilityService:
    """Counts overlapping active reservations and blackouts for a space.

    Overlap is inclusive on both ends: an existing interval conflicts when
    ``existing.start <= window.end AND existing.end >= window.start``. Active
    holds count until the expiry sweep moves them to ``expirada``.
    """

    def __init__(
        self,
        repository: DataRepository,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repository = repository
        self._clock = clock

    def check_availability(
        self,
        space_id: str,
        window_start: str | date,
        window_end: str | date,
        exclude_reservation_id: Optional[str] = None,
    ) -> AvailabilityResult:
        window = SpaceWindow(
            space_id=space_id,
            date_start=_as_date_string(window_start),
            date_end=_as_date_string(window_end),
        )
        return self.check_window(window, exclude_reservation_id=exclude_reservation_id)

    def check_window(
        self,
        window: SpaceWindow,
        exclude_reservation_id: Optional[str] = None,
    ) -> AvailabilityResult:
        validate_window(window)
        reservation_filters = [
            ("space_id", "eq", window.space_id),
            ("status", "eq", ReservationStatus.ATIVA.value),
            ("date_start", "lte", window.date_end),
            ("date_end", "gte", window.date_start),
        ]
        if exclude_reservation_id:
            reservation_filters.append(("id", "neq", exclude_reservation_id))
        blackout_filters = [
            ("space_id", "eq", window.space_id),
            ("date_start", "lte", window.date_end),
            ("date_end", "gte", window.date_start),
        ]

        try:
            reservation_conflicts = self._repository.count("reservations", reservation_filters)
            blackout_conflicts = self._repository.count("blackout_periods", blackout_filters)
        except sqlite3.Error as exc:
            logger.error(
                "Availability check failed | space_id=%s | start=%s | end=%s | error=%s",
                window.space_id,
                window.date_start,
                window.date_end,
                exc,
            )
            raise AvailabilityCheckFailedError(
                f"Could not verify availability for space {window.space_id}: {exc}"
            ) from exc

        conflicts = ConflictCounts(
            reservations=reservation_conflicts,
            blackouts=blackout_conflicts,
        )
        return AvailabilityResult(available=conflicts.total == 0, conflicts=conflicts)

    def add_blackout(
        self,
        space_id: str,
        date_start: str | date,
        date_end: str | date,
        time_start: Optional[str] = None,
        time_end: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> BlackoutPeriod:
        window = validate_window(
            SpaceWindow(
                space_id=space_id,
                date_start=_as_date_string(date_start),
                date_end=_as_date_string(date_end),
                time_start=time_start,
                time_end=time_end,
            )
        )
        if self._repository.get("spaces", space_id) is None:
            raise NotFoundError(f"Space {space_id} not found")
        row = self._repository.insert(
            "blackout_periods",
            {
                "id": str(uuid4()),
                "space_id": window.space_id,
                "date_start": window.date_start,
                "date_end": window.date_end,
                "time_start": window.time_start,
                "time_end": window.time_end,
                "reason": reason,
                "created_at": to_timestamp(self._clock()),
            },
        )
        blackout = BlackoutPeriod.from_row(row)
        logger.info(
            "Blackout created | blackout_id=%s | space_id=%s | start=%s | end=%s",
            blackout.id,
            blackout.space_id,
            blackout.date_start,
            blackout.date_end,
        )
        return blackout

    def list_blackouts(self, space_id: Optional[str] = None) -> list[BlackoutPeriod]:
        filters = [("space_id", "eq", space_id)] if space_id else []
        rows = self._repository.query(
            "blackout_periods",
            filters,
            order_by=[("date_start", "asc")],
        )
        return [BlackoutPeriod.from_row(row) for row in rows]

    def remove_blackout(self, blackout_id: str) -> None:
        if not self._repository.delete("blackout_periods", blackout_id):
            raise NotFoundError(f"Blackout {blackout_id} not found")
        logger.info("Blackout removed | blackout_id=%s", blackout_id)
