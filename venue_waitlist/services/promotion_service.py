"""Promotion of waitlist entries when a slot frees up, plus the periodic sweeps."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import Callable, Optional
from uuid import uuid4

from venue_waitlist.domain.constraints import validate_window
from venue_waitlist.domain.errors import AvailabilityCheckFailedError, InvalidStateError
from venue_waitlist.domain.models import (
    Actor,
    ExpirySweepResult,
    PromotionResult,
    Reservation,
    SpaceWindow,
    WaitlistEntry,
    WaitlistStatus,
)
from venue_waitlist.repository.data_repository import DataRepository
from venue_waitlist.services.availability_service import AvailabilityService
from venue_waitlist.services.notification_service import (
    NotificationDispatcher,
    RateLimitedNotifier,
)
from venue_waitlist.services.rate_limiter import TokenBucketRateLimiter
from venue_waitlist.services.reservation_service import TemporaryReservationService
from venue_waitlist.services.waitlist_service import WaitlistService
from venue_waitlist.utils.config import Settings, get_settings
from venue_waitlist.utils.logger import get_logger
from venue_waitlist.utils.timeutils import hours_between, parse_date, to_timestamp, utc_now


logger = get_logger(__name__)


@dataclass(frozen=True)
class ExpiryWarning:
    reservation_id: str
    threshold_hours: int
    hours_left: float
    notification_status: str


def _dates_in(window: SpaceWindow) -> list[str]:
    start = parse_date(window.date_start)
    end = parse_date(window.date_end)
    return [(start + timedelta(days=offset)).isoformat() for offset in range((end - start).days + 1)]


class PromotionOrchestrator:
    """Offers a freed window to the best-ranked waitlist entry.

    Promotion grants priority of offer only: the entry moves to
    ``notificado``, a notification is queued and an audit record is written.
    The candidate still has to create a temporary reservation to claim the
    slot. The status change is committed first; notification and audit
    failures are reported on the result instead of undoing it.
    """

    def __init__(
        self,
        repository: DataRepository,
        availability_service: AvailabilityService,
        waitlist_service: WaitlistService,
        reservation_service: TemporaryReservationService,
        dispatcher: NotificationDispatcher,
        rate_limiter: Optional[TokenBucketRateLimiter] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repository = repository
        self._availability = availability_service
        self._waitlist = waitlist_service
        self._reservations = reservation_service
        self._notifier = RateLimitedNotifier(dispatcher, rate_limiter)
        self._settings = settings or get_settings()
        self._clock = clock

    def _actor_id(self, actor: Optional[Actor]) -> str:
        return actor.id if actor is not None else self._settings.system_actor_id

    def _best_candidate(self, window: SpaceWindow) -> Optional[WaitlistEntry]:
        candidates = [
            candidate
            for candidate in (
                self._waitlist.next_candidate(window.space_id, desired_date)
                for desired_date in _dates_in(window)
            )
            if candidate is not None
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda item: item.ranking_key)

    def on_slot_freed(
        self,
        space_id: str,
        window: SpaceWindow,
        actor: Optional[Actor] = None,
    ) -> PromotionResult:
        window = validate_window(replace(window, space_id=space_id))
        availability = self._availability.check_window(window)
        if not availability.available:
            logger.info(
                "Promotion aborted | space_id=%s | start=%s | end=%s | conflicts=%s",
                space_id,
                window.date_start,
                window.date_end,
                availability.conflicts.describe(),
            )
            return PromotionResult(
                promoted=None,
                window=window,
                aborted_reason="window_unavailable",
                conflicts=availability.conflicts,
            )

        promoted: Optional[WaitlistEntry] = None
        for attempt in range(1, self._settings.promotion_max_attempts + 1):
            candidate = self._best_candidate(window)
            if candidate is None:
                break
            try:
                promoted = self._waitlist.notify(
                    candidate.id,
                    channel=self._settings.notification_default_channel,
                    actor=actor,
                )
                break
            except InvalidStateError:
                logger.info(
                    "Promotion candidate taken concurrently | entry_id=%s | attempt=%s",
                    candidate.id,
                    attempt,
                )

        if promoted is None:
            return PromotionResult(promoted=None, window=window)

        offered = SpaceWindow(
            space_id=space_id,
            date_start=promoted.date_desejada,
            date_end=promoted.date_desejada,
            time_start=window.time_start,
            time_end=window.time_end,
        )
        client = self._waitlist.get_client(promoted.client_id)
        outcome = self._notifier.send(
            self._settings.notification_template_slot_freed,
            client.email if client else None,
            {
                "entry_id": promoted.id,
                "client_id": promoted.client_id,
                "client_name": client.nome if client else None,
                "client_phone": client.telefone if client else None,
                "space_id": space_id,
                "date_start": offered.date_start,
                "date_end": offered.date_end,
                "time_start": offered.time_start,
                "time_end": offered.time_end,
            },
        )

        record_id: Optional[str] = None
        audit_error: Optional[str] = None
        try:
            record = self._repository.insert(
                "conversion_records",
                {
                    "id": str(uuid4()),
                    "origin_type": "fila_espera",
                    "origin_id": promoted.id,
                    "destination_type": "espaco",
                    "destination_id": space_id,
                    "actor_id": self._actor_id(actor),
                    "reason": f"slot freed on {offered.date_start}; offer notified",
                    "created_at": to_timestamp(self._clock()),
                },
            )
            record_id = str(record["id"])
        except sqlite3.Error as exc:
            logger.error(
                "Promotion audit write failed | entry_id=%s | error=%s",
                promoted.id,
                exc,
            )
            audit_error = str(exc)

        logger.info(
            "Waitlist entry promoted | entry_id=%s | space_id=%s | date=%s | notification=%s",
            promoted.id,
            space_id,
            promoted.date_desejada,
            outcome.status,
        )
        return PromotionResult(
            promoted=promoted,
            window=offered,
            conflicts=availability.conflicts,
            notification_status=outcome.status,
            notification_id=outcome.queue_id,
            notification_error=outcome.error,
            conversion_record_id=record_id,
            audit_error=audit_error,
        )

    def release_and_promote(
        self,
        reservation_id: str,
        reason: Optional[str] = None,
        actor: Optional[Actor] = None,
    ) -> tuple[Reservation, PromotionResult]:
        released = self._reservations.release(reservation_id, reason=reason, actor=actor)
        return released, self.on_slot_freed(released.space_id, released.window, actor=actor)

    def _promote_safely(self, window: SpaceWindow) -> PromotionResult:
        try:
            return self.on_slot_freed(window.space_id, window)
        except AvailabilityCheckFailedError as exc:
            logger.error(
                "Promotion skipped, availability unknown | space_id=%s | start=%s | error=%s",
                window.space_id,
                window.date_start,
                exc,
            )
            return PromotionResult(
                promoted=None,
                window=window,
                aborted_reason="availability_check_failed",
            )

    def run_expiry_sweep(self, now: Optional[datetime] = None) -> ExpirySweepResult:
        """Expire overdue holds, then offer each freed window to the waitlist."""
        expired = self._reservations.expire_due_returning(now)
        promotions = [self._promote_safely(reservation.window) for reservation in expired]
        return ExpirySweepResult(
            expired_count=len(expired),
            expired_ids=[reservation.id for reservation in expired],
            promotions=promotions,
        )

    def run_promotion_sweep(self, today: Optional[date] = None) -> list[PromotionResult]:
        """Retry promotion for every upcoming (space, date) that still has active entries.

        Slots that already have an outstanding offer (an entry in
        ``notificado``) are skipped so one freed slot is not offered twice.
        """
        first_date = (today or self._clock().date()).isoformat()
        active = self._waitlist.list_entries(status=WaitlistStatus.ATIVO)
        slots = sorted(
            {
                (item.entry.space_id, item.entry.date_desejada)
                for item in active
                if item.entry.date_desejada >= first_date
            }
        )
        results: list[PromotionResult] = []
        for space_id, desired_date in slots:
            outstanding = self._repository.count(
                "waitlist_entries",
                [
                    ("space_id", "eq", space_id),
                    ("date_desejada", "eq", desired_date),
                    ("status", "eq", WaitlistStatus.NOTIFICADO.value),
                ],
            )
            if outstanding:
                continue
            results.append(
                self._promote_safely(
                    SpaceWindow(space_id=space_id, date_start=desired_date, date_end=desired_date)
                )
            )
        logger.info(
            "Promotion sweep completed | slots=%s | promoted=%s",
            len(results),
            sum(1 for result in results if result.promoted is not None),
        )
        return results

    def _warning_recipient(self, reservation: Reservation) -> Optional[str]:
        # Actors logged in by email receive their own warnings; ids such as
        # the system actor fall back to the admin inbox.
        if "@" in (reservation.vendedor_id or ""):
            return reservation.vendedor_id
        return self._settings.admin_email or None

    def run_expiry_warnings(self, now: Optional[datetime] = None) -> list[ExpiryWarning]:
        """Warn about a hold nearing its deadline, once per configured threshold."""
        now = now or self._clock()
        thresholds = sorted(self._settings.hold_warning_thresholds_hours)
        if not thresholds:
            return []

        warnings: list[ExpiryWarning] = []
        for reservation in self._reservations.list_expiring(now, within_hours=thresholds[-1]):
            hours_left = hours_between(now, reservation.expires_at)
            threshold = next(value for value in thresholds if hours_left <= value)
            if not self._reservations.record_warning(reservation.id, threshold):
                continue
            outcome = self._notifier.send(
                self._settings.notification_template_hold_expiring,
                self._warning_recipient(reservation),
                {
                    "reservation_id": reservation.id,
                    "vendedor_id": reservation.vendedor_id,
                    "space_id": reservation.space_id,
                    "date_start": reservation.date_start,
                    "date_end": reservation.date_end,
                    "expires_at": to_timestamp(reservation.expires_at),
                    "hours_left": round(hours_left, 1),
                },
            )
            warnings.append(
                ExpiryWarning(
                    reservation_id=reservation.id,
                    threshold_hours=threshold,
                    hours_left=round(hours_left, 2),
                    notification_status=outcome.status,
                )
            )
        if warnings:
            logger.info("Expiry warnings sent | count=%s", len(warnings))
        return warnings
