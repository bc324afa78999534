from __future__ import annotations

import json
import sqlite3
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone

from venue_waitlist.domain.errors import AvailabilityCheckFailedError
from venue_waitlist.domain.models import Actor, SpaceWindow, WaitlistStatus
from venue_waitlist.repository.data_repository import DataRepository
from venue_waitlist.services.availability_service import AvailabilityService
from venue_waitlist.services.notification_service import (
    NotificationDeliveryError,
    NotificationDispatcher,
    OutboxNotificationDispatcher,
)
from venue_waitlist.services.promotion_service import PromotionOrchestrator
from venue_waitlist.services.rate_limiter import TokenBucketRateLimiter
from venue_waitlist.services.reservation_service import TemporaryReservationService
from venue_waitlist.services.waitlist_service import WaitlistService
from venue_waitlist.utils.config import get_settings


class _MutableClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class _RecordingDispatcher(NotificationDispatcher):
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict]] = []

    def enqueue(self, template_name, recipient, payload):
        self.sent.append((template_name, recipient, dict(payload)))
        return f"msg-{len(self.sent)}"


class _FailingDispatcher(NotificationDispatcher):
    def enqueue(self, template_name, recipient, payload):
        raise NotificationDeliveryError("smtp relay unreachable")


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    return replace(
        get_settings(),
        database_path=tmp_path / filename,
        hold_ttl_hours=48,
        hold_warning_thresholds_hours=(24, 12, 2),
        seed_demo_data=False,
    )


def _build_orchestrator(tmp_path, filename: str, dispatcher=None, rate_limiter=None):
    settings = _build_test_settings(tmp_path, filename)
    repository = DataRepository(settings)
    repository.initialize_database()
    clock = _MutableClock(datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc))
    availability = AvailabilityService(repository, clock=clock)
    reservations = TemporaryReservationService(
        repository, availability, settings=settings, clock=clock
    )
    waitlist = WaitlistService(repository, settings=settings, clock=clock)
    orchestrator = PromotionOrchestrator(
        repository=repository,
        availability_service=availability,
        waitlist_service=waitlist,
        reservation_service=reservations,
        dispatcher=dispatcher or OutboxNotificationDispatcher(repository),
        rate_limiter=rate_limiter,
        settings=settings,
        clock=clock,
    )
    space_id = repository.create_space("Salão Jardim")
    return repository, orchestrator, reservations, waitlist, clock, space_id


def _day(space_id: str, day: str = "2026-05-16") -> SpaceWindow:
    return SpaceWindow(space_id, day, day)


def test_unavailable_window_aborts_without_writes(tmp_path):
    repository, orchestrator, reservations, waitlist, _, space_id = _build_orchestrator(
        tmp_path, "promotion_unavailable.db"
    )
    client_id = repository.create_client("Cliente", email="cliente@example.com")
    entry = waitlist.join(client_id, space_id, _day(space_id), priority=9)
    reservations.create(space_id, _day(space_id))

    result = orchestrator.on_slot_freed(space_id, _day(space_id))

    assert result.promoted is None
    assert result.aborted_reason == "window_unavailable"
    assert result.conflicts.reservations == 1
    assert waitlist.get(entry.id).status is WaitlistStatus.ATIVO
    assert repository.count("notification_outbox") == 0
    assert repository.count("conversion_records") == 0


def test_release_promotes_best_candidate(tmp_path):
    repository, orchestrator, reservations, waitlist, _, space_id = _build_orchestrator(
        tmp_path, "promotion_release.db"
    )
    low = repository.create_client("Cliente Baixo", email="baixo@example.com")
    high = repository.create_client("Cliente Alto", email="alto@example.com", telefone="11999990000")
    waitlist.join(low, space_id, _day(space_id), priority=3)
    best = waitlist.join(high, space_id, _day(space_id), priority=8, deal_value=30000)
    hold = reservations.create(space_id, _day(space_id))

    released, result = orchestrator.release_and_promote(
        hold.id, reason="client withdrew", actor=Actor("vendedor-1")
    )

    assert released.id == hold.id
    assert result.promoted is not None
    assert result.promoted.id == best.id
    assert result.promoted.status is WaitlistStatus.NOTIFICADO
    assert result.notification_status == "queued"
    assert result.partial_failure is False

    outbox = repository.query("notification_outbox")
    assert len(outbox) == 1
    assert outbox[0]["template_name"] == "vaga_liberada"
    assert outbox[0]["recipient"] == "alto@example.com"
    payload = json.loads(outbox[0]["payload"])
    assert payload["entry_id"] == best.id
    assert payload["date_start"] == "2026-05-16"
    assert payload["client_phone"] == "11999990000"

    records = repository.query("conversion_records")
    assert len(records) == 1
    assert records[0]["id"] == result.conversion_record_id
    assert records[0]["origin_type"] == "fila_espera"
    assert records[0]["origin_id"] == best.id
    assert records[0]["actor_id"] == "vendedor-1"


def test_empty_queue_promotes_nobody(tmp_path):
    repository, orchestrator, _, _, _, space_id = _build_orchestrator(
        tmp_path, "promotion_empty.db"
    )

    result = orchestrator.on_slot_freed(space_id, _day(space_id))

    assert result.promoted is None
    assert result.aborted_reason is None
    assert repository.count("conversion_records") == 0


def test_multi_day_window_offers_to_best_entry_across_dates(tmp_path):
    repository, orchestrator, _, waitlist, _, space_id = _build_orchestrator(
        tmp_path, "promotion_multi_day.db"
    )
    first_day = repository.create_client("Primeiro", email="a@example.com")
    second_day = repository.create_client("Segundo", email="b@example.com")
    waitlist.join(first_day, space_id, _day(space_id, "2026-05-16"), priority=4)
    preferred = waitlist.join(second_day, space_id, _day(space_id, "2026-05-17"), priority=7)

    result = orchestrator.on_slot_freed(
        space_id, SpaceWindow(space_id, "2026-05-16", "2026-05-18", "10:00", "22:00")
    )

    assert result.promoted.id == preferred.id
    assert result.window.date_start == "2026-05-17"
    assert result.window.date_end == "2026-05-17"
    assert result.window.time_start == "10:00"


def test_dispatch_failure_is_reported_as_partial_success(tmp_path):
    repository, orchestrator, _, waitlist, _, space_id = _build_orchestrator(
        tmp_path, "promotion_dispatch_failure.db", dispatcher=_FailingDispatcher()
    )
    client_id = repository.create_client("Cliente", email="cliente@example.com")
    entry = waitlist.join(client_id, space_id, _day(space_id))

    result = orchestrator.on_slot_freed(space_id, _day(space_id))

    assert result.promoted.id == entry.id
    assert result.notification_status == "failed"
    assert "smtp relay unreachable" in result.notification_error
    assert result.partial_failure is True
    assert waitlist.get(entry.id).status is WaitlistStatus.NOTIFICADO
    assert repository.count("conversion_records") == 1


def test_client_without_email_is_skipped_not_failed(tmp_path):
    repository, orchestrator, _, waitlist, _, space_id = _build_orchestrator(
        tmp_path, "promotion_no_email.db"
    )
    client_id = repository.create_client("Sem Email")
    waitlist.join(client_id, space_id, _day(space_id))

    result = orchestrator.on_slot_freed(space_id, _day(space_id))

    assert result.notification_status == "skipped"
    assert result.partial_failure is False
    assert repository.count("notification_outbox") == 0


def test_rate_limited_notification_keeps_promotion(tmp_path):
    ticks = [0.0]
    limiter = TokenBucketRateLimiter(capacity=1, refill_per_second=0.0, clock=lambda: ticks[0])
    dispatcher = _RecordingDispatcher()
    repository, orchestrator, _, waitlist, _, space_id = _build_orchestrator(
        tmp_path, "promotion_rate_limited.db", dispatcher=dispatcher, rate_limiter=limiter
    )
    for index, day in enumerate(("2026-05-16", "2026-05-17")):
        client_id = repository.create_client(f"Cliente {index}", email=f"c{index}@example.com")
        waitlist.join(client_id, space_id, _day(space_id, day))

    first = orchestrator.on_slot_freed(space_id, _day(space_id, "2026-05-16"))
    second = orchestrator.on_slot_freed(space_id, _day(space_id, "2026-05-17"))

    assert first.notification_status == "queued"
    assert second.notification_status == "rate_limited"
    assert second.promoted is not None
    assert second.partial_failure is True
    assert len(dispatcher.sent) == 1


def test_audit_failure_is_reported_on_result(tmp_path, monkeypatch):
    repository, orchestrator, _, waitlist, _, space_id = _build_orchestrator(
        tmp_path, "promotion_audit_failure.db", dispatcher=_RecordingDispatcher()
    )
    client_id = repository.create_client("Cliente", email="cliente@example.com")
    entry = waitlist.join(client_id, space_id, _day(space_id))
    original_insert = repository.insert

    def _insert(table, row):
        if table == "conversion_records":
            raise sqlite3.OperationalError("disk I/O error")
        return original_insert(table, row)

    monkeypatch.setattr(repository, "insert", _insert)

    result = orchestrator.on_slot_freed(space_id, _day(space_id))

    assert result.promoted.id == entry.id
    assert result.conversion_record_id is None
    assert "disk I/O error" in result.audit_error
    assert result.partial_failure is True


def test_expiry_sweep_expires_and_promotes(tmp_path):
    repository, orchestrator, reservations, waitlist, clock, space_id = _build_orchestrator(
        tmp_path, "promotion_expiry_sweep.db"
    )
    client_id = repository.create_client("Cliente", email="cliente@example.com")
    hold = reservations.create(space_id, _day(space_id))
    entry = waitlist.join(client_id, space_id, _day(space_id), priority=7)

    clock.advance(hours=49)
    result = orchestrator.run_expiry_sweep()

    assert result.expired_count == 1
    assert result.expired_ids == [hold.id]
    assert len(result.promotions) == 1
    assert result.promotions[0].promoted.id == entry.id

    repeat = orchestrator.run_expiry_sweep()
    assert repeat.expired_count == 0
    assert repeat.promotions == []


def test_expiry_sweep_tolerates_failed_availability_check(tmp_path, monkeypatch):
    repository, orchestrator, reservations, waitlist, clock, space_id = _build_orchestrator(
        tmp_path, "promotion_sweep_unknown.db"
    )
    client_id = repository.create_client("Cliente", email="cliente@example.com")
    reservations.create(space_id, _day(space_id))
    entry = waitlist.join(client_id, space_id, _day(space_id))
    clock.advance(hours=49)

    def _broken_check(window, exclude_reservation_id=None):
        raise AvailabilityCheckFailedError("database is locked")

    monkeypatch.setattr(orchestrator._availability, "check_window", _broken_check)

    result = orchestrator.run_expiry_sweep()

    assert result.expired_count == 1
    assert result.promotions[0].aborted_reason == "availability_check_failed"
    assert waitlist.get(entry.id).status is WaitlistStatus.ATIVO


def test_promotion_sweep_skips_slots_with_outstanding_offer(tmp_path):
    repository, orchestrator, _, waitlist, _, space_id = _build_orchestrator(
        tmp_path, "promotion_sweep.db"
    )
    clients = [
        repository.create_client(f"Cliente {index}", email=f"c{index}@example.com")
        for index in range(3)
    ]
    open_slot = waitlist.join(clients[0], space_id, _day(space_id, "2026-05-16"))
    offered = waitlist.join(clients[1], space_id, _day(space_id, "2026-05-17"))
    waitlist.join(clients[2], space_id, _day(space_id, "2026-05-17"))
    waitlist.notify(offered.id)
    waitlist.join(clients[0], space_id, _day(space_id, "2026-02-01"))

    results = orchestrator.run_promotion_sweep(today=date(2026, 3, 1))

    assert len(results) == 1
    assert results[0].promoted.id == open_slot.id


def test_expiry_warnings_fire_once_per_threshold(tmp_path):
    dispatcher = _RecordingDispatcher()
    repository, orchestrator, reservations, _, clock, space_id = _build_orchestrator(
        tmp_path, "promotion_warnings.db", dispatcher=dispatcher
    )
    hold = reservations.create(space_id, _day(space_id), actor=Actor("ana@example.com"))

    clock.advance(hours=30)
    first = orchestrator.run_expiry_warnings()
    again = orchestrator.run_expiry_warnings()
    clock.advance(hours=17)
    closer = orchestrator.run_expiry_warnings()

    assert [(item.reservation_id, item.threshold_hours) for item in first] == [(hold.id, 24)]
    assert again == []
    assert [item.threshold_hours for item in closer] == [2]
    recipients = [recipient for _, recipient, _ in dispatcher.sent]
    assert recipients == ["ana@example.com", "ana@example.com"]
    assert {template for template, _, _ in dispatcher.sent} == {"reserva_expirando"}


def test_expiry_warning_for_system_hold_goes_to_admin_inbox(tmp_path):
    repository, orchestrator, reservations, _, clock, space_id = _build_orchestrator(
        tmp_path, "promotion_warnings_admin.db"
    )
    hold = reservations.create(space_id, _day(space_id))
    assert hold.vendedor_id == "sistema"

    clock.advance(hours=30)
    warnings = orchestrator.run_expiry_warnings()

    assert [item.notification_status for item in warnings] == ["queued"]
    outbox = repository.query("notification_outbox")
    assert [row["recipient"] for row in outbox] == ["admin@venue-waitlist.local"]
    assert json.loads(outbox[0]["payload"])["vendedor_id"] == "sistema"


def test_expiry_warning_without_any_address_is_skipped(tmp_path, monkeypatch):
    repository, orchestrator, reservations, _, clock, space_id = _build_orchestrator(
        tmp_path, "promotion_warnings_skipped.db"
    )
    monkeypatch.setattr(orchestrator, "_settings", replace(orchestrator._settings, admin_email=""))
    reservations.create(space_id, _day(space_id), actor=Actor("vendedor-1"))

    clock.advance(hours=30)
    warnings = orchestrator.run_expiry_warnings()

    assert [item.notification_status for item in warnings] == ["skipped"]
    assert repository.count("notification_outbox") == 0
