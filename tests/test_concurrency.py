from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable

from venue_waitlist.domain.errors import (
    BookingError,
    ConflictError,
    DuplicateError,
    InvalidStateError,
)
from venue_waitlist.domain.models import PromotionResult, SpaceWindow, WaitlistStatus
from venue_waitlist.repository.data_repository import DataRepository
from venue_waitlist.services.availability_service import AvailabilityService
from venue_waitlist.services.notification_service import OutboxNotificationDispatcher
from venue_waitlist.services.promotion_service import PromotionOrchestrator
from venue_waitlist.services.reservation_service import TemporaryReservationService
from venue_waitlist.services.waitlist_service import WaitlistService
from venue_waitlist.utils.config import get_settings


NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _clock() -> datetime:
    return NOW


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    return replace(
        get_settings(),
        database_path=tmp_path / filename,
        hold_ttl_hours=48,
        seed_demo_data=False,
    )


def _seed(tmp_path, filename: str):
    settings = _build_test_settings(tmp_path, filename)
    repository = DataRepository(settings)
    repository.initialize_database()
    space_id = repository.create_space("Salão Jardim")
    client_id = repository.create_client("Mariana Alves", email="mariana@example.com")
    return settings, repository, space_id, client_id


def _reservation_service(settings) -> TemporaryReservationService:
    repository = DataRepository(settings)
    availability = AvailabilityService(repository, clock=_clock)
    return TemporaryReservationService(repository, availability, settings=settings, clock=_clock)


def _orchestrator(settings) -> PromotionOrchestrator:
    repository = DataRepository(settings)
    availability = AvailabilityService(repository, clock=_clock)
    return PromotionOrchestrator(
        repository=repository,
        availability_service=availability,
        waitlist_service=WaitlistService(repository, settings=settings, clock=_clock),
        reservation_service=TemporaryReservationService(
            repository, availability, settings=settings, clock=_clock
        ),
        dispatcher=OutboxNotificationDispatcher(repository),
        settings=settings,
        clock=_clock,
    )


def _race(workers: list[Callable[[], Any]]) -> list[Any]:
    """Start every worker on its own thread at the same moment.

    Each slot of the returned list holds the worker's return value or the
    BookingError it raised.
    """
    barrier = threading.Barrier(len(workers))
    results: list[Any] = []
    lock = threading.Lock()

    def run(work: Callable[[], Any]) -> None:
        barrier.wait()
        try:
            outcome = work()
        except BookingError as exc:
            outcome = exc
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=run, args=(work,)) for work in workers]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
        assert not thread.is_alive()
    assert len(results) == len(workers)
    return results


def _errors(results: list[Any]) -> list[type]:
    return [type(item) for item in results if isinstance(item, BookingError)]


def test_racing_creates_on_same_window_admit_exactly_one_hold(tmp_path):
    settings, repository, space_id, _ = _seed(tmp_path, "race_create.db")
    window = SpaceWindow(space_id, "2026-05-16", "2026-05-16")
    services = [_reservation_service(settings) for _ in range(8)]

    results = _race(
        [lambda service=service: service.create(space_id, window) for service in services]
    )

    assert len(_errors(results)) == 7
    assert set(_errors(results)) == {ConflictError}
    assert repository.count("reservations") == 1


def test_racing_joins_for_same_client_and_date_keep_one_entry(tmp_path):
    settings, repository, space_id, client_id = _seed(tmp_path, "race_join.db")
    window = SpaceWindow(space_id, "2026-05-16", "2026-05-16")
    services = [
        WaitlistService(DataRepository(settings), settings=settings, clock=_clock)
        for _ in range(6)
    ]

    results = _race(
        [lambda service=service: service.join(client_id, space_id, window) for service in services]
    )

    assert _errors(results) == [DuplicateError] * 5
    assert repository.count("waitlist_entries") == 1


def test_racing_notify_moves_entry_once(tmp_path):
    settings, repository, space_id, client_id = _seed(tmp_path, "race_notify.db")
    seed_waitlist = WaitlistService(repository, settings=settings, clock=_clock)
    entry = seed_waitlist.join(client_id, space_id, SpaceWindow(space_id, "2026-05-16", ""))
    services = [
        WaitlistService(DataRepository(settings), settings=settings, clock=_clock)
        for _ in range(2)
    ]

    results = _race([lambda service=service: service.notify(entry.id) for service in services])

    assert _errors(results) == [InvalidStateError]
    assert seed_waitlist.get(entry.id).status is WaitlistStatus.NOTIFICADO
    assert seed_waitlist.get(entry.id).observacoes.count("Client notified") == 1


def test_racing_converts_produce_one_confirmed_reservation(tmp_path):
    settings, repository, space_id, client_id = _seed(tmp_path, "race_convert.db")
    hold = _reservation_service(settings).create(
        space_id, SpaceWindow(space_id, "2026-05-16", "2026-05-16"), client_id=client_id
    )
    services = [_reservation_service(settings) for _ in range(2)]

    results = _race([lambda service=service: service.convert(hold.id) for service in services])

    assert _errors(results) == [InvalidStateError]
    assert repository.count("conversion_records") == 1
    assert repository.count("reservations", [("kind", "eq", "confirmada")]) == 1


def test_racing_orchestrators_offer_a_freed_slot_once(tmp_path):
    settings, repository, space_id, client_id = _seed(tmp_path, "race_promotion.db")
    entry = WaitlistService(repository, settings=settings, clock=_clock).join(
        client_id, space_id, SpaceWindow(space_id, "2026-05-16", "2026-05-16")
    )
    window = SpaceWindow(space_id, "2026-05-16", "2026-05-16")
    orchestrators = [_orchestrator(settings) for _ in range(2)]

    results = _race(
        [
            lambda orchestrator=orchestrator: orchestrator.on_slot_freed(space_id, window)
            for orchestrator in orchestrators
        ]
    )

    assert all(isinstance(item, PromotionResult) for item in results)
    assert [item.promoted.id for item in results if item.promoted is not None] == [entry.id]
    assert repository.count("notification_outbox") == 1
    assert repository.count("conversion_records") == 1
