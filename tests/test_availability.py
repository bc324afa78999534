from __future__ import annotations

import sqlite3
from dataclasses import replace
from datetime import date, datetime, timezone

import pytest

from venue_waitlist.domain.errors import (
    AvailabilityCheckFailedError,
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
)
from venue_waitlist.domain.models import SpaceWindow
from venue_waitlist.repository.data_repository import DataRepository
from venue_waitlist.services.availability_service import AvailabilityService
from venue_waitlist.services.reservation_service import TemporaryReservationService
from venue_waitlist.utils.config import get_settings


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    return replace(
        get_settings(),
        database_path=tmp_path / filename,
        seed_demo_data=False,
    )


def _build_services(tmp_path, filename: str):
    settings = _build_test_settings(tmp_path, filename)
    repository = DataRepository(settings)
    repository.initialize_database()
    availability = AvailabilityService(repository, clock=lambda: NOW)
    reservations = TemporaryReservationService(
        repository, availability, settings=settings, clock=lambda: NOW
    )
    space_id = repository.create_space("Salão Jardim", capacidade=200)
    return repository, availability, reservations, space_id


def test_empty_window_is_available(tmp_path):
    _, availability, _, space_id = _build_services(tmp_path, "availability_empty.db")

    result = availability.check_availability(space_id, "2026-03-10", "2026-03-12")

    assert result.available is True
    assert result.conflicts.total == 0


def test_overlapping_active_hold_is_a_conflict(tmp_path):
    _, availability, reservations, space_id = _build_services(tmp_path, "availability_overlap.db")
    reservations.create(space_id, SpaceWindow(space_id, "2026-03-10", "2026-03-12"))

    # Inclusive on both ends: touching the last day still overlaps.
    touching = availability.check_availability(space_id, "2026-03-12", "2026-03-15")
    after = availability.check_availability(space_id, "2026-03-13", "2026-03-15")

    assert touching.available is False
    assert touching.conflicts.reservations == 1
    assert after.available is True


def test_other_spaces_do_not_conflict(tmp_path):
    repository, availability, reservations, space_id = _build_services(
        tmp_path, "availability_other_space.db"
    )
    other_space = repository.create_space("Espaço Terraço")
    reservations.create(space_id, SpaceWindow(space_id, "2026-03-10", "2026-03-10"))

    assert availability.check_availability(other_space, "2026-03-10", "2026-03-10").available


def test_excluded_reservation_is_ignored(tmp_path):
    _, availability, reservations, space_id = _build_services(tmp_path, "availability_exclude.db")
    hold = reservations.create(space_id, SpaceWindow(space_id, "2026-03-10", "2026-03-10"))

    result = availability.check_availability(
        space_id,
        date(2026, 3, 10),
        date(2026, 3, 10),
        exclude_reservation_id=hold.id,
    )

    assert result.available is True


def test_released_hold_no_longer_blocks(tmp_path):
    _, availability, reservations, space_id = _build_services(tmp_path, "availability_release.db")
    hold = reservations.create(space_id, SpaceWindow(space_id, "2026-03-10", "2026-03-10"))
    reservations.release(hold.id, reason="client gave up")

    assert availability.check_availability(space_id, "2026-03-10", "2026-03-10").available


def test_blackout_blocks_window_and_can_be_removed(tmp_path):
    _, availability, reservations, space_id = _build_services(tmp_path, "availability_blackout.db")
    blackout = availability.add_blackout(
        space_id, "2026-04-01", "2026-04-03", reason="maintenance"
    )

    blocked = availability.check_availability(space_id, "2026-04-02", "2026-04-02")
    assert blocked.available is False
    assert blocked.conflicts.blackouts == 1
    assert blocked.conflicts.reservations == 0

    with pytest.raises(ConflictError) as exc_info:
        reservations.create(space_id, SpaceWindow(space_id, "2026-04-03", "2026-04-05"))
    assert exc_info.value.conflicts.blackouts == 1

    assert [item.id for item in availability.list_blackouts(space_id)] == [blackout.id]
    availability.remove_blackout(blackout.id)
    assert availability.check_availability(space_id, "2026-04-02", "2026-04-02").available
    with pytest.raises(NotFoundError):
        availability.remove_blackout(blackout.id)


def test_blackout_for_unknown_space_raises(tmp_path):
    _, availability, _, _ = _build_services(tmp_path, "availability_blackout_missing.db")

    with pytest.raises(NotFoundError):
        availability.add_blackout("missing-space", "2026-04-01", "2026-04-01")


def test_reversed_window_is_rejected(tmp_path):
    _, availability, _, space_id = _build_services(tmp_path, "availability_reversed.db")

    with pytest.raises(InvalidArgumentError):
        availability.check_availability(space_id, "2026-04-05", "2026-04-01")


def test_storage_failure_fails_closed(tmp_path, monkeypatch):
    repository, availability, _, space_id = _build_services(tmp_path, "availability_failure.db")

    def _broken_count(*args, **kwargs):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(repository, "count", _broken_count)

    with pytest.raises(AvailabilityCheckFailedError):
        availability.check_availability(space_id, "2026-03-10", "2026-03-10")
