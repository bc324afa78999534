from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from venue_waitlist.domain.errors import (
    DuplicateError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
)
from venue_waitlist.domain.models import Actor, SpaceWindow, WaitlistStatus
from venue_waitlist.repository.data_repository import DataRepository
from venue_waitlist.services.waitlist_service import WaitlistService
from venue_waitlist.utils.config import get_settings


class _MutableClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    return replace(
        get_settings(),
        database_path=tmp_path / filename,
        waitlist_default_priority=5,
        seed_demo_data=False,
    )


def _build_service(tmp_path, filename: str):
    settings = _build_test_settings(tmp_path, filename)
    repository = DataRepository(settings)
    repository.initialize_database()
    clock = _MutableClock(datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc))
    service = WaitlistService(repository, settings=settings, clock=clock)
    space_id = repository.create_space("Salão Jardim")
    return repository, service, clock, space_id


def _window(space_id: str, day: str = "2026-05-16", time_start=None, time_end=None) -> SpaceWindow:
    return SpaceWindow(space_id, day, day, time_start, time_end)


def test_join_computes_score_from_client_history(tmp_path):
    repository, service, clock, space_id = _build_service(tmp_path, "waitlist_join.db")
    client_id = repository.create_client(
        "Mariana Alves",
        origem="indicacao",
        created_at=clock.now - timedelta(days=400),
    )

    entry = service.join(
        client_id,
        space_id,
        _window(space_id, time_start="19:00", time_end="23:00"),
        deal_value=60000,
        priority=8,
        actor=Actor("vendedor-1"),
    )

    assert entry.status is WaitlistStatus.ATIVO
    assert entry.score == 94
    assert entry.origem == "indicacao"
    assert entry.horario_preferencial == "19:00"
    assert entry.solicitado_por == "vendedor-1"


def test_join_defaults_priority_and_validates_input(tmp_path):
    repository, service, _, space_id = _build_service(tmp_path, "waitlist_defaults.db")
    client_id = repository.create_client("Rafael Souza")

    entry = service.join(client_id, space_id, _window(space_id))
    assert entry.priority == 5

    for bad_priority in (0, 11):
        with pytest.raises(InvalidArgumentError):
            service.join(client_id, space_id, _window(space_id, "2026-05-17"), priority=bad_priority)
    with pytest.raises(InvalidArgumentError):
        service.join(client_id, space_id, _window(space_id, "2026-05-17"), deal_value=-1)
    with pytest.raises(NotFoundError):
        service.join("missing", space_id, _window(space_id, "2026-05-17"))
    with pytest.raises(NotFoundError):
        service.join(client_id, "missing", _window("missing", "2026-05-17"))


def test_duplicate_active_entry_is_rejected(tmp_path):
    repository, service, _, space_id = _build_service(tmp_path, "waitlist_duplicate.db")
    client_id = repository.create_client("Beatriz Lima")
    first = service.join(client_id, space_id, _window(space_id))

    with pytest.raises(DuplicateError):
        service.join(client_id, space_id, _window(space_id))
    assert repository.count("waitlist_entries") == 1

    # Once the first entry leaves the active queue the client may join again.
    service.cancel(first.id, reason="changed plans")
    second = service.join(client_id, space_id, _window(space_id))
    assert second.id != first.id


def test_equal_rank_candidates_are_served_first_come_first_served(tmp_path):
    repository, service, clock, space_id = _build_service(tmp_path, "waitlist_fifo.db")
    early = repository.create_client("Cliente A", created_at=clock.now)
    late = repository.create_client("Cliente B", created_at=clock.now)

    first = service.join(early, space_id, _window(space_id), deal_value=8000, priority=6)
    clock.advance(minutes=10)
    second = service.join(late, space_id, _window(space_id), deal_value=8000, priority=6)

    assert first.score == second.score
    assert service.next_candidate(space_id, "2026-05-16").id == first.id

    service.notify(first.id)
    assert service.next_candidate(space_id, "2026-05-16").id == second.id


def test_same_instant_joins_break_ties_by_entry_id(tmp_path):
    repository, service, _, space_id = _build_service(tmp_path, "waitlist_same_instant.db")
    a = repository.create_client("Cliente A")
    b = repository.create_client("Cliente B")

    first = service.join(a, space_id, _window(space_id), priority=6)
    second = service.join(b, space_id, _window(space_id), priority=6)

    assert first.created_at == second.created_at
    expected = min(first.id, second.id)
    assert service.next_candidate(space_id, "2026-05-16").id == expected
    listed = [item.entry.id for item in service.list_entries(order="data_solicitacao")]
    assert listed == sorted([first.id, second.id])


def test_join_rejects_multi_day_window(tmp_path):
    repository, service, _, space_id = _build_service(tmp_path, "waitlist_multi_day.db")
    client_id = repository.create_client("Cliente Fim de Semana")

    with pytest.raises(InvalidArgumentError, match="single date"):
        service.join(client_id, space_id, SpaceWindow(space_id, "2026-05-16", "2026-05-17"))
    assert repository.count("waitlist_entries") == 0

    entry = service.join(client_id, space_id, SpaceWindow(space_id, "2026-05-16", ""))
    assert entry.date_desejada == "2026-05-16"


def test_priority_outranks_score(tmp_path):
    repository, service, _, space_id = _build_service(tmp_path, "waitlist_rank.db")
    rich = repository.create_client("Cliente Rico", origem="indicacao")
    urgent = repository.create_client("Cliente Urgente")

    high_score = service.join(rich, space_id, _window(space_id), deal_value=90000, priority=4)
    high_priority = service.join(urgent, space_id, _window(space_id), deal_value=0, priority=9)

    assert high_score.score > high_priority.score
    assert [item.id for item in service.active_candidates(space_id, "2026-05-16")] == [
        high_priority.id,
        high_score.id,
    ]


def test_update_priority_recomputes_score_and_notes_change(tmp_path):
    repository, service, _, space_id = _build_service(tmp_path, "waitlist_priority.db")
    client_id = repository.create_client("Eventos Prime", origem="google")
    entry = service.join(client_id, space_id, _window(space_id), deal_value=12000, priority=3)

    updated = service.update_priority(entry.id, 7, actor=Actor("gerente"))

    assert updated.priority == 7
    assert updated.score == entry.score + 12
    assert "Priority changed from 3 to 7" in updated.observacoes
    with pytest.raises(InvalidArgumentError):
        service.update_priority(entry.id, 12)
    with pytest.raises(NotFoundError):
        service.update_priority("missing", 5)


def test_status_transitions_follow_lifecycle(tmp_path):
    repository, service, _, space_id = _build_service(tmp_path, "waitlist_transitions.db")
    client_id = repository.create_client("Cliente")
    alternative = repository.create_space("Espaço Terraço")
    entry = service.join(client_id, space_id, _window(space_id))

    notified = service.notify(entry.id, channel="whatsapp")
    assert notified.status is WaitlistStatus.NOTIFICADO
    assert notified.canal_notificacao == "whatsapp"
    assert notified.data_notificacao is not None

    with pytest.raises(InvalidStateError):
        service.notify(entry.id)

    attended = service.attend(entry.id, actor=Actor("ana"), alternative_space_id=alternative)
    assert attended.status is WaitlistStatus.ATENDIDO
    assert attended.atendido_por == "ana"
    assert attended.espaco_alternativo_id == alternative

    with pytest.raises(InvalidStateError):
        service.cancel(entry.id)


def test_attend_with_unknown_alternative_space_raises(tmp_path):
    repository, service, _, space_id = _build_service(tmp_path, "waitlist_attend.db")
    client_id = repository.create_client("Cliente")
    entry = service.join(client_id, space_id, _window(space_id))

    with pytest.raises(NotFoundError):
        service.attend(entry.id, alternative_space_id="missing")
    assert service.get(entry.id).status is WaitlistStatus.ATIVO


def test_remove_deletes_entry(tmp_path):
    repository, service, _, space_id = _build_service(tmp_path, "waitlist_remove.db")
    client_id = repository.create_client("Cliente")
    entry = service.join(client_id, space_id, _window(space_id))

    service.remove(entry.id)

    with pytest.raises(NotFoundError):
        service.get(entry.id)
    with pytest.raises(NotFoundError):
        service.remove(entry.id)


def test_list_entries_reports_positions_and_wait_time(tmp_path):
    repository, service, clock, space_id = _build_service(tmp_path, "waitlist_list.db")
    a = repository.create_client("A")
    b = repository.create_client("B")
    c = repository.create_client("C")
    first = service.join(a, space_id, _window(space_id), priority=5)
    clock.advance(hours=2)
    second = service.join(b, space_id, _window(space_id), priority=9)
    third = service.join(c, space_id, _window(space_id, "2026-06-01"), priority=1)
    service.notify(third.id)
    clock.advance(hours=1)

    listed = service.list_entries(space_id=space_id)
    by_id = {item.entry.id: item for item in listed}

    assert [item.entry.id for item in listed][:2] == [second.id, first.id]
    assert by_id[second.id].position == 1
    assert by_id[first.id].position == 2
    assert by_id[third.id].position is None
    assert by_id[first.id].hours_waiting == 3.0

    only_active = service.list_entries(status=WaitlistStatus.ATIVO)
    assert {item.entry.id for item in only_active} == {first.id, second.id}

    by_arrival = service.list_entries(order="data_solicitacao")
    assert by_arrival[0].entry.id == first.id

    with pytest.raises(InvalidArgumentError):
        service.list_entries(order="alfabetica")
