"""Waitlist (fila de espera) management and candidate ranking."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Optional
from uuid import uuid4

from venue_waitlist.domain.constraints import (
    LifecycleConfig,
    append_observation,
    ensure_waitlist_transition,
    validate_date,
    validate_priority,
    waitlist_sources_for,
)
from venue_waitlist.domain.errors import (
    DuplicateError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
)
from venue_waitlist.domain.models import Actor, Client, SpaceWindow, WaitlistEntry, WaitlistStatus
from venue_waitlist.repository.data_repository import DataRepository
from venue_waitlist.services.scoring_service import ScoreInput, compute_score, tenure_days_since
from venue_waitlist.utils.config import Settings, get_settings
from venue_waitlist.utils.logger import get_logger
from venue_waitlist.utils.timeutils import hours_between, to_timestamp, utc_now


logger = get_logger(__name__)

_RANKING_ORDER = [("priority", "desc"), ("score", "desc"), ("created_at", "asc"), ("id", "asc")]
_LIST_ORDERS = {
    "prioridade": _RANKING_ORDER,
    "pontuacao": [("score", "desc"), ("priority", "desc"), ("created_at", "asc"), ("id", "asc")],
    "data_solicitacao": [("created_at", "asc"), ("id", "asc")],
}


@dataclass(frozen=True)
class QueuedEntry:
    """Waitlist entry annotated with its place in the (space, date) queue."""

    entry: WaitlistEntry
    position: Optional[int]
    hours_waiting: float


class WaitlistService:
    """Orders pending requests by priority, score and arrival time."""

    def __init__(
        self,
        repository: DataRepository,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repository = repository
        self._settings = settings or get_settings()
        self._config = LifecycleConfig.from_settings(self._settings)
        self._clock = clock

    def _actor_id(self, actor: Optional[Actor]) -> str:
        return actor.id if actor is not None else self._settings.system_actor_id

    def _load(self, entry_id: str) -> WaitlistEntry:
        row = self._repository.get("waitlist_entries", entry_id)
        if row is None:
            raise NotFoundError(f"Waitlist entry {entry_id} not found")
        return WaitlistEntry.from_row(row)

    def get(self, entry_id: str) -> WaitlistEntry:
        return self._load(entry_id)

    def get_client(self, client_id: str) -> Optional[Client]:
        row = self._repository.get("clients", client_id)
        return Client.from_row(row) if row is not None else None

    def _score(
        self,
        deal_value: Any,
        source: Optional[str],
        priority: int,
        client: Optional[Client],
        now: datetime,
    ) -> int:
        tenure = tenure_days_since(client.created_at if client else None, now)
        return compute_score(
            ScoreInput(
                deal_value=deal_value,
                source=source,
                priority=priority,
                tenure_days=tenure,
            )
        )

    def join(
        self,
        client_id: str,
        space_id: str,
        window: SpaceWindow,
        deal_value: Optional[float] = None,
        source: Optional[str] = None,
        priority: Optional[int] = None,
        actor: Optional[Actor] = None,
        notes: Optional[str] = None,
    ) -> WaitlistEntry:
        """Queue ``client_id`` for the single date ``window.date_start`` on ``space_id``.

        ``window.time_start`` is kept as the preferred time. The lead source
        falls back to the client's own origin when not supplied.
        """
        resolved_priority = validate_priority(
            self._config.default_priority if priority is None else priority,
            self._config,
        )
        desired_date = validate_date(window.date_start, "date_desejada")
        if window.date_end and window.date_end != desired_date:
            raise InvalidArgumentError(
                "waitlist entries cover a single date; date_end must equal date_start"
            )
        if deal_value is not None and deal_value < 0:
            raise InvalidArgumentError("deal_value must be >= 0")

        now = self._clock()
        stamp = to_timestamp(now)
        try:
            with self._repository.transaction():
                client = self.get_client(client_id)
                if client is None:
                    raise NotFoundError(f"Client {client_id} not found")
                if self._repository.get("spaces", space_id) is None:
                    raise NotFoundError(f"Space {space_id} not found")

                existing = self._repository.count(
                    "waitlist_entries",
                    [
                        ("client_id", "eq", client_id),
                        ("space_id", "eq", space_id),
                        ("date_desejada", "eq", desired_date),
                        ("status", "eq", WaitlistStatus.ATIVO.value),
                    ],
                )
                if existing:
                    raise DuplicateError(
                        f"Client {client_id} already waits for space {space_id} on {desired_date}"
                    )

                resolved_source = source or client.origem
                score = self._score(deal_value, resolved_source, resolved_priority, client, now)
                row = self._repository.insert(
                    "waitlist_entries",
                    {
                        "id": str(uuid4()),
                        "client_id": client_id,
                        "space_id": space_id,
                        "date_desejada": desired_date,
                        "horario_preferencial": window.time_start,
                        "priority": resolved_priority,
                        "score": score,
                        "status": WaitlistStatus.ATIVO.value,
                        "valor_estimado_proposta": float(deal_value or 0.0),
                        "origem": resolved_source,
                        "observacoes": notes,
                        "solicitado_por": self._actor_id(actor),
                        "created_at": stamp,
                        "updated_at": stamp,
                    },
                )
        except sqlite3.IntegrityError as exc:
            if "UNIQUE" not in str(exc):
                raise
            raise DuplicateError(
                f"Client {client_id} already waits for space {space_id} on {desired_date}"
            ) from exc

        entry = WaitlistEntry.from_row(row)
        logger.info(
            "Waitlist joined | entry_id=%s | client_id=%s | space_id=%s | date=%s | priority=%s | score=%s",
            entry.id,
            client_id,
            space_id,
            desired_date,
            entry.priority,
            entry.score,
        )
        return entry

    def update_priority(
        self,
        entry_id: str,
        new_priority: int,
        actor: Optional[Actor] = None,
    ) -> WaitlistEntry:
        validate_priority(new_priority, self._config)
        now = self._clock()
        with self._repository.transaction():
            current = self._load(entry_id)
            client = self.get_client(current.client_id)
            score = self._score(
                current.valor_estimado_proposta,
                current.origem,
                new_priority,
                client,
                now,
            )
            updated = self._repository.update(
                "waitlist_entries",
                entry_id,
                {
                    "priority": new_priority,
                    "score": score,
                    "updated_at": to_timestamp(now),
                    "observacoes": append_observation(
                        current.observacoes,
                        now,
                        self._actor_id(actor),
                        f"Priority changed from {current.priority} to {new_priority}",
                    ),
                },
            )
            if updated is None:
                raise NotFoundError(f"Waitlist entry {entry_id} not found")

        logger.info(
            "Waitlist priority updated | entry_id=%s | priority=%s | score=%s",
            entry_id,
            new_priority,
            score,
        )
        return WaitlistEntry.from_row(updated)

    def _transition(
        self,
        entry_id: str,
        target: WaitlistStatus,
        build_patch: Callable[[str], dict[str, Any]],
        note: str,
        actor: Optional[Actor],
    ) -> WaitlistEntry:
        now = self._clock()
        stamp = to_timestamp(now)
        with self._repository.transaction():
            current = self._load(entry_id)
            ensure_waitlist_transition(entry_id, current.status, target)
            updated = self._repository.update_where(
                "waitlist_entries",
                entry_id,
                {
                    **build_patch(stamp),
                    "status": target.value,
                    "updated_at": stamp,
                    "observacoes": append_observation(
                        current.observacoes, now, self._actor_id(actor), note
                    ),
                },
                guards=[("status", "in", [status.value for status in waitlist_sources_for(target)])],
            )
            if updated is None:
                raise InvalidStateError(f"Waitlist entry {entry_id} changed concurrently")

        logger.info(
            "Waitlist entry transitioned | entry_id=%s | from=%s | to=%s",
            entry_id,
            current.status.value,
            target.value,
        )
        return WaitlistEntry.from_row(updated)

    def notify(
        self,
        entry_id: str,
        channel: Optional[str] = None,
        actor: Optional[Actor] = None,
    ) -> WaitlistEntry:
        """``ativo -> notificado``; any other starting status is InvalidState."""
        resolved_channel = channel or self._settings.notification_default_channel
        return self._transition(
            entry_id,
            WaitlistStatus.NOTIFICADO,
            lambda stamp: {"canal_notificacao": resolved_channel, "data_notificacao": stamp},
            f"Client notified via {resolved_channel}",
            actor,
        )

    def attend(
        self,
        entry_id: str,
        actor: Optional[Actor] = None,
        alternative_space_id: Optional[str] = None,
    ) -> WaitlistEntry:
        if alternative_space_id and self._repository.get("spaces", alternative_space_id) is None:
            raise NotFoundError(f"Space {alternative_space_id} not found")
        note = "Client attended"
        if alternative_space_id:
            note += f"; alternative space {alternative_space_id} offered"
        return self._transition(
            entry_id,
            WaitlistStatus.ATENDIDO,
            lambda stamp: {
                "atendido_por": self._actor_id(actor),
                "data_atendimento": stamp,
                "espaco_alternativo_id": alternative_space_id,
            },
            note,
            actor,
        )

    def cancel(
        self,
        entry_id: str,
        reason: Optional[str] = None,
        actor: Optional[Actor] = None,
    ) -> WaitlistEntry:
        note = "Cancelled" + (f". {reason}" if reason else "")
        return self._transition(
            entry_id,
            WaitlistStatus.CANCELADO,
            lambda stamp: {"data_cancelamento": stamp},
            note,
            actor,
        )

    def remove(self, entry_id: str) -> None:
        if not self._repository.delete("waitlist_entries", entry_id):
            raise NotFoundError(f"Waitlist entry {entry_id} not found")
        logger.info("Waitlist entry removed | entry_id=%s", entry_id)

    def next_candidate(self, space_id: str, desired_date: str | date) -> Optional[WaitlistEntry]:
        if isinstance(desired_date, date):
            desired_date = desired_date.isoformat()
        rows = self._repository.query(
            "waitlist_entries",
            [
                ("space_id", "eq", space_id),
                ("date_desejada", "eq", desired_date),
                ("status", "eq", WaitlistStatus.ATIVO.value),
            ],
            order_by=_RANKING_ORDER,
            limit=1,
        )
        return WaitlistEntry.from_row(rows[0]) if rows else None

    def active_candidates(self, space_id: str, desired_date: str) -> list[WaitlistEntry]:
        rows = self._repository.query(
            "waitlist_entries",
            [
                ("space_id", "eq", space_id),
                ("date_desejada", "eq", desired_date),
                ("status", "eq", WaitlistStatus.ATIVO.value),
            ],
            order_by=_RANKING_ORDER,
        )
        return [WaitlistEntry.from_row(row) for row in rows]

    def list_entries(
        self,
        status: Optional[WaitlistStatus] = None,
        space_id: Optional[str] = None,
        client_id: Optional[str] = None,
        desired_date: Optional[str] = None,
        order: str = "prioridade",
    ) -> list[QueuedEntry]:
        if order not in _LIST_ORDERS:
            raise InvalidArgumentError(
                f"order must be one of: {', '.join(sorted(_LIST_ORDERS))}"
            )
        filters = []
        if status is not None:
            filters.append(("status", "eq", status.value))
        if space_id:
            filters.append(("space_id", "eq", space_id))
        if client_id:
            filters.append(("client_id", "eq", client_id))
        if desired_date:
            filters.append(("date_desejada", "eq", validate_date(desired_date, "date_desejada")))
        entries = [
            WaitlistEntry.from_row(row)
            for row in self._repository.query(
                "waitlist_entries", filters, order_by=_LIST_ORDERS[order]
            )
        ]

        positions: dict[str, int] = {}
        for key in {(item.space_id, item.date_desejada) for item in entries}:
            queue = self.active_candidates(*key)
            positions.update({item.id: index for index, item in enumerate(queue, start=1)})

        now = self._clock()
        return [
            QueuedEntry(
                entry=item,
                position=positions.get(item.id),
                hours_waiting=round(max(hours_between(item.created_at, now), 0.0), 2),
            )
            for item in entries
        ]

