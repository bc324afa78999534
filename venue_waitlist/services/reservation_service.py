"""Temporary reservation lifecycle: create, expire, release, extend, convert."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import uuid4

from venue_waitlist.domain.constraints import (
    LifecycleConfig,
    append_observation,
    ensure_reservation_transition,
    validate_window,
)
from venue_waitlist.domain.errors import (
    ConflictError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
)
from venue_waitlist.domain.models import (
    Actor,
    ConfirmedReservationRef,
    ConversionRecord,
    Reservation,
    ReservationKind,
    ReservationStatus,
    SpaceWindow,
)
from venue_waitlist.repository.data_repository import DataRepository
from venue_waitlist.services.availability_service import AvailabilityService
from venue_waitlist.utils.config import Settings, get_settings
from venue_waitlist.utils.logger import get_logger
from venue_waitlist.utils.timeutils import to_timestamp, utc_now


logger = get_logger(__name__)

_ACTIVE_GUARD = ("status", "eq", ReservationStatus.ATIVA.value)


class TemporaryReservationService:
    """Owns time-boxed holds on a space.

    Every write that depends on a prior read (availability before insert,
    status before conversion) runs inside ``repository.transaction()`` and
    uses a status-guarded update, so two callers racing on the same window or
    the same hold cannot both succeed.
    """

    def __init__(
        self,
        repository: DataRepository,
        availability_service: Optional[AvailabilityService] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repository = repository
        self._settings = settings or get_settings()
        self._config = LifecycleConfig.from_settings(self._settings)
        self._clock = clock
        self._availability = availability_service or AvailabilityService(repository, clock=clock)

    def _actor_id(self, actor: Optional[Actor]) -> str:
        return actor.id if actor is not None else self._settings.system_actor_id

    def _load(self, reservation_id: str) -> Reservation:
        row = self._repository.get("reservations", reservation_id)
        if row is None:
            raise NotFoundError(f"Reservation {reservation_id} not found")
        return Reservation.from_row(row)

    def _load_temporary(self, reservation_id: str) -> Reservation:
        reservation = self._load(reservation_id)
        if not reservation.is_temporary:
            raise InvalidStateError(f"Reservation {reservation_id} is not a temporary hold")
        return reservation

    def get(self, reservation_id: str) -> Reservation:
        return self._load(reservation_id)

    def list_reservations(
        self,
        status: Optional[ReservationStatus] = None,
        space_id: Optional[str] = None,
        vendedor_id: Optional[str] = None,
        kind: Optional[ReservationKind] = ReservationKind.TEMPORARIA,
    ) -> list[Reservation]:
        filters = []
        if kind is not None:
            filters.append(("kind", "eq", kind.value))
        if status is not None:
            filters.append(("status", "eq", status.value))
        if space_id:
            filters.append(("space_id", "eq", space_id))
        if vendedor_id:
            filters.append(("vendedor_id", "eq", vendedor_id))
        rows = self._repository.query(
            "reservations",
            filters,
            order_by=[("created_at", "desc")],
        )
        return [Reservation.from_row(row) for row in rows]

    def create(
        self,
        space_id: str,
        window: SpaceWindow,
        client_id: Optional[str] = None,
        description: Optional[str] = None,
        actor: Optional[Actor] = None,
        estimated_value: float = 0.0,
        notes: Optional[str] = None,
    ) -> Reservation:
        if window.space_id and window.space_id != space_id:
            raise InvalidArgumentError("window.space_id does not match space_id")
        window = validate_window(replace(window, space_id=space_id))
        if estimated_value < 0:
            raise InvalidArgumentError("estimated_value must be >= 0")

        now = self._clock()
        actor_id = self._actor_id(actor)
        with self._repository.transaction():
            space = self._repository.get("spaces", space_id)
            if space is None:
                raise NotFoundError(f"Space {space_id} not found")
            if not space["ativo"]:
                raise InvalidArgumentError(f"Space {space_id} is not active")
            if client_id is not None and self._repository.get("clients", client_id) is None:
                raise NotFoundError(f"Client {client_id} not found")

            availability = self._availability.check_window(window)
            if not availability.available:
                logger.info(
                    "Temporary reservation rejected | space_id=%s | start=%s | end=%s | conflicts=%s",
                    space_id,
                    window.date_start,
                    window.date_end,
                    availability.conflicts.describe(),
                )
                raise ConflictError(availability.conflicts)

            row = self._repository.insert(
                "reservations",
                {
                    "id": str(uuid4()),
                    "kind": ReservationKind.TEMPORARIA.value,
                    "space_id": space_id,
                    "client_id": client_id,
                    "vendedor_id": actor_id,
                    "date_start": window.date_start,
                    "date_end": window.date_end,
                    "time_start": window.time_start,
                    "time_end": window.time_end,
                    "status": ReservationStatus.ATIVA.value,
                    "expires_at": to_timestamp(now + timedelta(hours=self._config.hold_ttl_hours)),
                    "descricao": description,
                    "valor_estimado": float(estimated_value),
                    "observacoes": notes,
                    "created_at": to_timestamp(now),
                    "updated_at": to_timestamp(now),
                },
            )

        reservation = Reservation.from_row(row)
        logger.info(
            "Temporary reservation created | reservation_id=%s | space_id=%s | expires_at=%s",
            reservation.id,
            reservation.space_id,
            to_timestamp(reservation.expires_at),
        )
        return reservation

    def expire_due_returning(self, now: Optional[datetime] = None) -> list[Reservation]:
        """Move every active hold whose deadline has passed to ``expirada``."""
        now = now or self._clock()
        stamp = to_timestamp(now)
        expired: list[Reservation] = []
        with self._repository.transaction():
            rows = self._repository.query(
                "reservations",
                [
                    ("kind", "eq", ReservationKind.TEMPORARIA.value),
                    _ACTIVE_GUARD,
                    ("expires_at", "lte", stamp),
                ],
                order_by=[("expires_at", "asc")],
            )
            for row in rows:
                current = Reservation.from_row(row)
                updated = self._repository.update_where(
                    "reservations",
                    current.id,
                    {
                        "status": ReservationStatus.EXPIRADA.value,
                        "updated_at": stamp,
                        "observacoes": append_observation(
                            current.observacoes,
                            now,
                            self._settings.system_actor_id,
                            "Expired after deadline",
                        ),
                    },
                    guards=[_ACTIVE_GUARD],
                )
                if updated is not None:
                    expired.append(Reservation.from_row(updated))

        if expired:
            logger.info("Expiry sweep completed | expired=%s | now=%s", len(expired), stamp)
        return expired

    def expire_due(self, now: Optional[datetime] = None) -> int:
        return len(self.expire_due_returning(now))

    def release(
        self,
        reservation_id: str,
        reason: Optional[str] = None,
        actor: Optional[Actor] = None,
    ) -> Reservation:
        """Manual early release; an unknown id or a non-active hold is NotFound."""
        now = self._clock()
        with self._repository.transaction():
            row = self._repository.get("reservations", reservation_id)
            current = Reservation.from_row(row) if row is not None else None
            if (
                current is None
                or not current.is_temporary
                or current.status is not ReservationStatus.ATIVA
            ):
                raise NotFoundError(f"Active temporary reservation {reservation_id} not found")
            updated = self._repository.update_where(
                "reservations",
                reservation_id,
                {
                    "status": ReservationStatus.LIBERADA.value,
                    "updated_at": to_timestamp(now),
                    "observacoes": append_observation(
                        current.observacoes,
                        now,
                        self._actor_id(actor),
                        f"Released. Reason: {reason or 'not informed'}",
                    ),
                },
                guards=[_ACTIVE_GUARD],
            )
            if updated is None:
                raise NotFoundError(f"Active temporary reservation {reservation_id} not found")

        logger.info("Temporary reservation released | reservation_id=%s", reservation_id)
        return Reservation.from_row(updated)

    def cancel(
        self,
        reservation_id: str,
        reason: Optional[str] = None,
        actor: Optional[Actor] = None,
    ) -> Reservation:
        now = self._clock()
        with self._repository.transaction():
            current = self._load_temporary(reservation_id)
            ensure_reservation_transition(
                reservation_id, current.status, ReservationStatus.CANCELADO
            )
            updated = self._repository.update_where(
                "reservations",
                reservation_id,
                {
                    "status": ReservationStatus.CANCELADO.value,
                    "updated_at": to_timestamp(now),
                    "observacoes": append_observation(
                        current.observacoes,
                        now,
                        self._actor_id(actor),
                        f"Cancelled. Reason: {reason or 'not informed'}",
                    ),
                },
                guards=[_ACTIVE_GUARD],
            )
            if updated is None:
                raise InvalidStateError(f"Reservation {reservation_id} is no longer active")

        logger.info("Temporary reservation cancelled | reservation_id=%s", reservation_id)
        return Reservation.from_row(updated)

    def extend(
        self,
        reservation_id: str,
        hours: int,
        actor: Optional[Actor] = None,
    ) -> Reservation:
        if isinstance(hours, bool) or not isinstance(hours, int) or hours <= 0:
            raise InvalidArgumentError("hours must be a positive integer")
        if hours > self._config.hold_max_extension_hours:
            raise InvalidArgumentError(
                f"hours must not exceed {self._config.hold_max_extension_hours}"
            )

        now = self._clock()
        with self._repository.transaction():
            current = self._load_temporary(reservation_id)
            if current.status is not ReservationStatus.ATIVA:
                raise InvalidStateError(
                    f"Reservation {reservation_id} is {current.status.value}; only active holds can be extended"
                )
            if current.expires_at is not None and current.expires_at <= now:
                raise InvalidStateError(f"Reservation {reservation_id} has already expired")

            new_deadline = current.expires_at + timedelta(hours=hours)
            updated = self._repository.update_where(
                "reservations",
                reservation_id,
                {
                    "expires_at": to_timestamp(new_deadline),
                    "last_warning_hours": None,
                    "updated_at": to_timestamp(now),
                    "observacoes": append_observation(
                        current.observacoes,
                        now,
                        self._actor_id(actor),
                        f"Deadline extended by {hours}h",
                    ),
                },
                guards=[_ACTIVE_GUARD],
            )
            if updated is None:
                raise InvalidStateError(f"Reservation {reservation_id} is no longer active")

        logger.info(
            "Temporary reservation extended | reservation_id=%s | hours=%s | expires_at=%s",
            reservation_id,
            hours,
            to_timestamp(new_deadline),
        )
        return Reservation.from_row(updated)

    def convert(
        self,
        reservation_id: str,
        actor: Optional[Actor] = None,
        reason: str = "temporary reservation converted",
    ) -> ConfirmedReservationRef:
        """Turn an active, unexpired hold into a confirmed reservation.

        The hold moves to ``convertida``, a confirmed row copying its space,
        dates, times and client is inserted with ``origin_id`` pointing back,
        and a ConversionRecord is appended, all in one transaction.
        """
        now = self._clock()
        stamp = to_timestamp(now)
        actor_id = self._actor_id(actor)
        with self._repository.transaction():
            current = self._load_temporary(reservation_id)
            ensure_reservation_transition(
                reservation_id, current.status, ReservationStatus.CONVERTIDA
            )
            if current.expires_at is not None and current.expires_at <= now:
                raise InvalidStateError(f"Reservation {reservation_id} has expired")

            updated = self._repository.update_where(
                "reservations",
                reservation_id,
                {
                    "status": ReservationStatus.CONVERTIDA.value,
                    "updated_at": stamp,
                    "observacoes": append_observation(
                        current.observacoes,
                        now,
                        actor_id,
                        "Converted into a confirmed reservation",
                    ),
                },
                guards=[_ACTIVE_GUARD, ("expires_at", "gt", stamp)],
            )
            if updated is None:
                raise InvalidStateError(f"Reservation {reservation_id} is no longer active")

            confirmed = self._repository.insert(
                "reservations",
                {
                    "id": str(uuid4()),
                    "kind": ReservationKind.CONFIRMADA.value,
                    "space_id": current.space_id,
                    "client_id": current.client_id,
                    "vendedor_id": current.vendedor_id,
                    "date_start": current.date_start,
                    "date_end": current.date_end,
                    "time_start": current.time_start,
                    "time_end": current.time_end,
                    "status": ReservationStatus.ATIVA.value,
                    "expires_at": None,
                    "origin_id": current.id,
                    "descricao": current.descricao,
                    "valor_estimado": current.valor_estimado,
                    "created_at": stamp,
                    "updated_at": stamp,
                },
            )
            record = self._repository.insert(
                "conversion_records",
                {
                    "id": str(uuid4()),
                    "origin_type": "reserva_temporaria",
                    "origin_id": current.id,
                    "destination_type": "reserva",
                    "destination_id": str(confirmed["id"]),
                    "actor_id": actor_id,
                    "reason": reason,
                    "created_at": stamp,
                },
            )

        logger.info(
            "Temporary reservation converted | reservation_id=%s | confirmed_id=%s | hours_held=%.1f",
            reservation_id,
            confirmed["id"],
            (now - current.created_at).total_seconds() / 3600.0,
        )
        return ConfirmedReservationRef(
            reservation_id=str(confirmed["id"]),
            origin_id=current.id,
            conversion_record_id=str(record["id"]),
        )

    def list_conversions(self, origin_id: Optional[str] = None) -> list[ConversionRecord]:
        filters = [("origin_id", "eq", origin_id)] if origin_id else []
        rows = self._repository.query(
            "conversion_records",
            filters,
            order_by=[("created_at", "asc")],
        )
        return [ConversionRecord.from_row(row) for row in rows]

    def list_expiring(self, now: datetime, within_hours: int) -> list[Reservation]:
        """Active holds whose deadline falls in ``(now, now + within_hours]``."""
        rows = self._repository.query(
            "reservations",
            [
                ("kind", "eq", ReservationKind.TEMPORARIA.value),
                _ACTIVE_GUARD,
                ("expires_at", "gt", to_timestamp(now)),
                ("expires_at", "lte", to_timestamp(now + timedelta(hours=within_hours))),
            ],
            order_by=[("expires_at", "asc")],
        )
        return [Reservation.from_row(row) for row in rows]

    def record_warning(self, reservation_id: str, threshold_hours: int) -> bool:
        """Mark ``threshold_hours`` as notified; False when it was already sent."""
        with self._repository.transaction():
            current = self._load_temporary(reservation_id)
            if current.status is not ReservationStatus.ATIVA:
                return False
            if (
                current.last_warning_hours is not None
                and current.last_warning_hours <= threshold_hours
            ):
                return False
            updated = self._repository.update_where(
                "reservations",
                reservation_id,
                {"last_warning_hours": threshold_hours},
                guards=[_ACTIVE_GUARD],
            )
        return updated is not None
