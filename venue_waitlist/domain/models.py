"""Domain records for temporary reservations, blackouts and the waitlist.

Rows coming out of storage are converted into these frozen dataclasses by the
``from_row`` constructors, which also validate status strings against the
closed enumerations below.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional

from venue_waitlist.utils.timeutils import parse_timestamp


class ReservationKind(str, Enum):
    TEMPORARIA = "temporaria"
    CONFIRMADA = "confirmada"


class ReservationStatus(str, Enum):
    ATIVA = "ativa"
    CONVERTIDA = "convertida"
    LIBERADA = "liberada"
    EXPIRADA = "expirada"
    CANCELADO = "cancelado"


class WaitlistStatus(str, Enum):
    ATIVO = "ativo"
    NOTIFICADO = "notificado"
    ATENDIDO = "atendido"
    CANCELADO = "cancelado"


def _optional_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    return parse_timestamp(str(value))


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


@dataclass(frozen=True)
class Actor:
    id: str
    role: str = "vendedor"


@dataclass(frozen=True)
class SpaceWindow:
    """Requested or held time range on a space; dates are YYYY-MM-DD, times HH:MM."""

    space_id: str
    date_start: str
    date_end: str
    time_start: Optional[str] = None
    time_end: Optional[str] = None


@dataclass(frozen=True)
class ConflictCounts:
    reservations: int = 0
    blackouts: int = 0

    @property
    def total(self) -> int:
        return self.reservations + self.blackouts

    def describe(self) -> str:
        reservation_label = "reservation" if self.reservations == 1 else "reservations"
        blackout_label = "blackout" if self.blackouts == 1 else "blackouts"
        return (
            f"{self.reservations} conflicting {reservation_label}, "
            f"{self.blackouts} {blackout_label}"
        )

    def to_dict(self) -> dict[str, int]:
        return {"reservations": self.reservations, "blackouts": self.blackouts}


@dataclass(frozen=True)
class AvailabilityResult:
    available: bool
    conflicts: ConflictCounts


@dataclass(frozen=True)
class Client:
    id: str
    nome: str
    email: Optional[str]
    telefone: Optional[str]
    origem: Optional[str]
    created_at: datetime

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Client":
        return cls(
            id=str(row["id"]),
            nome=str(row["nome"]),
            email=_optional_str(row["email"]),
            telefone=_optional_str(row["telefone"]),
            origem=_optional_str(row["origem"]),
            created_at=parse_timestamp(str(row["created_at"])),
        )


@dataclass(frozen=True)
class Reservation:
    """Temporary hold or confirmed booking; ``expires_at`` is set only on holds."""

    id: str
    kind: ReservationKind
    space_id: str
    client_id: Optional[str]
    date_start: str
    date_end: str
    time_start: Optional[str]
    time_end: Optional[str]
    status: ReservationStatus
    expires_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime
    origin_id: Optional[str] = None
    vendedor_id: Optional[str] = None
    descricao: Optional[str] = None
    valor_estimado: float = 0.0
    observacoes: Optional[str] = None
    last_warning_hours: Optional[int] = None

    @property
    def window(self) -> SpaceWindow:
        return SpaceWindow(
            space_id=self.space_id,
            date_start=self.date_start,
            date_end=self.date_end,
            time_start=self.time_start,
            time_end=self.time_end,
        )

    @property
    def is_temporary(self) -> bool:
        return self.kind is ReservationKind.TEMPORARIA

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Reservation":
        kind = ReservationKind(str(row["kind"]))
        expires_at = _optional_timestamp(row["expires_at"])
        if kind is ReservationKind.TEMPORARIA and expires_at is None:
            raise ValueError(f"temporary reservation {row['id']} has no expires_at")
        last_warning = row["last_warning_hours"]
        return cls(
            id=str(row["id"]),
            kind=kind,
            space_id=str(row["space_id"]),
            client_id=_optional_str(row["client_id"]),
            date_start=str(row["date_start"]),
            date_end=str(row["date_end"]),
            time_start=_optional_str(row["time_start"]),
            time_end=_optional_str(row["time_end"]),
            status=ReservationStatus(str(row["status"])),
            expires_at=expires_at,
            created_at=parse_timestamp(str(row["created_at"])),
            updated_at=parse_timestamp(str(row["updated_at"])),
            origin_id=_optional_str(row["origin_id"]),
            vendedor_id=_optional_str(row["vendedor_id"]),
            descricao=_optional_str(row["descricao"]),
            valor_estimado=float(row["valor_estimado"] or 0.0),
            observacoes=_optional_str(row["observacoes"]),
            last_warning_hours=int(last_warning) if last_warning is not None else None,
        )


@dataclass(frozen=True)
class BlackoutPeriod:
    id: str
    space_id: str
    date_start: str
    date_end: str
    time_start: Optional[str]
    time_end: Optional[str]
    reason: Optional[str]
    created_at: datetime

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "BlackoutPeriod":
        return cls(
            id=str(row["id"]),
            space_id=str(row["space_id"]),
            date_start=str(row["date_start"]),
            date_end=str(row["date_end"]),
            time_start=_optional_str(row["time_start"]),
            time_end=_optional_str(row["time_end"]),
            reason=_optional_str(row["reason"]),
            created_at=parse_timestamp(str(row["created_at"])),
        )


@dataclass(frozen=True)
class WaitlistEntry:
    id: str
    client_id: str
    space_id: str
    date_desejada: str
    horario_preferencial: Optional[str]
    priority: int
    score: int
    status: WaitlistStatus
    valor_estimado_proposta: float
    created_at: datetime
    updated_at: datetime
    origem: Optional[str] = None
    observacoes: Optional[str] = None
    solicitado_por: Optional[str] = None
    canal_notificacao: Optional[str] = None
    data_notificacao: Optional[datetime] = None
    atendido_por: Optional[str] = None
    data_atendimento: Optional[datetime] = None
    espaco_alternativo_id: Optional[str] = None
    data_cancelamento: Optional[datetime] = None

    @property
    def ranking_key(self) -> tuple[int, int, datetime, str]:
        """Promotion order: priority desc, score desc, created_at asc, id asc."""
        return (-self.priority, -self.score, self.created_at, self.id)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "WaitlistEntry":
        return cls(
            id=str(row["id"]),
            client_id=str(row["client_id"]),
            space_id=str(row["space_id"]),
            date_desejada=str(row["date_desejada"]),
            horario_preferencial=_optional_str(row["horario_preferencial"]),
            priority=int(row["priority"]),
            score=int(row["score"]),
            status=WaitlistStatus(str(row["status"])),
            valor_estimado_proposta=float(row["valor_estimado_proposta"] or 0.0),
            created_at=parse_timestamp(str(row["created_at"])),
            updated_at=parse_timestamp(str(row["updated_at"])),
            origem=_optional_str(row["origem"]),
            observacoes=_optional_str(row["observacoes"]),
            solicitado_por=_optional_str(row["solicitado_por"]),
            canal_notificacao=_optional_str(row["canal_notificacao"]),
            data_notificacao=_optional_timestamp(row["data_notificacao"]),
            atendido_por=_optional_str(row["atendido_por"]),
            data_atendimento=_optional_timestamp(row["data_atendimento"]),
            espaco_alternativo_id=_optional_str(row["espaco_alternativo_id"]),
            data_cancelamento=_optional_timestamp(row["data_cancelamento"]),
        )


@dataclass(frozen=True)
class ConversionRecord:
    """Append-only audit row for conversions and promotions."""

    id: str
    origin_type: str
    origin_id: str
    destination_type: str
    destination_id: str
    actor_id: str
    reason: str
    created_at: datetime

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ConversionRecord":
        return cls(
            id=str(row["id"]),
            origin_type=str(row["origin_type"]),
            origin_id=str(row["origin_id"]),
            destination_type=str(row["destination_type"]),
            destination_id=str(row["destination_id"]),
            actor_id=str(row["actor_id"]),
            reason=str(row["reason"]),
            created_at=parse_timestamp(str(row["created_at"])),
        )


@dataclass(frozen=True)
class ConfirmedReservationRef:
    reservation_id: str
    origin_id: str
    conversion_record_id: str


@dataclass(frozen=True)
class PromotionResult:
    """Outcome of offering a freed window to the waitlist.

    ``notification_status`` is one of ``queued``, ``rate_limited``, ``failed``,
    ``skipped`` (no recipient) or ``None`` when nobody was promoted.
    """

    promoted: Optional[WaitlistEntry]
    window: SpaceWindow
    aborted_reason: Optional[str] = None
    conflicts: ConflictCounts = field(default_factory=ConflictCounts)
    notification_status: Optional[str] = None
    notification_id: Optional[str] = None
    notification_error: Optional[str] = None
    conversion_record_id: Optional[str] = None
    audit_error: Optional[str] = None

    @property
    def partial_failure(self) -> bool:
        return self.promoted is not None and (
            self.notification_status in {"failed", "rate_limited"}
            or self.audit_error is not None
        )


@dataclass(frozen=True)
class ExpirySweepResult:
    expired_count: int
    expired_ids: list[str]
    promotions: list[PromotionResult]
