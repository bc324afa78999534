"""HTTP controller layer for the waitlist (fila de espera)."""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field

from venue_waitlist.controllers.dependencies import (
    get_current_actor,
    get_report_service,
    get_waitlist_service,
    require_admin,
    to_http_exception,
)
from venue_waitlist.domain.errors import BookingError
from venue_waitlist.domain.models import (
    Actor,
    PromotionResult,
    SpaceWindow,
    WaitlistEntry,
    WaitlistStatus,
)
from venue_waitlist.services.report_service import ReportService
from venue_waitlist.services.waitlist_service import WaitlistService
from venue_waitlist.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/waitlist", tags=["waitlist"])

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class JoinWaitlistRequest(BaseModel):
    client_id: str = Field(min_length=1)
    space_id: str = Field(min_length=1)
    date_desejada: date
    horario_preferencial: Optional[str] = Field(default=None, pattern=TIME_PATTERN)
    deal_value: Optional[float] = Field(default=None, ge=0.0)
    source: Optional[str] = Field(default=None, max_length=50)
    priority: Optional[int] = None
    notes: Optional[str] = Field(default=None, max_length=2000)


class UpdatePriorityRequest(BaseModel):
    priority: int


class NotifyRequest(BaseModel):
    channel: Optional[str] = Field(default=None, max_length=30)


class AttendRequest(BaseModel):
    alternative_space_id: Optional[str] = None


class CancelEntryRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class WaitlistEntryResponse(BaseModel):
    id: str
    client_id: str
    space_id: str
    date_desejada: date
    horario_preferencial: Optional[str] = None
    priority: int = Field(ge=1, le=10)
    score: int = Field(ge=0, le=100)
    status: WaitlistStatus
    valor_estimado_proposta: float = Field(ge=0.0)
    origem: Optional[str] = None
    observacoes: Optional[str] = None
    solicitado_por: Optional[str] = None
    canal_notificacao: Optional[str] = None
    data_notificacao: Optional[datetime] = None
    atendido_por: Optional[str] = None
    data_atendimento: Optional[datetime] = None
    espaco_alternativo_id: Optional[str] = None
    data_cancelamento: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    position: Optional[int] = None
    hours_waiting: Optional[float] = None


class WaitlistListResponse(BaseModel):
    entries: list[WaitlistEntryResponse]
    statistics: dict


class SpaceWindowResponse(BaseModel):
    space_id: str
    date_start: date
    date_end: date
    time_start: Optional[str] = None
    time_end: Optional[str] = None


class PromotionResponse(BaseModel):
    promoted: Optional[WaitlistEntryResponse] = None
    window: SpaceWindowResponse
    aborted_reason: Optional[str] = None
    conflicts: dict[str, int]
    notification_status: Optional[str] = None
    notification_id: Optional[str] = None
    notification_error: Optional[str] = None
    conversion_record_id: Optional[str] = None
    audit_error: Optional[str] = None
    partial_failure: bool = False


def entry_response(
    entry: WaitlistEntry,
    position: Optional[int] = None,
    hours_waiting: Optional[float] = None,
) -> WaitlistEntryResponse:
    return WaitlistEntryResponse(
        id=entry.id,
        client_id=entry.client_id,
        space_id=entry.space_id,
        date_desejada=entry.date_desejada,
        horario_preferencial=entry.horario_preferencial,
        priority=entry.priority,
        score=entry.score,
        status=entry.status,
        valor_estimado_proposta=entry.valor_estimado_proposta,
        origem=entry.origem,
        observacoes=entry.observacoes,
        solicitado_por=entry.solicitado_por,
        canal_notificacao=entry.canal_notificacao,
        data_notificacao=entry.data_notificacao,
        atendido_por=entry.atendido_por,
        data_atendimento=entry.data_atendimento,
        espaco_alternativo_id=entry.espaco_alternativo_id,
        data_cancelamento=entry.data_cancelamento,
        created_at=entry.created_at,
        updated_at=entry.updated_at,
        position=position,
        hours_waiting=hours_waiting,
    )


def window_response(window: SpaceWindow) -> SpaceWindowResponse:
    return SpaceWindowResponse(
        space_id=window.space_id,
        date_start=window.date_start,
        date_end=window.date_end,
        time_start=window.time_start,
        time_end=window.time_end,
    )


def promotion_response(result: PromotionResult) -> PromotionResponse:
    return PromotionResponse(
        promoted=entry_response(result.promoted) if result.promoted is not None else None,
        window=window_response(result.window),
        aborted_reason=result.aborted_reason,
        conflicts=result.conflicts.to_dict(),
        notification_status=result.notification_status,
        notification_id=result.notification_id,
        notification_error=result.notification_error,
        conversion_record_id=result.conversion_record_id,
        audit_error=result.audit_error,
        partial_failure=result.partial_failure,
    )


def _unexpected(action: str, exc: Exception) -> HTTPException:
    logger.exception("Unexpected waitlist %s failure", action)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action} waitlist entry",
    )


@router.post("", response_model=WaitlistEntryResponse, status_code=status.HTTP_201_CREATED)
async def join_waitlist(
    payload: JoinWaitlistRequest,
    service: WaitlistService = Depends(get_waitlist_service),
    actor: Actor = Depends(get_current_actor),
) -> WaitlistEntryResponse:
    try:
        entry = service.join(
            client_id=payload.client_id,
            space_id=payload.space_id,
            window=SpaceWindow(
                space_id=payload.space_id,
                date_start=payload.date_desejada.isoformat(),
                date_end=payload.date_desejada.isoformat(),
                time_start=payload.horario_preferencial,
            ),
            deal_value=payload.deal_value,
            source=payload.source,
            priority=payload.priority,
            actor=actor,
            notes=payload.notes,
        )
        return entry_response(entry)
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("join", exc) from exc


@router.get(
    "",
    response_model=WaitlistListResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def list_waitlist(
    status_filter: Optional[WaitlistStatus] = Query(default=None, alias="status"),
    space_id: Optional[str] = None,
    client_id: Optional[str] = None,
    date_desejada: Optional[date] = None,
    order: Literal["prioridade", "pontuacao", "data_solicitacao"] = "prioridade",
    service: WaitlistService = Depends(get_waitlist_service),
    report_service: ReportService = Depends(get_report_service),
) -> WaitlistListResponse:
    try:
        queued = service.list_entries(
            status=status_filter,
            space_id=space_id,
            client_id=client_id,
            desired_date=date_desejada.isoformat() if date_desejada else None,
            order=order,
        )
        return WaitlistListResponse(
            entries=[
                entry_response(item.entry, item.position, item.hours_waiting) for item in queued
            ],
            statistics=report_service.waitlist_statistics(space_id=space_id),
        )
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("list", exc) from exc


@router.get(
    "/next",
    response_model=Optional[WaitlistEntryResponse],
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def next_candidate(
    space_id: str,
    date_desejada: date,
    service: WaitlistService = Depends(get_waitlist_service),
) -> Optional[WaitlistEntryResponse]:
    entry = service.next_candidate(space_id, date_desejada.isoformat())
    return entry_response(entry) if entry is not None else None


@router.get(
    "/{entry_id}",
    response_model=WaitlistEntryResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def get_entry(
    entry_id: str,
    service: WaitlistService = Depends(get_waitlist_service),
) -> WaitlistEntryResponse:
    try:
        return entry_response(service.get(entry_id))
    except BookingError as exc:
        raise to_http_exception(exc) from exc


@router.patch("/{entry_id}/priority", response_model=WaitlistEntryResponse)
async def update_priority(
    entry_id: str,
    payload: UpdatePriorityRequest,
    service: WaitlistService = Depends(get_waitlist_service),
    actor: Actor = Depends(get_current_actor),
) -> WaitlistEntryResponse:
    try:
        return entry_response(service.update_priority(entry_id, payload.priority, actor=actor))
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("reprioritize", exc) from exc


@router.post("/{entry_id}/notify", response_model=WaitlistEntryResponse)
async def notify_entry(
    entry_id: str,
    payload: NotifyRequest,
    service: WaitlistService = Depends(get_waitlist_service),
    actor: Actor = Depends(get_current_actor),
) -> WaitlistEntryResponse:
    try:
        return entry_response(service.notify(entry_id, channel=payload.channel, actor=actor))
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("notify", exc) from exc


@router.post("/{entry_id}/attend", response_model=WaitlistEntryResponse)
async def attend_entry(
    entry_id: str,
    payload: AttendRequest,
    service: WaitlistService = Depends(get_waitlist_service),
    actor: Actor = Depends(get_current_actor),
) -> WaitlistEntryResponse:
    try:
        return entry_response(
            service.attend(
                entry_id,
                actor=actor,
                alternative_space_id=payload.alternative_space_id,
            )
        )
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("attend", exc) from exc


@router.post("/{entry_id}/cancel", response_model=WaitlistEntryResponse)
async def cancel_entry(
    entry_id: str,
    payload: CancelEntryRequest,
    service: WaitlistService = Depends(get_waitlist_service),
    actor: Actor = Depends(get_current_actor),
) -> WaitlistEntryResponse:
    try:
        return entry_response(service.cancel(entry_id, reason=payload.reason, actor=actor))
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("cancel", exc) from exc


@router.delete(
    "/{entry_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_admin)],
)
async def remove_entry(
    entry_id: str,
    service: WaitlistService = Depends(get_waitlist_service),
) -> Response:
    try:
        service.remove(entry_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except BookingError as exc:
        raise to_http_exception(exc) from exc
