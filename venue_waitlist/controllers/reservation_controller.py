"""HTTP controller layer for temporary reservations."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from venue_waitlist.controllers.dependencies import (
    get_current_actor,
    get_promotion_orchestrator,
    get_reservation_service,
    require_admin,
    to_http_exception,
)
from venue_waitlist.controllers.waitlist_controller import PromotionResponse, promotion_response
from venue_waitlist.domain.errors import BookingError
from venue_waitlist.domain.models import (
    Actor,
    Reservation,
    ReservationKind,
    ReservationStatus,
    SpaceWindow,
)
from venue_waitlist.services.promotion_service import PromotionOrchestrator
from venue_waitlist.services.reservation_service import TemporaryReservationService
from venue_waitlist.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/reservations", tags=["reservations"])

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class CreateTemporaryReservationRequest(BaseModel):
    space_id: str = Field(min_length=1)
    client_id: Optional[str] = None
    date_start: date
    date_end: date
    time_start: Optional[str] = Field(default=None, pattern=TIME_PATTERN)
    time_end: Optional[str] = Field(default=None, pattern=TIME_PATTERN)
    description: Optional[str] = Field(default=None, max_length=500)
    estimated_value: float = Field(default=0.0, ge=0.0)
    notes: Optional[str] = Field(default=None, max_length=2000)


class ExtendRequest(BaseModel):
    hours: int = Field(gt=0)


class ReasonRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class ReservationResponse(BaseModel):
    id: str
    kind: ReservationKind
    space_id: str
    client_id: Optional[str] = None
    vendedor_id: Optional[str] = None
    date_start: date
    date_end: date
    time_start: Optional[str] = None
    time_end: Optional[str] = None
    status: ReservationStatus
    expires_at: Optional[datetime] = None
    origin_id: Optional[str] = None
    descricao: Optional[str] = None
    valor_estimado: float = Field(ge=0.0)
    observacoes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ConvertResponse(BaseModel):
    reservation_id: str
    origin_id: str
    conversion_record_id: str


class ReleaseResponse(BaseModel):
    reservation: ReservationResponse
    promotion: PromotionResponse


def reservation_response(reservation: Reservation) -> ReservationResponse:
    return ReservationResponse(
        id=reservation.id,
        kind=reservation.kind,
        space_id=reservation.space_id,
        client_id=reservation.client_id,
        vendedor_id=reservation.vendedor_id,
        date_start=reservation.date_start,
        date_end=reservation.date_end,
        time_start=reservation.time_start,
        time_end=reservation.time_end,
        status=reservation.status,
        expires_at=reservation.expires_at,
        origin_id=reservation.origin_id,
        descricao=reservation.descricao,
        valor_estimado=reservation.valor_estimado,
        observacoes=reservation.observacoes,
        created_at=reservation.created_at,
        updated_at=reservation.updated_at,
    )


@router.post(
    "/temporary",
    response_model=ReservationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_temporary_reservation(
    payload: CreateTemporaryReservationRequest,
    service: TemporaryReservationService = Depends(get_reservation_service),
    actor: Actor = Depends(get_current_actor),
) -> ReservationResponse:
    """Place a temporary hold; 409 with conflict counts when the window is taken."""
    try:
        reservation = service.create(
            space_id=payload.space_id,
            window=SpaceWindow(
                space_id=payload.space_id,
                date_start=payload.date_start.isoformat(),
                date_end=payload.date_end.isoformat(),
                time_start=payload.time_start,
                time_end=payload.time_end,
            ),
            client_id=payload.client_id,
            description=payload.description,
            actor=actor,
            estimated_value=payload.estimated_value,
            notes=payload.notes,
        )
        return reservation_response(reservation)
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected temporary reservation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create temporary reservation",
        ) from exc


@router.get(
    "/temporary",
    response_model=list[ReservationResponse],
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def list_temporary_reservations(
    status_filter: Optional[ReservationStatus] = Query(default=None, alias="status"),
    space_id: Optional[str] = None,
    vendedor_id: Optional[str] = None,
    service: TemporaryReservationService = Depends(get_reservation_service),
) -> list[ReservationResponse]:
    reservations = service.list_reservations(
        status=status_filter,
        space_id=space_id,
        vendedor_id=vendedor_id,
    )
    return [reservation_response(item) for item in reservations]


@router.get(
    "/{reservation_id}",
    response_model=ReservationResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def get_reservation(
    reservation_id: str,
    service: TemporaryReservationService = Depends(get_reservation_service),
) -> ReservationResponse:
    try:
        return reservation_response(service.get(reservation_id))
    except BookingError as exc:
        raise to_http_exception(exc) from exc


@router.post("/temporary/{reservation_id}/extend", response_model=ReservationResponse)
async def extend_reservation(
    reservation_id: str,
    payload: ExtendRequest,
    service: TemporaryReservationService = Depends(get_reservation_service),
    actor: Actor = Depends(get_current_actor),
) -> ReservationResponse:
    try:
        return reservation_response(service.extend(reservation_id, payload.hours, actor=actor))
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected extension failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to extend temporary reservation",
        ) from exc


@router.post("/temporary/{reservation_id}/convert", response_model=ConvertResponse)
async def convert_reservation(
    reservation_id: str,
    service: TemporaryReservationService = Depends(get_reservation_service),
    actor: Actor = Depends(get_current_actor),
) -> ConvertResponse:
    try:
        ref = service.convert(reservation_id, actor=actor)
        return ConvertResponse(
            reservation_id=ref.reservation_id,
            origin_id=ref.origin_id,
            conversion_record_id=ref.conversion_record_id,
        )
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected conversion failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to convert temporary reservation",
        ) from exc


@router.post("/temporary/{reservation_id}/release", response_model=ReleaseResponse)
async def release_reservation(
    reservation_id: str,
    payload: ReasonRequest,
    orchestrator: PromotionOrchestrator = Depends(get_promotion_orchestrator),
    actor: Actor = Depends(get_current_actor),
) -> ReleaseResponse:
    """Release the hold early and offer the freed window to the waitlist."""
    try:
        released, promotion = orchestrator.release_and_promote(
            reservation_id,
            reason=payload.reason,
            actor=actor,
        )
        return ReleaseResponse(
            reservation=reservation_response(released),
            promotion=promotion_response(promotion),
        )
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected release failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to release temporary reservation",
        ) from exc


@router.post("/temporary/{reservation_id}/cancel", response_model=ReservationResponse)
async def cancel_reservation(
    reservation_id: str,
    payload: ReasonRequest,
    service: TemporaryReservationService = Depends(get_reservation_service),
    actor: Actor = Depends(get_current_actor),
) -> ReservationResponse:
    try:
        return reservation_response(
            service.cancel(reservation_id, reason=payload.reason, actor=actor)
        )
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected cancellation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to cancel temporary reservation",
        ) from exc
