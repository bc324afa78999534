"""HTTP controller layer for availability checks and blackout periods."""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field

from venue_waitlist.controllers.dependencies import (
    get_availability_service,
    require_admin,
    to_http_exception,
)
from venue_waitlist.domain.errors import BookingError
from venue_waitlist.domain.models import BlackoutPeriod
from venue_waitlist.services.availability_service import AvailabilityService
from venue_waitlist.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["availability"])

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class AvailabilityRequest(BaseModel):
    space_id: str = Field(min_length=1)
    date_start: date
    date_end: date
    exclude_reservation_id: Optional[str] = None


class ConflictCountsResponse(BaseModel):
    reservations: int = Field(ge=0)
    blackouts: int = Field(ge=0)


class AvailabilityResponse(BaseModel):
    available: bool
    conflicts: ConflictCountsResponse
    message: str


class BlackoutRequest(BaseModel):
    space_id: str = Field(min_length=1)
    date_start: date
    date_end: date
    time_start: Optional[str] = Field(default=None, pattern=TIME_PATTERN)
    time_end: Optional[str] = Field(default=None, pattern=TIME_PATTERN)
    reason: Optional[str] = Field(default=None, max_length=500)


class BlackoutResponse(BaseModel):
    id: str
    space_id: str
    date_start: date
    date_end: date
    time_start: Optional[str] = None
    time_end: Optional[str] = None
    reason: Optional[str] = None


def _blackout_response(blackout: BlackoutPeriod) -> BlackoutResponse:
    return BlackoutResponse(
        id=blackout.id,
        space_id=blackout.space_id,
        date_start=blackout.date_start,
        date_end=blackout.date_end,
        time_start=blackout.time_start,
        time_end=blackout.time_end,
        reason=blackout.reason,
    )


@router.post(
    "/availability/check",
    response_model=AvailabilityResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def check_availability(
    payload: AvailabilityRequest,
    service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityResponse:
    try:
        result = service.check_availability(
            space_id=payload.space_id,
            window_start=payload.date_start,
            window_end=payload.date_end,
            exclude_reservation_id=payload.exclude_reservation_id,
        )
        return AvailabilityResponse(
            available=result.available,
            conflicts=ConflictCountsResponse(**result.conflicts.to_dict()),
            message="Window is available" if result.available else result.conflicts.describe(),
        )
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected availability check failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to check availability",
        ) from exc


@router.post(
    "/blackouts",
    response_model=BlackoutResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin)],
)
async def create_blackout(
    payload: BlackoutRequest,
    service: AvailabilityService = Depends(get_availability_service),
) -> BlackoutResponse:
    try:
        blackout = service.add_blackout(
            space_id=payload.space_id,
            date_start=payload.date_start,
            date_end=payload.date_end,
            time_start=payload.time_start,
            time_end=payload.time_end,
            reason=payload.reason,
        )
        return _blackout_response(blackout)
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected blackout creation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create blackout",
        ) from exc


@router.get(
    "/blackouts",
    response_model=list[BlackoutResponse],
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def list_blackouts(
    space_id: Optional[str] = None,
    service: AvailabilityService = Depends(get_availability_service),
) -> list[BlackoutResponse]:
    return [_blackout_response(item) for item in service.list_blackouts(space_id=space_id)]


@router.delete(
    "/blackouts/{blackout_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_admin)],
)
async def delete_blackout(
    blackout_id: str,
    service: AvailabilityService = Depends(get_availability_service),
) -> Response:
    try:
        service.remove_blackout(blackout_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except BookingError as exc:
        raise to_http_exception(exc) from exc
