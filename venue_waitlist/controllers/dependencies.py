"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from typing import Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from venue_waitlist.domain.errors import (
    AvailabilityCheckFailedError,
    BookingError,
    ConflictError,
    DuplicateError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
)
from venue_waitlist.domain.models import Actor
from venue_waitlist.services.auth_service import (
    AdminTokenNotConfiguredError,
    AuthService,
    InvalidAdminTokenError,
)
from venue_waitlist.services.availability_service import AvailabilityService
from venue_waitlist.services.promotion_service import PromotionOrchestrator
from venue_waitlist.services.report_service import ReportService
from venue_waitlist.services.reservation_service import TemporaryReservationService
from venue_waitlist.services.waitlist_service import WaitlistService
from venue_waitlist.utils.config import get_settings


bearer_scheme = HTTPBearer(auto_error=False)


def _state_service(request: Request, attribute: str, label: str) -> Any:
    service = getattr(request.app.state, attribute, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} is not initialized",
        )
    return service


def get_auth_service(request: Request) -> AuthService:
    service = getattr(request.app.state, "auth_service", None)
    if service is None:
        service = AuthService(settings=get_settings())
        request.app.state.auth_service = service
    return service


def get_availability_service(request: Request) -> AvailabilityService:
    return _state_service(request, "availability_service", "Availability service")


def get_reservation_service(request: Request) -> TemporaryReservationService:
    return _state_service(request, "reservation_service", "Reservation service")


def get_waitlist_service(request: Request) -> WaitlistService:
    return _state_service(request, "waitlist_service", "Waitlist service")


def get_promotion_orchestrator(request: Request) -> PromotionOrchestrator:
    return _state_service(request, "promotion_orchestrator", "Promotion orchestrator")


def get_report_service(request: Request) -> ReportService:
    return _state_service(request, "report_service", "Report service")


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> Actor:
    if not auth_service.auth_enabled:
        return auth_service.system_actor
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header with Bearer token is required",
        )
    try:
        return auth_service.current_actor(credentials.credentials)
    except (AdminTokenNotConfiguredError, InvalidAdminTokenError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc


async def require_admin(actor: Actor = Depends(get_current_actor)) -> None:
    return None


def to_http_exception(exc: BookingError) -> HTTPException:
    """Translate a domain failure into the matching HTTP status."""
    if isinstance(exc, InvalidArgumentError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": str(exc), "conflicts": exc.conflicts.to_dict()},
        )
    if isinstance(exc, (InvalidStateError, DuplicateError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, AvailabilityCheckFailedError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
