"""Controller layer for login, promotion, periodic sweeps and reports."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel, Field

from venue_waitlist.controllers.dependencies import (
    bearer_scheme,
    get_auth_service,
    get_current_actor,
    get_promotion_orchestrator,
    get_report_service,
    require_admin,
    to_http_exception,
)
from venue_waitlist.controllers.waitlist_controller import PromotionResponse, promotion_response
from venue_waitlist.domain.errors import BookingError
from venue_waitlist.domain.models import Actor, SpaceWindow
from venue_waitlist.services.auth_service import (
    AdminTokenNotConfiguredError,
    AuthService,
    InvalidAdminTokenError,
)
from venue_waitlist.services.promotion_service import PromotionOrchestrator
from venue_waitlist.services.report_service import ReportService
from venue_waitlist.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["operations"])

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class LoginRequest(BaseModel):
    admin_token: str = Field(min_length=1)
    actor_id: Optional[str] = Field(default=None, min_length=1, max_length=120)


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class SlotFreedRequest(BaseModel):
    space_id: str = Field(min_length=1)
    date_start: date
    date_end: date
    time_start: Optional[str] = Field(default=None, pattern=TIME_PATTERN)
    time_end: Optional[str] = Field(default=None, pattern=TIME_PATTERN)


class SweepRequest(BaseModel):
    now: Optional[datetime] = None


class PromotionSweepRequest(BaseModel):
    today: Optional[date] = None


class ExpirySweepResponse(BaseModel):
    expired_count: int = Field(ge=0)
    expired_ids: list[str]
    promotions: list[PromotionResponse]


class PromotionSweepResponse(BaseModel):
    promotions: list[PromotionResponse]


class ExpiryWarningResponse(BaseModel):
    reservation_id: str
    threshold_hours: int
    hours_left: float
    notification_status: str


class DemandAlertResponse(BaseModel):
    space_id: str
    date_desejada: date
    entries: int = Field(ge=0)
    notification_status: Optional[str] = None


class DailyReportResponse(BaseModel):
    generated_at: str
    period_start: str
    created: int = Field(ge=0)
    expired: int = Field(ge=0)
    converted: int = Field(ge=0)
    conversion_rate: float = Field(ge=0.0)
    expiry_rate: float = Field(ge=0.0)
    active_waitlist: int = Field(ge=0)
    busiest_queues: list[dict[str, Any]]
    alerts: list[str]
    notification_status: Optional[str] = None


def _unexpected(action: str, exc: Exception) -> HTTPException:
    logger.exception("Unexpected %s failure", action)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to run {action}",
    )


@router.get("/health", status_code=status.HTTP_200_OK)
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/login", response_model=LoginResponse, status_code=status.HTTP_200_OK)
async def login(
    payload: LoginRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    try:
        bearer = auth_service.login(payload.admin_token, actor_id=payload.actor_id)
        return LoginResponse(access_token=bearer)
    except (AdminTokenNotConfiguredError, InvalidAdminTokenError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected login failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to login",
        ) from exc


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    _: Actor = Depends(get_current_actor),
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> Response:
    """Drop the caller's session so the bearer token stops working."""
    auth_service.logout(credentials.credentials if credentials else None)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/promotions/slot-freed", response_model=PromotionResponse)
async def slot_freed(
    payload: SlotFreedRequest,
    orchestrator: PromotionOrchestrator = Depends(get_promotion_orchestrator),
    actor: Actor = Depends(get_current_actor),
) -> PromotionResponse:
    """Offer a freed window to the best-ranked waitlist entry."""
    try:
        result = orchestrator.on_slot_freed(
            payload.space_id,
            SpaceWindow(
                space_id=payload.space_id,
                date_start=payload.date_start.isoformat(),
                date_end=payload.date_end.isoformat(),
                time_start=payload.time_start,
                time_end=payload.time_end,
            ),
            actor=actor,
        )
        return promotion_response(result)
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("promotion", exc) from exc


@router.post(
    "/sweeps/expiry",
    response_model=ExpirySweepResponse,
    dependencies=[Depends(require_admin)],
)
async def run_expiry_sweep(
    payload: SweepRequest,
    orchestrator: PromotionOrchestrator = Depends(get_promotion_orchestrator),
) -> ExpirySweepResponse:
    """Entry point for the external scheduler; safe to call repeatedly."""
    try:
        result = orchestrator.run_expiry_sweep(payload.now)
        return ExpirySweepResponse(
            expired_count=result.expired_count,
            expired_ids=result.expired_ids,
            promotions=[promotion_response(item) for item in result.promotions],
        )
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("expiry sweep", exc) from exc


@router.post(
    "/sweeps/promotion",
    response_model=PromotionSweepResponse,
    dependencies=[Depends(require_admin)],
)
async def run_promotion_sweep(
    payload: PromotionSweepRequest,
    orchestrator: PromotionOrchestrator = Depends(get_promotion_orchestrator),
) -> PromotionSweepResponse:
    try:
        results = orchestrator.run_promotion_sweep(payload.today)
        return PromotionSweepResponse(promotions=[promotion_response(item) for item in results])
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("promotion sweep", exc) from exc


@router.post(
    "/sweeps/expiry-warnings",
    response_model=list[ExpiryWarningResponse],
    dependencies=[Depends(require_admin)],
)
async def run_expiry_warnings(
    payload: SweepRequest,
    orchestrator: PromotionOrchestrator = Depends(get_promotion_orchestrator),
) -> list[ExpiryWarningResponse]:
    try:
        warnings = orchestrator.run_expiry_warnings(payload.now)
        return [
            ExpiryWarningResponse(
                reservation_id=item.reservation_id,
                threshold_hours=item.threshold_hours,
                hours_left=item.hours_left,
                notification_status=item.notification_status,
            )
            for item in warnings
        ]
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("expiry warnings", exc) from exc


@router.post(
    "/sweeps/demand-alerts",
    response_model=list[DemandAlertResponse],
    dependencies=[Depends(require_admin)],
)
async def run_demand_alerts(
    payload: SweepRequest,
    report_service: ReportService = Depends(get_report_service),
) -> list[DemandAlertResponse]:
    try:
        alerts = report_service.run_demand_alerts(payload.now)
        return [
            DemandAlertResponse(
                space_id=item.space_id,
                date_desejada=item.date_desejada,
                entries=item.entries,
                notification_status=item.notification_status,
            )
            for item in alerts
        ]
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("demand alerts", exc) from exc


@router.get(
    "/reports/waitlist-stats",
    dependencies=[Depends(require_admin)],
)
async def waitlist_stats(
    space_id: Optional[str] = None,
    report_service: ReportService = Depends(get_report_service),
) -> dict[str, Any]:
    return report_service.waitlist_statistics(space_id=space_id)


@router.get(
    "/reports/daily",
    response_model=DailyReportResponse,
    dependencies=[Depends(require_admin)],
)
async def daily_report(
    report_service: ReportService = Depends(get_report_service),
) -> DailyReportResponse:
    report = report_service.build_daily_report()
    return DailyReportResponse(**report.to_dict())


@router.post(
    "/reports/daily/send",
    response_model=DailyReportResponse,
    dependencies=[Depends(require_admin)],
)
async def send_daily_report(
    payload: SweepRequest,
    report_service: ReportService = Depends(get_report_service),
) -> DailyReportResponse:
    try:
        report = report_service.send_daily_report(payload.now)
        return DailyReportResponse(
            **report.to_dict(),
            notification_status=report.notification_status,
        )
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("daily report", exc) from exc
