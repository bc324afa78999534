"""Aggregated views over the waitlist and temporary reservations."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import numpy as np
import pandas as pd

from venue_waitlist.domain.models import ReservationKind, ReservationStatus, WaitlistStatus
from venue_waitlist.repository.data_repository import DataRepository
from venue_waitlist.services.notification_service import DispatchOutcome, RateLimitedNotifier
from venue_waitlist.utils.config import Settings, get_settings
from venue_waitlist.utils.logger import get_logger
from venue_waitlist.utils.timeutils import to_timestamp, utc_now


logger = get_logger(__name__)

_EXPIRY_RATE_ALERT = 50.0
_CONVERSION_RATE_ALERT = 30.0


@dataclass(frozen=True)
class DemandAlert:
    space_id: str
    date_desejada: str
    entries: int
    notification_status: Optional[str] = None


@dataclass(frozen=True)
class DailyReport:
    generated_at: str
    period_start: str
    created: int
    expired: int
    converted: int
    conversion_rate: float
    expiry_rate: float
    active_waitlist: int
    busiest_queues: list[dict[str, Any]] = field(default_factory=list)
    alerts: list[str] = field(default_factory=list)
    notification_status: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated_at": self.generated_at,
            "period_start": self.period_start,
            "created": self.created,
            "expired": self.expired,
            "converted": self.converted,
            "conversion_rate": self.conversion_rate,
            "expiry_rate": self.expiry_rate,
            "active_waitlist": self.active_waitlist,
            "busiest_queues": self.busiest_queues,
            "alerts": self.alerts,
        }


def _frame(rows: list[Any]) -> pd.DataFrame:
    return pd.DataFrame([dict(row) for row in rows])


def _rate(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return round(float(part) / float(whole) * 100.0, 1)


class ReportService:
    """Builds waitlist statistics, demand alerts and the daily lifecycle report."""

    def __init__(
        self,
        repository: DataRepository,
        notifier: RateLimitedNotifier,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repository = repository
        self._notifier = notifier
        self._settings = settings or get_settings()
        self._clock = clock

    def waitlist_statistics(self, space_id: Optional[str] = None) -> dict[str, Any]:
        filters = [("space_id", "eq", space_id)] if space_id else []
        frame = _frame(self._repository.query("waitlist_entries", filters))
        stats: dict[str, Any] = {
            "total": int(len(frame)),
            "by_status": {status.value: 0 for status in WaitlistStatus},
            "by_space": {},
            "average_wait_hours": 0.0,
            "max_score": 0,
            "total_estimated_value": 0.0,
        }
        if frame.empty:
            return stats

        stats["by_status"].update(
            {str(key): int(value) for key, value in frame["status"].value_counts().items()}
        )
        stats["by_space"] = {
            str(key): int(value) for key, value in frame["space_id"].value_counts().items()
        }
        stats["max_score"] = int(frame["score"].max())
        stats["total_estimated_value"] = float(frame["valor_estimado_proposta"].fillna(0.0).sum())

        active = frame[frame["status"] == WaitlistStatus.ATIVO.value]
        if not active.empty:
            created = pd.to_datetime(active["created_at"], utc=True)
            now = pd.Timestamp(self._clock())
            waited = (now - created).dt.total_seconds().to_numpy() / 3600.0
            stats["average_wait_hours"] = round(float(np.clip(waited, 0.0, None).mean()), 1)
        return stats

    def _queue_sizes(self, since: Optional[datetime] = None) -> pd.DataFrame:
        filters = [("status", "eq", WaitlistStatus.ATIVO.value)]
        if since is not None:
            filters.append(("created_at", "gte", to_timestamp(since)))
        frame = _frame(self._repository.query("waitlist_entries", filters))
        if frame.empty:
            return pd.DataFrame(columns=["space_id", "date_desejada", "entries"])
        return (
            frame.groupby(["space_id", "date_desejada"])
            .size()
            .reset_index(name="entries")
            .sort_values(["entries", "date_desejada"], ascending=[False, True])
        )

    def demand_hotspots(self, now: Optional[datetime] = None) -> list[DemandAlert]:
        """(space, date) queues that gained at least the threshold in the lookback window."""
        now = now or self._clock()
        since = now - timedelta(hours=self._settings.demand_alert_lookback_hours)
        sizes = self._queue_sizes(since)
        hot = sizes[sizes["entries"] >= self._settings.demand_alert_threshold]
        return [
            DemandAlert(
                space_id=str(row.space_id),
                date_desejada=str(row.date_desejada),
                entries=int(row.entries),
            )
            for row in hot.itertuples(index=False)
        ]

    def run_demand_alerts(self, now: Optional[datetime] = None) -> list[DemandAlert]:
        alerts: list[DemandAlert] = []
        for hotspot in self.demand_hotspots(now):
            outcome = self._notifier.send(
                self._settings.notification_template_demand_alert,
                self._settings.admin_email,
                {
                    "space_id": hotspot.space_id,
                    "date_desejada": hotspot.date_desejada,
                    "entries": hotspot.entries,
                },
            )
            alerts.append(
                DemandAlert(
                    space_id=hotspot.space_id,
                    date_desejada=hotspot.date_desejada,
                    entries=hotspot.entries,
                    notification_status=outcome.status,
                )
            )
        if alerts:
            logger.info("Demand alerts raised | count=%s", len(alerts))
        return alerts

    def build_daily_report(self, now: Optional[datetime] = None) -> DailyReport:
        now = now or self._clock()
        since = now - timedelta(hours=24)
        since_stamp = to_timestamp(since)
        holds = _frame(
            self._repository.query(
                "reservations",
                [
                    ("kind", "eq", ReservationKind.TEMPORARIA.value),
                    ("updated_at", "gte", since_stamp),
                ],
            )
        )
        if holds.empty:
            created = expired = converted = 0
        else:
            created = int((holds["created_at"] >= since_stamp).sum())
            expired = int((holds["status"] == ReservationStatus.EXPIRADA.value).sum())
            converted = int((holds["status"] == ReservationStatus.CONVERTIDA.value).sum())

        queues = self._queue_sizes()
        active_waitlist = int(queues["entries"].sum()) if not queues.empty else 0
        busiest = queues[queues["entries"] >= self._settings.demand_alert_threshold]

        conversion_rate = _rate(converted, created)
        expiry_rate = _rate(expired, created)
        alerts: list[str] = []
        if created and expiry_rate > _EXPIRY_RATE_ALERT:
            alerts.append(f"High expiry rate: {expiry_rate}% of holds expired")
        if created and conversion_rate < _CONVERSION_RATE_ALERT:
            alerts.append(f"Low conversion rate: {conversion_rate}% of holds converted")
        for row in busiest.itertuples(index=False):
            alerts.append(
                f"Long waitlist: {int(row.entries)} entries for space {row.space_id} on {row.date_desejada}"
            )

        return DailyReport(
            generated_at=to_timestamp(now),
            period_start=since_stamp,
            created=created,
            expired=expired,
            converted=converted,
            conversion_rate=conversion_rate,
            expiry_rate=expiry_rate,
            active_waitlist=active_waitlist,
            busiest_queues=[
                {
                    "space_id": str(row.space_id),
                    "date_desejada": str(row.date_desejada),
                    "entries": int(row.entries),
                }
                for row in busiest.itertuples(index=False)
            ],
            alerts=alerts,
        )

    def send_daily_report(self, now: Optional[datetime] = None) -> DailyReport:
        report = self.build_daily_report(now)
        outcome: DispatchOutcome = self._notifier.send(
            self._settings.notification_template_daily_report,
            self._settings.admin_email,
            report.to_dict(),
        )
        logger.info(
            "Daily report dispatched | created=%s | expired=%s | converted=%s | notification=%s",
            report.created,
            report.expired,
            report.converted,
            outcome.status,
        )
        return replace(report, notification_status=outcome.status)
