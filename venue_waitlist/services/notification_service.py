"""Outbound notification dispatchers.

The core only decides when to notify and with which data; delivery is
delegated to a dispatcher. Queueing is fire-and-forget: callers never wait
for delivery confirmation beyond the returned queue id.
"""

from __future__ import annotations

import sqlite3
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping, Optional
from uuid import uuid4

import requests

from venue_waitlist.repository.data_repository import DataRepository
from venue_waitlist.services.rate_limiter import TokenBucketRateLimiter
from venue_waitlist.utils.config import Settings, get_settings
from venue_waitlist.utils.logger import get_logger


logger = get_logger(__name__)


class NotificationDeliveryError(Exception):
    """Raised when a notification could not be handed to the delivery channel."""


class NotificationDispatcher(ABC):
    @abstractmethod
    def enqueue(
        self,
        template_name: str,
        recipient: str,
        payload: Mapping[str, Any],
    ) -> str:
        """Queue a templated message for ``recipient``. Returns the queue id."""
        raise NotImplementedError


class OutboxNotificationDispatcher(NotificationDispatcher):
    """Stores notifications in the ``notification_outbox`` table for a mailer to drain."""

    def __init__(self, repository: DataRepository) -> None:
        self._repository = repository

    def enqueue(
        self,
        template_name: str,
        recipient: str,
        payload: Mapping[str, Any],
    ) -> str:
        if not recipient:
            raise NotificationDeliveryError("recipient is required")
        queue_id = self._repository.enqueue_notification(template_name, recipient, payload)
        logger.info(
            "Notification queued | queue_id=%s | template=%s | recipient=%s",
            queue_id,
            template_name,
            recipient,
        )
        return queue_id


class HttpNotificationDispatcher(NotificationDispatcher):
    """Posts notifications as JSON to an external delivery webhook."""

    def __init__(
        self,
        webhook_url: str,
        timeout_seconds: float = 5.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not webhook_url:
            raise ValueError("webhook_url is required")
        self._webhook_url = webhook_url
        self._timeout_seconds = timeout_seconds
        self._session = session or requests.Session()

    def enqueue(
        self,
        template_name: str,
        recipient: str,
        payload: Mapping[str, Any],
    ) -> str:
        body = {
            "template": template_name,
            "recipient": recipient,
            "payload": dict(payload),
        }
        try:
            response = self._session.post(
                self._webhook_url,
                json=body,
                timeout=self._timeout_seconds,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning(
                "Notification webhook failed | template=%s | recipient=%s | error=%s",
                template_name,
                recipient,
                exc,
            )
            raise NotificationDeliveryError(f"Webhook delivery failed: {exc}") from exc

        queue_id: Optional[str] = None
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict) and data.get("id"):
            queue_id = str(data["id"])
        return queue_id or str(uuid4())


def build_notification_dispatcher(
    repository: DataRepository,
    settings: Optional[Settings] = None,
) -> NotificationDispatcher:
    resolved = settings or get_settings()
    if resolved.notification_webhook_url:
        return HttpNotificationDispatcher(
            webhook_url=resolved.notification_webhook_url,
            timeout_seconds=resolved.notification_timeout_seconds,
        )
    return OutboxNotificationDispatcher(repository)


@dataclass(frozen=True)
class DispatchOutcome:
    """``status`` is ``queued``, ``rate_limited``, ``failed`` or ``skipped``."""

    status: str
    queue_id: Optional[str] = None
    error: Optional[str] = None


class RateLimitedNotifier:
    """Routes notifications through the token bucket before the dispatcher.

    Failures never raise: they come back as a ``DispatchOutcome`` so the
    caller can report them as partial success.
    """

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        rate_limiter: Optional[TokenBucketRateLimiter] = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._rate_limiter = rate_limiter

    def send(
        self,
        template_name: str,
        recipient: Optional[str],
        payload: Mapping[str, Any],
    ) -> DispatchOutcome:
        if not recipient:
            return DispatchOutcome(status="skipped", error="no recipient address")
        if self._rate_limiter is not None and not self._rate_limiter.try_acquire():
            logger.warning(
                "Notification rate limited | template=%s | recipient=%s",
                template_name,
                recipient,
            )
            return DispatchOutcome(status="rate_limited", error="notification rate limit exceeded")
        try:
            queue_id = self._dispatcher.enqueue(template_name, recipient, payload)
        except (NotificationDeliveryError, sqlite3.Error) as exc:
            logger.error(
                "Notification dispatch failed | template=%s | recipient=%s | error=%s",
                template_name,
                recipient,
                exc,
            )
            return DispatchOutcome(status="failed", error=str(exc))
        return DispatchOutcome(status="queued", queue_id=queue_id)
