"""Admin token authentication and caller identity."""

from __future__ import annotations

import secrets
from threading import Lock
from typing import Optional

from venue_waitlist.domain.models import Actor
from venue_waitlist.utils.config import Settings, get_settings


class AuthenticationError(Exception):
    """Base authentication failure."""


class AdminTokenNotConfiguredError(AuthenticationError):
    """Raised when ADMIN_TOKEN is missing."""


class InvalidAdminTokenError(AuthenticationError):
    """Raised when provided token is invalid."""


class AuthService:
    """Validates login credentials and resolves bearer tokens to actors."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._sessions: dict[str, Actor] = {}
        self._lock = Lock()

    @property
    def auth_enabled(self) -> bool:
        return bool(self._settings.admin_token)

    @property
    def system_actor(self) -> Actor:
        return Actor(id=self._settings.system_actor_id, role="sistema")

    def _expected_token(self) -> str:
        if not self._settings.admin_token:
            raise AdminTokenNotConfiguredError(
                "ADMIN_TOKEN is not configured. Set ADMIN_TOKEN in environment variables."
            )
        return self._settings.admin_token

    def login(
        self,
        provided_admin_token: str,
        actor_id: Optional[str] = None,
        role: str = "admin",
    ) -> str:
        expected = self._expected_token()
        if not secrets.compare_digest(provided_admin_token, expected):
            raise InvalidAdminTokenError("Invalid admin token")
        session_token = secrets.token_urlsafe(32)
        actor = Actor(id=actor_id or self._settings.admin_email, role=role)
        with self._lock:
            self._sessions[session_token] = actor
        return session_token

    def current_actor(self, bearer_token: Optional[str]) -> Actor:
        if not self.auth_enabled:
            return self.system_actor
        if not bearer_token:
            raise InvalidAdminTokenError("No active session. Login first.")
        with self._lock:
            sessions = list(self._sessions.items())
        for session_token, actor in sessions:
            if secrets.compare_digest(bearer_token, session_token):
                return actor
        raise InvalidAdminTokenError("Invalid bearer token")

    def logout(self, bearer_token: Optional[str]) -> bool:
        if not bearer_token:
            return False
        with self._lock:
            return self._sessions.pop(bearer_token, None) is not None
