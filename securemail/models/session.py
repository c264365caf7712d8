"""
Domain models for the provider session lifecycle.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionRecord(BaseModel):
    """The persisted provider session. Instances are immutable snapshots."""

    model_config = ConfigDict(frozen=True)

    access_token: str = Field("", description="Bearer token for provider API calls.")
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None

    @field_validator("expires_at")
    @classmethod
    def _ensure_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def is_authenticated(self) -> bool:
        return bool(self.access_token)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or _utcnow())


class AuthenticationStatus(BaseModel):
    """Derived view of the current session returned by ``check_authentication``."""

    is_authenticated: bool
    needs_refresh: bool = False
    expires_at: Optional[datetime] = None


class AuthorizationState(str, Enum):
    LISTENING = "listening"
    CODE_RECEIVED = "code_received"
    EXCHANGING = "exchanging"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELED = "canceled"


_TERMINAL_STATES = frozenset(
    {
        AuthorizationState.SUCCEEDED,
        AuthorizationState.FAILED,
        AuthorizationState.TIMED_OUT,
        AuthorizationState.CANCELED,
    }
)


@dataclass
class AuthorizationAttempt:
    """Ephemeral bookkeeping for a single ``authenticate()`` call."""

    strategy: str
    state: AuthorizationState = AuthorizationState.LISTENING
    reason: Optional[str] = None
    started_at: datetime = field(default_factory=_utcnow)
    finished_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in _TERMINAL_STATES

    def transition(
        self, state: AuthorizationState, reason: Optional[str] = None
    ) -> None:
        if self.is_terminal:
            raise RuntimeError(
                f"Authorization attempt already finished as {self.state.value}."
            )
        logger.debug(
            "Authorization attempt %s -> %s", self.state.value, state.value
        )
        self.state = state
        self.reason = reason
        if state in _TERMINAL_STATES:
            self.finished_at = _utcnow()


__all__ = [
    "AuthenticationStatus",
    "AuthorizationAttempt",
    "AuthorizationState",
    "SessionRecord",
]
