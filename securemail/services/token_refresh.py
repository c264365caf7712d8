"""
Decide whether a stored session can be used, must be refreshed, or needs
a fresh authorization, and perform the refresh when required.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional, Protocol

import httpx

from securemail.clients.provider_auth import TokenGrant
from securemail.core.exceptions import OAuthTokenExchangeError, ReauthRequiredError
from securemail.models.session import SessionRecord
from securemail.services.credential_store import CredentialStore

logger = logging.getLogger(__name__)

# Lifetime assumed when the provider omits ``expires_in``.
DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)


class RefreshingClient(Protocol):
    async def refresh_token(self, refresh_token: str) -> TokenGrant: ...


class RefreshDecision(str, Enum):
    USE = "use"
    REFRESH = "refresh"
    REAUTHENTICATE = "reauthenticate"


class TokenRefreshPolicy:
    """Apply the refresh decision table to a session record."""

    def __init__(
        self,
        store: CredentialStore,
        oauth_client: RefreshingClient,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._oauth = oauth_client
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def decide(
        self, record: Optional[SessionRecord], now: Optional[datetime] = None
    ) -> RefreshDecision:
        if record is None or not record.is_authenticated:
            return RefreshDecision.REAUTHENTICATE
        now = now or self._clock()
        if not record.is_expired(now):
            return RefreshDecision.USE
        if record.refresh_token:
            return RefreshDecision.REFRESH
        return RefreshDecision.REAUTHENTICATE

    async def ensure_fresh(self, record: Optional[SessionRecord]) -> SessionRecord:
        """Return a usable record, refreshing it once if it has expired.

        Refresh failures are not retried here; they surface as
        ``ReauthRequiredError``.
        """
        decision = self.decide(record)
        if record is None or decision is RefreshDecision.REAUTHENTICATE:
            raise ReauthRequiredError()
        if decision is RefreshDecision.USE:
            return record

        logger.info("Refreshing expired access token")
        refreshed_at = self._clock()
        try:
            access_token, refresh_token, expires_in = await self._oauth.refresh_token(
                record.refresh_token
            )
        except (OAuthTokenExchangeError, httpx.HTTPError) as exc:
            logger.warning("Token refresh failed: %s", exc)
            raise ReauthRequiredError() from exc

        lifetime = (
            timedelta(seconds=expires_in) if expires_in is not None else DEFAULT_TOKEN_LIFETIME
        )
        refreshed = SessionRecord(
            access_token=access_token,
            # Providers usually omit the refresh token on refresh; keep ours.
            refresh_token=refresh_token or record.refresh_token,
            expires_at=refreshed_at + lifetime,
        )
        self._store.save(refreshed)
        return refreshed


__all__ = ["DEFAULT_TOKEN_LIFETIME", "RefreshDecision", "TokenRefreshPolicy"]
