"""
Session manager: the only entry point for token-consuming operations.

Authentication status is always derived from the credential store and the
refresh decision table; nothing here caches an "authenticated" flag.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, TypeVar

from securemail.clients.provider_auth import ProviderOAuthClient
from securemail.core.exceptions import ReauthRequiredError
from securemail.models.session import AuthenticationStatus
from securemail.services.authorization_flow import AuthorizationFlow
from securemail.services.credential_store import CredentialStore
from securemail.services.token_refresh import RefreshDecision, TokenRefreshPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SessionManager:
    def __init__(
        self,
        store: CredentialStore,
        refresh_policy: TokenRefreshPolicy,
        flow: AuthorizationFlow,
        oauth_client: ProviderOAuthClient,
    ) -> None:
        self._store = store
        self._policy = refresh_policy
        self._flow = flow
        self._oauth = oauth_client

    @property
    def flow(self) -> AuthorizationFlow:
        return self._flow

    def check_authentication(self) -> AuthenticationStatus:
        """Report whether the stored session is usable, possibly after a refresh."""
        record = self._store.load()
        decision = self._policy.decide(record)
        if decision is RefreshDecision.REAUTHENTICATE or record is None:
            return AuthenticationStatus(is_authenticated=False)
        return AuthenticationStatus(
            is_authenticated=True,
            needs_refresh=decision is RefreshDecision.REFRESH,
            expires_at=record.expires_at,
        )

    async def authenticate(self) -> AuthenticationStatus:
        """Run the configured authorization flow and persist the new session."""
        record = await self._flow.authenticate()
        self._store.save(record)
        return self.check_authentication()

    def cancel_authentication(self) -> bool:
        return self._flow.cancel()

    async def logout(self) -> None:
        """Revoke remotely if possible, then always forget the local session."""
        record = self._store.load()
        try:
            token = None
            if record is not None:
                token = record.refresh_token or record.access_token or None
            if token:
                try:
                    await self._oauth.revoke_token(token)
                    logger.info("Provider token revoked")
                except Exception as exc:  # pylint: disable=broad-except
                    logger.warning(
                        "Token revocation failed, clearing locally: %s", exc, exc_info=True
                    )
        finally:
            self._store.clear()
            logger.info("Logged out")

    async def with_valid_token(self, fn: Callable[[str], Awaitable[T]]) -> T:
        """
        Run ``fn`` with a verified access token.

        The record is loaded and passed through the refresh policy on every
        call. When the session cannot be recovered it is cleared and
        ``ReauthRequiredError`` is raised without calling ``fn``.
        """
        record = self._store.load()
        try:
            fresh = await self._policy.ensure_fresh(record)
        except ReauthRequiredError:
            if record is not None:
                self._store.clear()
                logger.info("Session demoted to unauthenticated")
            raise
        return await fn(fresh.access_token)


__all__ = ["SessionManager"]
