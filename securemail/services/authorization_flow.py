"""
Browser-based consent for the mail provider.

Two strategies share one interface: ``LoopbackAuthorizationFlow`` receives the
code on a short-lived local listener, ``OutOfBandAuthorizationFlow`` asks the
user to paste the code shown on the consent screen. Both converge on the same
code exchange. ``build_authorization_flow`` picks one from configuration.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import webbrowser
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional, Tuple

import httpx

from securemail.clients.callback_listener import CallbackListener
from securemail.clients.provider_auth import ProviderOAuthClient
from securemail.core.config import OAuthSettings
from securemail.core.exceptions import (
    AuthError,
    AuthorizationCancelledError,
    AuthorizationDeniedError,
    AuthorizationInProgressError,
    AuthorizationTimeoutError,
    NetworkFailureError,
    OAuthTokenExchangeError,
)
from securemail.models.session import AuthorizationAttempt, AuthorizationState, SessionRecord

logger = logging.getLogger(__name__)

UrlOpener = Callable[[str], object]
CodePrompt = Callable[[str], Awaitable[Optional[str]]]
ListenerFactory = Callable[..., CallbackListener]


def _open_in_browser(url: str) -> bool:
    return webbrowser.open(url)


class AuthorizationFlow(ABC):
    """One consent exchange at a time; a concurrent call is rejected."""

    strategy = "abstract"

    def __init__(
        self,
        oauth_client: ProviderOAuthClient,
        settings: OAuthSettings,
        *,
        url_opener: UrlOpener | None = None,
    ) -> None:
        self._oauth = oauth_client
        self._settings = settings
        self._open_url = url_opener or _open_in_browser
        self._in_flight = False
        self.attempt: Optional[AuthorizationAttempt] = None

    @property
    def in_progress(self) -> bool:
        return self._in_flight

    async def authenticate(self) -> SessionRecord:
        """Run the consent exchange and return the resulting session record."""
        if self._in_flight:
            raise AuthorizationInProgressError()
        self._in_flight = True
        attempt = AuthorizationAttempt(strategy=self.strategy)
        self.attempt = attempt
        try:
            code, redirect_uri = await self._obtain_code(attempt)
            attempt.transition(AuthorizationState.EXCHANGING)
            record = await self._exchange(code, redirect_uri)
            attempt.transition(AuthorizationState.SUCCEEDED)
            logger.info("Authorization succeeded")
            return record
        except AuthError as exc:
            if not attempt.is_terminal:
                attempt.transition(AuthorizationState.FAILED, str(exc))
            logger.warning("Authorization ended as %s: %s", attempt.state.value, exc)
            raise
        finally:
            self._in_flight = False

    @abstractmethod
    def cancel(self) -> bool:
        """Cancel the in-flight attempt; returns whether one was cancelled."""

    @abstractmethod
    async def _obtain_code(self, attempt: AuthorizationAttempt) -> Tuple[str, str]:
        """Return the authorization code and the redirect URI it was issued for."""

    def _launch_consent(self, url: str) -> None:
        # Opening the browser is best effort; nothing verifies it worked.
        try:
            self._open_url(url)
        except webbrowser.Error as exc:
            logger.warning("Could not open the consent page automatically: %s", exc)
        logger.info("Consent page requested in the system browser")

    async def _exchange(self, code: str, redirect_uri: str) -> SessionRecord:
        issued_at = datetime.now(timezone.utc)
        try:
            access_token, refresh_token, expires_in = (
                await self._oauth.exchange_authorization_code(code, redirect_uri=redirect_uri)
            )
        except OAuthTokenExchangeError as exc:
            raise AuthorizationDeniedError(
                "Failed to exchange authorization code."
            ) from exc
        except httpx.HTTPError as exc:
            raise NetworkFailureError() from exc

        return SessionRecord(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=(
                issued_at + timedelta(seconds=expires_in) if expires_in is not None else None
            ),
        )


class LoopbackAuthorizationFlow(AuthorizationFlow):
    """Receive the authorization code through a redirect to a loopback port."""

    strategy = "loopback"

    def __init__(
        self,
        oauth_client: ProviderOAuthClient,
        settings: OAuthSettings,
        *,
        url_opener: UrlOpener | None = None,
        listener_factory: ListenerFactory | None = None,
    ) -> None:
        super().__init__(oauth_client, settings, url_opener=url_opener)
        self._listener_factory = listener_factory or CallbackListener
        self._listener: Optional[CallbackListener] = None

    def cancel(self) -> bool:
        if self._listener is None:
            return False
        self._listener.cancel()
        return True

    async def _obtain_code(self, attempt: AuthorizationAttempt) -> Tuple[str, str]:
        settings = self._settings
        redirect_uri = f"http://{settings.callback_host}:{settings.callback_port}"
        state = secrets.token_urlsafe(24)

        listener = self._listener_factory(
            settings.callback_host, settings.callback_port, expected_state=state
        )
        await listener.start()
        self._listener = listener
        try:
            self._launch_consent(
                self._oauth.build_authorization_url(state, redirect_uri=redirect_uri)
            )
            try:
                result = await asyncio.wait_for(
                    listener.wait_for_redirect(),
                    timeout=settings.authorization_timeout_seconds,
                )
            except asyncio.TimeoutError as exc:
                attempt.transition(AuthorizationState.TIMED_OUT)
                raise AuthorizationTimeoutError() from exc
        finally:
            self._listener = None
            await listener.stop()

        if result.canceled:
            attempt.transition(AuthorizationState.CANCELED)
            raise AuthorizationCancelledError()
        if result.error or not result.code:
            raise AuthorizationDeniedError(
                f"Authorization was denied: {result.error or 'no code received'}."
            )

        attempt.transition(AuthorizationState.CODE_RECEIVED)
        return result.code, redirect_uri


class OutOfBandAuthorizationFlow(AuthorizationFlow):
    """Ask the user to paste the code displayed by the consent screen."""

    strategy = "out_of_band"

    def __init__(
        self,
        oauth_client: ProviderOAuthClient,
        settings: OAuthSettings,
        code_prompt: CodePrompt,
        *,
        url_opener: UrlOpener | None = None,
    ) -> None:
        super().__init__(oauth_client, settings, url_opener=url_opener)
        self._prompt = code_prompt
        self._prompt_task: Optional[asyncio.Future[Optional[str]]] = None

    def cancel(self) -> bool:
        if self._prompt_task is None or self._prompt_task.done():
            return False
        self._prompt_task.cancel()
        return True

    async def _obtain_code(self, attempt: AuthorizationAttempt) -> Tuple[str, str]:
        redirect_uri = self._settings.out_of_band_redirect_uri
        url = self._oauth.build_authorization_url(
            secrets.token_urlsafe(24), redirect_uri=redirect_uri
        )
        self._launch_consent(url)

        task = asyncio.ensure_future(self._prompt(url))
        self._prompt_task = task
        try:
            await asyncio.wait({task})
        finally:
            self._prompt_task = None

        code = None if task.cancelled() else task.result()
        code = (code or "").strip()
        if not code:
            attempt.transition(AuthorizationState.CANCELED)
            raise AuthorizationCancelledError()

        attempt.transition(AuthorizationState.CODE_RECEIVED)
        return code, redirect_uri


class PendingCodePrompt:
    """Code prompt fed from outside, e.g. by the bridge API's code endpoint."""

    def __init__(self) -> None:
        self._pending: Optional[asyncio.Future[Optional[str]]] = None
        self.authorization_url: Optional[str] = None

    @property
    def waiting(self) -> bool:
        return self._pending is not None and not self._pending.done()

    async def __call__(self, authorization_url: str) -> Optional[str]:
        self.authorization_url = authorization_url
        self._pending = asyncio.get_running_loop().create_future()
        try:
            return await self._pending
        finally:
            self._pending = None
            self.authorization_url = None

    def submit(self, code: str) -> bool:
        pending = self._pending
        if pending is None or pending.done():
            return False
        pending.set_result(code)
        return True

    def cancel(self) -> bool:
        pending = self._pending
        if pending is None or pending.done():
            return False
        pending.set_result(None)
        return True


def build_authorization_flow(
    oauth_client: ProviderOAuthClient,
    settings: OAuthSettings,
    *,
    code_prompt: CodePrompt | None = None,
    url_opener: UrlOpener | None = None,
) -> AuthorizationFlow:
    """Select the flow strategy configured in ``settings.strategy``."""
    if settings.strategy == "out_of_band":
        if code_prompt is None:
            raise ValueError("The out-of-band strategy requires a code prompt.")
        return OutOfBandAuthorizationFlow(
            oauth_client, settings, code_prompt, url_opener=url_opener
        )
    return LoopbackAuthorizationFlow(oauth_client, settings, url_opener=url_opener)


__all__ = [
    "AuthorizationFlow",
    "CodePrompt",
    "LoopbackAuthorizationFlow",
    "OutOfBandAuthorizationFlow",
    "PendingCodePrompt",
    "build_authorization_flow",
]
