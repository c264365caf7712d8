"""
Mail provider OAuth utilities.

These helpers build the consent URL and talk to the provider's token and
revocation endpoints. They never touch persisted state.
"""

from __future__ import annotations

from typing import Optional, Tuple
from urllib.parse import urlencode

import httpx

from securemail.core.config import OAuthSettings, ProviderSettings
from securemail.core.exceptions import OAuthTokenExchangeError

TokenGrant = Tuple[str, Optional[str], Optional[int]]


class ProviderOAuthClient:
    """Build authorization URLs and exchange, refresh or revoke tokens."""

    def __init__(
        self,
        provider_settings: ProviderSettings,
        oauth_settings: OAuthSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._provider = provider_settings
        self._oauth = oauth_settings
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._provider.request_timeout_seconds,
            transport=self._transport,
        )

    def build_authorization_url(
        self, state: str, *, redirect_uri: str | None = None
    ) -> str:
        """Construct the consent URL requesting the read and send scopes."""
        params = {
            "client_id": self._provider.client_id,
            "redirect_uri": redirect_uri or self._oauth.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self._oauth.scopes),
            "access_type": "offline",
            # Forces a refresh token even when consent was granted before.
            "prompt": "consent",
            "state": state,
        }
        return f"{self._provider.auth_url}?{urlencode(params)}"

    async def exchange_authorization_code(
        self, code: str, *, redirect_uri: str | None = None
    ) -> TokenGrant:
        """
        Exchange an authorization code for tokens.

        Returns a tuple of (access_token, refresh_token, expires_in_seconds).
        """
        payload = {
            "code": code,
            "client_id": self._provider.client_id,
            "client_secret": self._provider.client_secret,
            "redirect_uri": redirect_uri or self._oauth.redirect_uri,
            "grant_type": "authorization_code",
        }

        async with self._client() as client:
            response = await client.post(self._provider.token_url, data=payload)

        return self._parse_grant(response, "Incomplete token payload returned by provider.")

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        """Refresh the access token using a stored refresh token."""
        payload = {
            "client_id": self._provider.client_id,
            "client_secret": self._provider.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }

        async with self._client() as client:
            response = await client.post(self._provider.token_url, data=payload)

        return self._parse_grant(response, "Incomplete refresh payload returned by provider.")

    async def revoke_token(self, token: str) -> None:
        """Revoke an access or refresh token at the provider."""
        async with self._client() as client:
            response = await client.post(
                self._provider.revoke_url, data={"token": token}
            )

        if response.status_code != httpx.codes.OK:
            raise OAuthTokenExchangeError(response.text)

    @staticmethod
    def _parse_grant(response: httpx.Response, incomplete_message: str) -> TokenGrant:
        if response.status_code != httpx.codes.OK:
            raise OAuthTokenExchangeError(response.text)

        try:
            token_payload = response.json()
        except ValueError as exc:
            raise OAuthTokenExchangeError("Token endpoint returned invalid JSON.") from exc

        access_token = token_payload.get("access_token")
        if not access_token:
            raise OAuthTokenExchangeError(incomplete_message)

        expires_in = token_payload.get("expires_in")
        return (
            access_token,
            token_payload.get("refresh_token"),
            int(expires_in) if expires_in is not None else None,
        )


__all__ = ["ProviderOAuthClient", "TokenGrant"]
