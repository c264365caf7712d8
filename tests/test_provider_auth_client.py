try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from securemail.clients.provider_auth import ProviderOAuthClient
from securemail.core.config import OAuthSettings, ProviderSettings
from securemail.core.exceptions import OAuthTokenExchangeError


def _client(handler=None) -> ProviderOAuthClient:
    provider = ProviderSettings(GOOGLE_CLIENT_ID="client", GOOGLE_CLIENT_SECRET="secret")
    transport = httpx.MockTransport(handler) if handler else None
    return ProviderOAuthClient(provider, OAuthSettings(), transport=transport)


def test_authorization_url_requests_offline_read_and_send() -> None:
    url = _client().build_authorization_url("state-1")

    query = parse_qs(urlparse(url).query)
    assert query["client_id"] == ["client"]
    assert query["redirect_uri"] == ["http://localhost:3000"]
    assert query["access_type"] == ["offline"]
    assert query["prompt"] == ["consent"]
    assert query["state"] == ["state-1"]
    scopes = query["scope"][0].split()
    assert scopes == [
        "https://www.googleapis.com/auth/gmail.readonly",
        "https://www.googleapis.com/auth/gmail.send",
    ]


@pytest.mark.asyncio
async def test_exchange_code_posts_form_and_parses_grant() -> None:
    forms: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        forms.append(parse_qs(request.content.decode()))
        return httpx.Response(
            200,
            json={"access_token": "a", "refresh_token": "r", "expires_in": 3599},
        )

    grant = await _client(handler).exchange_authorization_code(
        "code-1", redirect_uri="urn:ietf:wg:oauth:2.0:oob"
    )

    assert grant == ("a", "r", 3599)
    assert forms[0]["grant_type"] == ["authorization_code"]
    assert forms[0]["redirect_uri"] == ["urn:ietf:wg:oauth:2.0:oob"]


@pytest.mark.asyncio
async def test_refresh_without_new_refresh_token() -> None:
    client = _client(
        lambda request: httpx.Response(200, json={"access_token": "a2", "expires_in": 3600})
    )

    assert await client.refresh_token("r") == ("a2", None, 3600)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(400, json={"error": "invalid_grant"}),
        httpx.Response(200, text="not json"),
        httpx.Response(200, json={"token_type": "Bearer"}),
    ],
)
async def test_unusable_token_responses_raise(response: httpx.Response) -> None:
    client = _client(lambda request: response)

    with pytest.raises(OAuthTokenExchangeError):
        await client.refresh_token("r")


@pytest.mark.asyncio
async def test_revoke_failure_raises() -> None:
    client = _client(lambda request: httpx.Response(400, json={"error": "invalid_token"}))

    with pytest.raises(OAuthTokenExchangeError):
        await client.revoke_token("expired")
