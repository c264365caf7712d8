try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx
import pytest

from securemail.core.exceptions import OAuthTokenExchangeError, ReauthRequiredError
from securemail.models.session import SessionRecord
from securemail.services.credential_store import CredentialStore
from securemail.services.token_cipher import TokenCipherService
from securemail.services.token_refresh import (
    DEFAULT_TOKEN_LIFETIME,
    RefreshDecision,
    TokenRefreshPolicy,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class DummyOAuthClient:
    def __init__(self, grant=("a2", "r2", 3600), error: Exception | None = None) -> None:
        self.grant = grant
        self.error = error
        self.calls: list[str] = []

    async def refresh_token(self, refresh_token: str):
        self.calls.append(refresh_token)
        if self.error is not None:
            raise self.error
        return self.grant


def _policy(tmp_path: Path, client: DummyOAuthClient) -> tuple[TokenRefreshPolicy, CredentialStore]:
    store = CredentialStore(tmp_path / "token.json", TokenCipherService(secret="secret"))
    return TokenRefreshPolicy(store, client, clock=lambda: NOW), store


@pytest.mark.asyncio
async def test_unexpired_record_is_returned_without_network_call(tmp_path: Path) -> None:
    client = DummyOAuthClient()
    policy, store = _policy(tmp_path, client)
    record = SessionRecord(
        access_token="a", refresh_token="r", expires_at=NOW + timedelta(minutes=5)
    )

    result = await policy.ensure_fresh(record)

    assert result is record
    assert client.calls == []
    assert store.load() is None


@pytest.mark.asyncio
async def test_record_without_expiry_is_used_as_is(tmp_path: Path) -> None:
    client = DummyOAuthClient()
    policy, _ = _policy(tmp_path, client)
    record = SessionRecord(access_token="a")

    assert await policy.ensure_fresh(record) is record
    assert client.calls == []


@pytest.mark.asyncio
async def test_expired_record_is_refreshed_once_and_persisted(tmp_path: Path) -> None:
    client = DummyOAuthClient()
    policy, store = _policy(tmp_path, client)
    record = SessionRecord(
        access_token="a", refresh_token="r", expires_at=NOW - timedelta(seconds=1)
    )

    result = await policy.ensure_fresh(record)

    expected = SessionRecord(
        access_token="a2", refresh_token="r2", expires_at=NOW + timedelta(seconds=3600)
    )
    assert client.calls == ["r"]
    assert result == expected
    assert store.load() == expected


@pytest.mark.asyncio
async def test_refresh_keeps_previous_refresh_token_and_default_lifetime(
    tmp_path: Path,
) -> None:
    client = DummyOAuthClient(grant=("a2", None, None))
    policy, store = _policy(tmp_path, client)
    record = SessionRecord(
        access_token="a", refresh_token="r", expires_at=NOW - timedelta(minutes=1)
    )

    result = await policy.ensure_fresh(record)

    assert result.refresh_token == "r"
    assert result.expires_at == NOW + DEFAULT_TOKEN_LIFETIME
    assert store.load() == result


@pytest.mark.asyncio
async def test_expired_record_without_refresh_token_requires_reauth(tmp_path: Path) -> None:
    client = DummyOAuthClient()
    policy, _ = _policy(tmp_path, client)
    record = SessionRecord(access_token="a", expires_at=NOW - timedelta(seconds=1))

    with pytest.raises(ReauthRequiredError):
        await policy.ensure_fresh(record)
    assert client.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        OAuthTokenExchangeError('{"error": "invalid_grant"}'),
        httpx.ConnectError("offline"),
    ],
)
async def test_refresh_failure_is_not_retried(tmp_path: Path, error: Exception) -> None:
    client = DummyOAuthClient(error=error)
    policy, store = _policy(tmp_path, client)
    record = SessionRecord(
        access_token="a", refresh_token="r", expires_at=NOW - timedelta(seconds=1)
    )

    with pytest.raises(ReauthRequiredError):
        await policy.ensure_fresh(record)
    assert client.calls == ["r"]
    assert store.load() is None


@pytest.mark.asyncio
async def test_missing_record_requires_reauth(tmp_path: Path) -> None:
    policy, _ = _policy(tmp_path, DummyOAuthClient())

    with pytest.raises(ReauthRequiredError):
        await policy.ensure_fresh(None)


def test_decision_table(tmp_path: Path) -> None:
    policy, _ = _policy(tmp_path, DummyOAuthClient())
    past = NOW - timedelta(seconds=1)
    future = NOW + timedelta(seconds=1)

    assert policy.decide(None) is RefreshDecision.REAUTHENTICATE
    assert policy.decide(SessionRecord(access_token="")) is RefreshDecision.REAUTHENTICATE
    assert policy.decide(SessionRecord(access_token="a")) is RefreshDecision.USE
    assert policy.decide(SessionRecord(access_token="a", expires_at=future)) is RefreshDecision.USE
    assert (
        policy.decide(SessionRecord(access_token="a", refresh_token="r", expires_at=past))
        is RefreshDecision.REFRESH
    )
    assert (
        policy.decide(SessionRecord(access_token="a", expires_at=past))
        is RefreshDecision.REAUTHENTICATE
    )
