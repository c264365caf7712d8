"""Tests for the command line tool."""

from __future__ import annotations

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from scripts import mailctl
from securemail.models.hardware import (
    KeyState,
    ReconciliationMethod,
    ReconciliationOutcome,
    ReconciliationReport,
    ReconciliationResult,
)
from securemail.models.session import SessionRecord
from securemail.services import CredentialStore, SessionManager, TokenCipherService, TokenRefreshPolicy

FPR = "0123456789ABCDEF0123456789ABCDEF01234567"


class DummyOAuthClient:
    def __init__(self) -> None:
        self.revoked: list[str] = []

    async def refresh_token(self, refresh_token: str):
        return ("fresh", None, 3600)

    async def revoke_token(self, token: str) -> None:
        self.revoked.append(token)


@pytest.fixture()
def cli_store(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> CredentialStore:
    store = CredentialStore(tmp_path / "token.json", TokenCipherService(secret="s"))
    client = DummyOAuthClient()

    def build(settings) -> SessionManager:
        return SessionManager(store, TokenRefreshPolicy(store, client), flow=None, oauth_client=client)

    monkeypatch.setattr(mailctl, "build_session_manager", build)
    return store


def test_status_without_session(cli_store: CredentialStore, capsys) -> None:
    exit_code = mailctl.main(["status"])

    assert exit_code == mailctl.EXIT_AUTH_ERROR
    assert "Not authenticated" in capsys.readouterr().out


def test_status_and_logout(cli_store: CredentialStore, capsys) -> None:
    cli_store.save(
        SessionRecord(
            access_token="a",
            refresh_token="r",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        )
    )

    assert mailctl.main(["status"]) == mailctl.EXIT_OK
    assert "Authenticated" in capsys.readouterr().out

    assert mailctl.main(["logout"]) == mailctl.EXIT_OK
    assert cli_store.load() is None


def test_reconcile_passes_selected_methods(monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    calls: list[tuple] = []

    class DummyEngine:
        async def reconcile(self, fingerprint, methods):
            calls.append((fingerprint, methods))
            return ReconciliationReport(
                fingerprint=fingerprint,
                state=KeyState.MISSING,
                outcomes=[
                    ReconciliationOutcome(
                        fingerprint=fingerprint,
                        method=ReconciliationMethod.CARD_URL,
                        result=ReconciliationResult.NOT_APPLICABLE,
                        reason="The token does not advertise a public key URL.",
                    )
                ],
            )

    monkeypatch.setattr(mailctl, "build_engine", lambda settings, key_file: DummyEngine())

    exit_code = mailctl.main(["reconcile", FPR, "--method", "card_url"])

    assert exit_code == mailctl.EXIT_KEY_MISSING
    assert calls == [(FPR, (ReconciliationMethod.CARD_URL,))]
    output = capsys.readouterr().out
    assert "not_applicable" in output
    assert "missing" in output


def test_reconcile_rejects_unknown_method() -> None:
    with pytest.raises(SystemExit):
        mailctl.main(["reconcile", FPR, "--method", "carrier-pigeon"])
