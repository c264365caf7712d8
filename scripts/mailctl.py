"""Command line access to the mail client core.

Runs the same services as the bridge API, without the HTTP layer.

Example usages::

    # Sign in with the provider (opens the system browser).
    python -m scripts.mailctl login

    # Show whether a usable session is stored.
    python -m scripts.mailctl status

    # Inspect the connected hardware token.
    python -m scripts.mailctl detect

    # Make sure the keyring has the token's signing key, trying a file last.
    python -m scripts.mailctl reconcile 0123ABCD... --key-file ~/pubkey.asc

    # Serve the bridge API on the configured address.
    python -m scripts.mailctl serve
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Callable, Optional

import uvicorn
from pydantic import ValidationError

from securemail.clients import KeyserverClient
from securemail.clients.gnupg import KeyringError
from securemail.core.config import AppSettings, get_settings
from securemail.core.exceptions import AuthError, DetectError
from securemail.core.logging import configure_logging
from securemail.dependencies import (
    get_card_driver,
    get_credential_store,
    get_keyring,
    get_provider_oauth_client,
    get_token_detector,
)
from securemail.models.hardware import (
    DEFAULT_METHOD_ORDER,
    KeyRole,
    ReconciliationMethod,
    ReconciliationReport,
)
from securemail.services import (
    KeyReconciliationEngine,
    SessionManager,
    TokenRefreshPolicy,
    build_authorization_flow,
)

EXIT_OK = 0
EXIT_AUTH_ERROR = 2
EXIT_TOKEN_ERROR = 3
EXIT_KEY_MISSING = 4
EXIT_CONFIG_ERROR = 5


async def console_code_prompt(authorization_url: str) -> Optional[str]:
    """Ask for the code shown by the consent screen; blank input cancels."""
    print(f"Open this URL to authorize the application:\n\n  {authorization_url}\n")
    try:
        return await asyncio.to_thread(input, "Authorization code (blank to cancel): ")
    except EOFError:
        return None


def _file_picker_for(key_file: Optional[Path]):
    async def pick(fingerprint: str) -> Optional[Path]:
        if key_file is not None:
            return key_file
        try:
            answer = await asyncio.to_thread(
                input, f"Public key file for {fingerprint} (blank to skip): "
            )
        except EOFError:
            return None
        return Path(answer).expanduser() if answer.strip() else None

    return pick


def build_session_manager(settings: AppSettings) -> SessionManager:
    store = get_credential_store()
    oauth_client = get_provider_oauth_client()
    return SessionManager(
        store=store,
        refresh_policy=TokenRefreshPolicy(store, oauth_client),
        flow=build_authorization_flow(
            oauth_client, settings.oauth, code_prompt=console_code_prompt
        ),
        oauth_client=oauth_client,
    )


def build_engine(settings: AppSettings, key_file: Optional[Path]) -> KeyReconciliationEngine:
    return KeyReconciliationEngine(
        keyring=get_keyring(),
        driver=get_card_driver(),
        keyserver=KeyserverClient(
            settings.keyserver.hosts, timeout_seconds=settings.keyserver.timeout_seconds
        ),
        file_picker=_file_picker_for(key_file),
        card_url_retries=settings.hardware_token.card_url_retries,
        http_timeout=settings.keyserver.timeout_seconds,
    )


def _print_status(manager: SessionManager) -> int:
    status = manager.check_authentication()
    if not status.is_authenticated:
        print("Not authenticated.")
        return EXIT_AUTH_ERROR
    expiry = status.expires_at.isoformat() if status.expires_at else "no expiry"
    hint = " (will refresh on next use)" if status.needs_refresh else ""
    print(f"Authenticated, token expires {expiry}{hint}.")
    return EXIT_OK


async def _login(settings: AppSettings, args: argparse.Namespace) -> int:
    manager = build_session_manager(settings)
    try:
        await manager.authenticate()
    except AuthError as exc:
        print(f"Login failed: {exc}", file=sys.stderr)
        return EXIT_AUTH_ERROR
    return _print_status(manager)


async def _status(settings: AppSettings, args: argparse.Namespace) -> int:
    return _print_status(build_session_manager(settings))


async def _logout(settings: AppSettings, args: argparse.Namespace) -> int:
    await build_session_manager(settings).logout()
    print("Logged out.")
    return EXIT_OK


async def _detect(settings: AppSettings, args: argparse.Namespace) -> int:
    result = await get_token_detector().detect()
    if not result.detected or result.identity is None:
        print("No hardware token detected.")
        return EXIT_TOKEN_ERROR

    identity = result.identity
    print(f"Serial:    {identity.serial or 'unknown'}")
    print(f"Firmware:  {identity.firmware_version or 'unknown'}")
    if identity.pin_tries_remaining is not None:
        print(f"PIN tries: {identity.pin_tries_remaining}")
    fingerprints = identity.key_fingerprints
    for role in KeyRole:
        print(f"{role.value.capitalize():<15}{fingerprints.for_role(role) or '-'}")
    return EXIT_OK


def _print_report(report: ReconciliationReport) -> None:
    for outcome in report.outcomes:
        label = outcome.method.value if outcome.method else "keyring"
        reason = f": {outcome.reason}" if outcome.reason else ""
        print(f"  {label:<12}{outcome.result.value}{reason}")
    print(f"Key {report.fingerprint} is {report.state.value}.")


async def _reconcile(settings: AppSettings, args: argparse.Namespace) -> int:
    engine = build_engine(settings, args.key_file)
    methods = (
        tuple(ReconciliationMethod(name) for name in args.method)
        if args.method
        else DEFAULT_METHOD_ORDER
    )
    report = await engine.reconcile(args.fingerprint, methods)
    _print_report(report)
    return EXIT_OK if report.trusted else EXIT_KEY_MISSING


def _serve(settings: AppSettings) -> int:
    uvicorn.run(
        "securemail.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
    return EXIT_OK


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Manage the provider session and hardware token keys."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("login", help="Authorize the application with the provider.")
    subparsers.add_parser("status", help="Show whether a usable session is stored.")
    subparsers.add_parser("logout", help="Revoke and forget the stored session.")
    subparsers.add_parser("detect", help="Detect the connected hardware token.")

    reconcile_parser = subparsers.add_parser(
        "reconcile",
        help="Import the public key for a fingerprint into the local keyring.",
    )
    reconcile_parser.add_argument("fingerprint", help="Key fingerprint to reconcile.")
    reconcile_parser.add_argument(
        "--method",
        action="append",
        choices=[method.value for method in ReconciliationMethod],
        help="Import method to try; repeat to set the order (default: all).",
    )
    reconcile_parser.add_argument(
        "--key-file",
        type=Path,
        default=None,
        help="Public key file used by the file import method.",
    )

    subparsers.add_parser("serve", help="Run the bridge API.")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as exc:
        print(
            "Settings validation failed. Missing or invalid values detected:\n"
            f"{exc.json(indent=2)}",
            file=sys.stderr,
        )
        return EXIT_CONFIG_ERROR
    configure_logging(settings.log_level)

    command: str = args.command
    if command == "serve":
        return _serve(settings)

    handlers: dict[str, Callable] = {
        "login": _login,
        "status": _status,
        "logout": _logout,
        "detect": _detect,
        "reconcile": _reconcile,
    }
    try:
        return asyncio.run(handlers[command](settings, args))
    except (DetectError, KeyringError) as exc:
        print(f"Hardware token error: {exc}", file=sys.stderr)
        return EXIT_TOKEN_ERROR


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
