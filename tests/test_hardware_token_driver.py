try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import pytest

from securemail.clients import gnupg, hardware_token
from securemail.clients.gnupg import GnuPGKeyring, KeyringError
from securemail.clients.hardware_token import (
    YkmanCardDriver,
    parse_card_url,
    parse_device_info,
    parse_openpgp_info,
)
from securemail.core.exceptions import (
    DriverUnavailableError,
    TokenNotPresentError,
    TransientDriverError,
)
from securemail.utils.process import CommandResult

YKMAN_INFO = """Device type: YubiKey 5 NFC
Serial number: 12345678
Firmware version: 5.4.3
Form factor: Keychain (USB-A)
Enabled USB interfaces: OTP, FIDO, CCID
"""

OPENPGP_INFO = """OpenPGP version:            3.4
Application version:        5.4.3
PIN tries remaining:        3
Reset code tries remaining: 0
Admin PIN tries remaining:  3
Signature key:
  Fingerprint: 0123 4567 89AB CDEF 0123  4567 89AB CDEF 0123 4567
  Touch policy: Off
Decryption key:
  Fingerprint: 00000000000000000000000000000000000000000000
  Touch policy: Off
Authentication key:
  Touch policy: Off
"""

CARD_STATUS = """Reader:Yubico YubiKey OTP FIDO CCID 00 00:AID:D2760001240103040006123456780000:openpgp-card
version:0304:
vendor:0006:Yubico:
serial:12345678:
name:Jane:Doe:
url:https%3a//keys.example.com/jane.asc:
"""


def test_parse_device_info() -> None:
    info = parse_device_info(YKMAN_INFO)

    assert info["serial"] == "12345678"
    assert info["firmware_version"] == "5.4.3"
    assert info["form_factor"] == "Keychain (USB-A)"


def test_parse_openpgp_info_normalizes_fingerprints() -> None:
    fingerprints, pin_tries = parse_openpgp_info(OPENPGP_INFO)

    assert fingerprints.signature == "0123456789ABCDEF0123456789ABCDEF01234567"
    assert fingerprints.decryption is None
    assert fingerprints.authentication is None
    assert fingerprints.presence() == (True, False, False)
    assert pin_tries == 3


def test_parse_card_url() -> None:
    assert parse_card_url(CARD_STATUS) == "https://keys.example.com/jane.asc"
    assert parse_card_url("url::\n") is None
    assert parse_card_url("serial:1:\n") is None


class ScriptedCommands:
    def __init__(self, outputs: dict[tuple[str, ...], CommandResult | Exception]) -> None:
        self.outputs = outputs
        self.calls: list[tuple[str, ...]] = []
        self.inputs: dict[tuple[str, ...], bytes | None] = {}

    async def __call__(self, argv, *, timeout, input_data=None) -> CommandResult:
        key = tuple(argv)
        self.calls.append(key)
        self.inputs[key] = input_data
        result = self.outputs.get(key, CommandResult(1, "", "unknown command"))
        if isinstance(result, Exception):
            raise result
        return result


@pytest.mark.asyncio
async def test_read_identity_combines_info_and_openpgp(monkeypatch) -> None:
    commands = ScriptedCommands(
        {
            ("ykman", "info"): CommandResult(0, YKMAN_INFO, ""),
            ("ykman", "openpgp", "info"): CommandResult(0, OPENPGP_INFO, ""),
        }
    )
    monkeypatch.setattr(hardware_token, "run_command", commands)

    identity = await YkmanCardDriver().read_identity()

    assert identity.serial == "12345678"
    assert identity.pin_tries_remaining == 3
    assert identity.has_keys


@pytest.mark.asyncio
async def test_read_identity_without_token(monkeypatch) -> None:
    commands = ScriptedCommands(
        {
            ("ykman", "info"): CommandResult(1, "", "Error: No YubiKey detected!"),
            ("ykman", "--version"): CommandResult(0, "YubiKey Manager (ykman) version: 5.2.1", ""),
            ("ykman", "list"): CommandResult(0, "", ""),
        }
    )
    monkeypatch.setattr(hardware_token, "run_command", commands)

    with pytest.raises(TokenNotPresentError):
        await YkmanCardDriver().read_identity()


@pytest.mark.asyncio
async def test_missing_ykman_is_driver_unavailable(monkeypatch) -> None:
    commands = ScriptedCommands({("ykman", "--version"): FileNotFoundError("ykman")})
    monkeypatch.setattr(hardware_token, "run_command", commands)

    with pytest.raises(DriverUnavailableError):
        await YkmanCardDriver().detect()


@pytest.mark.asyncio
async def test_card_url_read_failure_is_transient(monkeypatch) -> None:
    commands = ScriptedCommands(
        {
            ("gpg", "--batch", "--with-colons", "--card-status"): CommandResult(
                2, "", "gpg: selecting card failed"
            )
        }
    )
    monkeypatch.setattr(hardware_token, "run_command", commands)

    with pytest.raises(TransientDriverError):
        await YkmanCardDriver().read_public_key_url()


FPR = "0123456789ABCDEF0123456789ABCDEF01234567"
KEY_BLOCK = (
    "-----BEGIN PGP PUBLIC KEY BLOCK-----\n\nmQINBGV...\n"
    "-----END PGP PUBLIC KEY BLOCK-----\n"
)
CARD_STATUS_ARGV = ("gpg", "--batch", "--card-status")
CARD_FETCH_ARGV = ("gpg", "--batch", "--command-fd", "0", "--card-edit")
EXPORT_ARGV = ("gpg", "--batch", "--armor", "--export", FPR)


@pytest.mark.asyncio
async def test_export_public_key_fetches_from_card_before_export(monkeypatch) -> None:
    commands = ScriptedCommands(
        {
            CARD_STATUS_ARGV: CommandResult(0, "Reader ...........: Yubico YubiKey\n", ""),
            CARD_FETCH_ARGV: CommandResult(
                0, "", "gpg: key 89ABCDEF01234567: public key imported\n"
            ),
            EXPORT_ARGV: CommandResult(0, KEY_BLOCK, ""),
        }
    )
    monkeypatch.setattr(hardware_token, "run_command", commands)

    key_data = await YkmanCardDriver().export_public_key(FPR.lower())

    assert key_data == KEY_BLOCK.encode("utf-8")
    assert commands.calls == [CARD_STATUS_ARGV, CARD_FETCH_ARGV, EXPORT_ARGV]
    assert commands.inputs[CARD_FETCH_ARGV] == b"fetch\nquit\n"


@pytest.mark.asyncio
async def test_export_public_key_without_card(monkeypatch) -> None:
    commands = ScriptedCommands(
        {CARD_STATUS_ARGV: CommandResult(2, "", "gpg: selecting card failed: No such device")}
    )
    monkeypatch.setattr(hardware_token, "run_command", commands)

    with pytest.raises(TokenNotPresentError):
        await YkmanCardDriver().export_public_key(FPR)
    assert CARD_FETCH_ARGV not in commands.calls


@pytest.mark.asyncio
async def test_export_public_key_failed_fetch_skips_export(monkeypatch) -> None:
    commands = ScriptedCommands(
        {
            CARD_STATUS_ARGV: CommandResult(0, "Reader ...........: Yubico YubiKey\n", ""),
            CARD_FETCH_ARGV: CommandResult(2, "", "gpg: error retrieving URL\n"),
        }
    )
    monkeypatch.setattr(hardware_token, "run_command", commands)

    with pytest.raises(DriverUnavailableError, match="error retrieving URL"):
        await YkmanCardDriver().export_public_key(FPR)
    assert EXPORT_ARGV not in commands.calls


@pytest.mark.asyncio
async def test_export_public_key_empty_export_after_fetch(monkeypatch) -> None:
    commands = ScriptedCommands(
        {
            CARD_STATUS_ARGV: CommandResult(0, "Reader ...........: Yubico YubiKey\n", ""),
            CARD_FETCH_ARGV: CommandResult(0, "", ""),
            EXPORT_ARGV: CommandResult(0, "", "gpg: WARNING: nothing exported\n"),
        }
    )
    monkeypatch.setattr(hardware_token, "run_command", commands)

    with pytest.raises(DriverUnavailableError):
        await YkmanCardDriver().export_public_key(FPR)


@pytest.mark.asyncio
async def test_keyring_has_key_matches_fingerprint_lines(monkeypatch) -> None:
    fpr = "0123456789ABCDEF0123456789ABCDEF01234567"
    listing = f"pub:u:255:22:89ABCDEF01234567:1700000000:::u:::scESC:\nfpr:::::::::{fpr}:\n"
    commands = ScriptedCommands(
        {("gpg", "--batch", "--with-colons", "--list-keys", fpr): CommandResult(0, listing, "")}
    )
    monkeypatch.setattr(gnupg, "run_command", commands)

    keyring = GnuPGKeyring()

    assert await keyring.has_key(fpr.lower()) is True
    assert await keyring.has_key("F" * 40) is False


@pytest.mark.asyncio
async def test_keyring_import_rejection(monkeypatch) -> None:
    commands = ScriptedCommands(
        {("gpg", "--batch", "--import"): CommandResult(2, "", "gpg: no valid OpenPGP data found.")}
    )
    monkeypatch.setattr(gnupg, "run_command", commands)

    with pytest.raises(KeyringError):
        await GnuPGKeyring().import_key(b"garbage")
