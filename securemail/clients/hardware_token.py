"""
Hardware token driver built on the ``ykman`` and ``gpg`` command line tools.

Only orchestration lives here: the tools do the actual card communication and
this module parses their text output into ``HardwareTokenIdentity`` values.
"""

from __future__ import annotations

import logging
import re
from typing import Optional
from urllib.parse import unquote

from securemail.core.exceptions import (
    DriverUnavailableError,
    TokenNotPresentError,
    TransientDriverError,
)
from securemail.models.hardware import (
    HardwareTokenIdentity,
    KeyFingerprints,
    normalize_fingerprint,
)
from securemail.utils.process import CommandResult, run_command

logger = logging.getLogger(__name__)

_ROLE_HEADERS = {
    "signature": "Signature key",
    "decryption": "Decryption key",
    "authentication": "Authentication key",
}


def _match(pattern: str, text: str) -> Optional[str]:
    found = re.search(pattern, text)
    return found.group(1).strip() if found else None


def parse_device_info(text: str) -> dict[str, Optional[str]]:
    """Parse ``ykman info`` output."""
    return {
        "device_type": _match(r"Device type:\s*(.+)", text),
        "serial": _match(r"Serial number:\s*(.+)", text),
        "firmware_version": _match(r"Firmware version:\s*(.+)", text),
        "form_factor": _match(r"Form factor:\s*(.+)", text),
    }


def parse_openpgp_info(text: str) -> tuple[KeyFingerprints, Optional[int]]:
    """Parse ``ykman openpgp info`` into role fingerprints and PIN tries left."""
    fingerprints: dict[str, Optional[str]] = {}
    for role, header in _ROLE_HEADERS.items():
        section = re.search(
            rf"{header}:[ \t]*\n(?P<body>(?:[ \t]+.*\n?)*)", text
        )
        fingerprint = None
        if section:
            fingerprint = _match(r"Fingerprint:\s*(.+)", section.group("body"))
        fingerprints[role] = fingerprint

    pin_tries = _match(r"PIN tries remaining:\s*(\d+)", text)
    return KeyFingerprints(**fingerprints), int(pin_tries) if pin_tries else None


def parse_card_url(text: str) -> Optional[str]:
    """Extract the public key URL from ``gpg --card-status --with-colons``."""
    for line in text.splitlines():
        if line.startswith("url:"):
            fields = line.split(":")
            value = unquote(fields[1]) if len(fields) > 1 else ""
            return value or None
    return None


class YkmanCardDriver:
    """Talk to an OpenPGP-capable hardware token through ykman and gpg."""

    def __init__(
        self,
        *,
        ykman_path: str = "ykman",
        gpg_path: str = "gpg",
        timeout_seconds: float = 10.0,
    ) -> None:
        self._ykman = ykman_path
        self._gpg = gpg_path
        self._timeout = timeout_seconds

    async def _run(self, *argv: str, input_data: bytes | None = None) -> CommandResult:
        try:
            return await run_command(argv, timeout=self._timeout, input_data=input_data)
        except FileNotFoundError as exc:
            raise DriverUnavailableError(
                f"{argv[0]} is not installed. Install it to use hardware token features."
            ) from exc
        except TimeoutError as exc:
            raise TransientDriverError(str(exc)) from exc

    async def ensure_available(self) -> None:
        result = await self._run(self._ykman, "--version")
        if not result.ok:
            raise DriverUnavailableError(result.stderr.strip() or "ykman is unusable")

    async def detect(self) -> bool:
        """Return whether a token is connected."""
        await self.ensure_available()
        result = await self._run(self._ykman, "list")
        return result.ok and "YubiKey" in result.stdout

    async def read_identity(self) -> HardwareTokenIdentity:
        """Read serial, firmware and per-role fingerprints of the connected token."""
        info = await self._run(self._ykman, "info")
        if not info.ok:
            if not await self.detect():
                raise TokenNotPresentError("No hardware token connected.")
            # Device is present but refuses the info query.
            device: dict[str, Optional[str]] = {
                "serial": None,
                "firmware_version": "Unknown",
                "form_factor": "USB Device",
            }
        else:
            device = parse_device_info(info.stdout)

        fingerprints = KeyFingerprints()
        pin_tries: Optional[int] = None
        openpgp = await self._run(self._ykman, "openpgp", "info")
        if openpgp.ok:
            fingerprints, pin_tries = parse_openpgp_info(openpgp.stdout)
        else:
            logger.info("OpenPGP application not accessible: %s", openpgp.stderr.strip())

        return HardwareTokenIdentity(
            serial=device.get("serial") or "",
            firmware_version=device.get("firmware_version") or "",
            form_factor=device.get("form_factor"),
            pin_tries_remaining=pin_tries,
            key_fingerprints=fingerprints,
        )

    async def export_public_key(self, fingerprint: str) -> bytes:
        """
        Ask the card to hand over the public key for ``fingerprint``.

        gpg's card editor runs ``fetch`` so the key stored at the card's URL
        lands in the local keyring, which is then exported in armored form.
        """
        status = await self._run(self._gpg, "--batch", "--card-status")
        if not status.ok:
            raise TokenNotPresentError(status.stderr.strip() or "card not available")

        fetched = await self._run(
            self._gpg,
            "--batch",
            "--command-fd",
            "0",
            "--card-edit",
            input_data=b"fetch\nquit\n",
        )
        if not fetched.ok:
            raise DriverUnavailableError(
                fetched.stderr.strip() or "gpg could not fetch the card's public key"
            )

        exported = await self._run(
            self._gpg, "--batch", "--armor", "--export", normalize_fingerprint(fingerprint)
        )
        if not exported.ok or "BEGIN PGP PUBLIC KEY BLOCK" not in exported.stdout:
            raise DriverUnavailableError("The token did not provide public key material.")
        return exported.stdout.encode("utf-8")

    async def read_public_key_url(self) -> Optional[str]:
        """
        Return the public key URL stored on the card, or ``None`` if unset.

        Failures to read the card status are transient and may be retried.
        """
        status = await self._run(self._gpg, "--batch", "--with-colons", "--card-status")
        if not status.ok:
            raise TransientDriverError(status.stderr.strip() or "card status unavailable")
        return parse_card_url(status.stdout)


__all__ = [
    "YkmanCardDriver",
    "parse_card_url",
    "parse_device_info",
    "parse_openpgp_info",
]
