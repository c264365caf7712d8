"""Local GnuPG public keyring access."""

from __future__ import annotations

import logging

from securemail.models.hardware import normalize_fingerprint
from securemail.utils.process import run_command

logger = logging.getLogger(__name__)


class KeyringError(Exception):
    """Raised when the keyring rejects an import or cannot be queried."""


class GnuPGKeyring:
    """Keyring store backed by the ``gpg`` command line tool."""

    def __init__(self, *, gpg_path: str = "gpg", timeout_seconds: float = 10.0) -> None:
        self._gpg = gpg_path
        self._timeout = timeout_seconds

    async def has_key(self, fingerprint: str) -> bool:
        """Return whether a public key with ``fingerprint`` is in the keyring."""
        normalized = normalize_fingerprint(fingerprint)
        try:
            result = await run_command(
                [self._gpg, "--batch", "--with-colons", "--list-keys", normalized],
                timeout=self._timeout,
            )
        except (FileNotFoundError, TimeoutError) as exc:
            raise KeyringError(f"Unable to query keyring: {exc}") from exc

        if not result.ok:
            return False
        return any(
            line.startswith("fpr:") and normalized in line.upper()
            for line in result.stdout.splitlines()
        )

    async def import_key(self, key_data: bytes) -> None:
        """Import public key material; raises ``KeyringError`` on rejection."""
        try:
            result = await run_command(
                [self._gpg, "--batch", "--import"],
                timeout=self._timeout,
                input_data=key_data,
            )
        except (FileNotFoundError, TimeoutError) as exc:
            raise KeyringError(f"Unable to run gpg import: {exc}") from exc

        if not result.ok:
            logger.warning("gpg rejected key import: %s", result.stderr.strip())
            raise KeyringError(result.stderr.strip() or "gpg import failed")


__all__ = ["GnuPGKeyring", "KeyringError"]
