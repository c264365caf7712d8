"""
Persistence of the single provider session record.

The store is the only writer of the credential file. A missing, unreadable or
corrupt file is reported as "no record" so the user is sent back through
authorization instead of the client failing.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError

from securemail.models.session import SessionRecord
from securemail.services.token_cipher import TokenCipherService, TokenDecryptionError

logger = logging.getLogger(__name__)

RECORD_VERSION = 1


class CredentialStore:
    """Load, save and clear the encrypted session record on disk."""

    def __init__(self, path: Path, token_cipher: TokenCipherService) -> None:
        self._path = Path(path).expanduser()
        self._cipher = token_cipher

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Optional[SessionRecord]:
        """Return the stored record, or ``None`` if absent or unusable."""
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable credential file %s: %s", self._path, exc)
            return None

        if not isinstance(payload, dict):
            logger.warning("Ignoring credential file %s with unexpected layout", self._path)
            return None

        try:
            if "access_token_encrypted" in payload:
                return self._decode(payload)
            if "access_token" in payload:
                return self._migrate_legacy(payload)
        except (TokenDecryptionError, ValidationError, TypeError, ValueError) as exc:
            logger.warning("Ignoring corrupt credential file %s: %s", self._path, exc)
            return None

        logger.warning("Credential file %s holds no session", self._path)
        return None

    def save(self, record: SessionRecord) -> None:
        """Persist ``record``, replacing any previous one. Raises ``OSError``."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = self._encode(record)

        temp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle)
        os.replace(temp_path, self._path)
        logger.info("Session record saved to %s", self._path)

    def clear(self) -> None:
        """Delete the stored record if there is one. Raises ``OSError``."""
        try:
            self._path.unlink()
        except FileNotFoundError:
            return
        logger.info("Session record removed from %s", self._path)

    def _encode(self, record: SessionRecord) -> Dict[str, Any]:
        return {
            "version": RECORD_VERSION,
            "access_token_encrypted": self._cipher.encrypt(record.access_token),
            "refresh_token_encrypted": (
                self._cipher.encrypt(record.refresh_token)
                if record.refresh_token
                else None
            ),
            "expires_at": record.expires_at.isoformat() if record.expires_at else None,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }

    def _decode(self, payload: Dict[str, Any]) -> SessionRecord:
        encrypted_refresh = payload.get("refresh_token_encrypted")
        expires_at = payload.get("expires_at")
        return SessionRecord(
            access_token=self._cipher.decrypt(payload["access_token_encrypted"]),
            refresh_token=self._cipher.decrypt(encrypted_refresh) if encrypted_refresh else None,
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
        )

    def _migrate_legacy(self, payload: Dict[str, Any]) -> SessionRecord:
        """Convert a plaintext token file written by earlier releases."""
        expiry_ms = payload.get("expiry_date")
        record = SessionRecord(
            access_token=payload["access_token"] or "",
            refresh_token=payload.get("refresh_token") or None,
            expires_at=(
                datetime.fromtimestamp(int(expiry_ms) / 1000, tz=timezone.utc)
                if expiry_ms
                else None
            ),
        )
        try:
            self.save(record)
        except OSError as exc:
            logger.warning("Could not re-encrypt legacy credential file: %s", exc)
        else:
            logger.info("Migrated plaintext credential file to encrypted format")
        return record


__all__ = ["CredentialStore", "RECORD_VERSION"]
