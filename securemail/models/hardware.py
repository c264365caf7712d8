"""
Models describing a hardware token's identity and key reconciliation results.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def normalize_fingerprint(value: str) -> str:
    """Strip whitespace and upper-case a key fingerprint."""
    return "".join(value.split()).upper()


class KeyRole(str, Enum):
    SIGNATURE = "signature"
    DECRYPTION = "decryption"
    AUTHENTICATION = "authentication"


class KeyFingerprints(BaseModel):
    """Per-role fingerprints exposed by the token's OpenPGP application."""

    model_config = ConfigDict(frozen=True)

    signature: Optional[str] = None
    decryption: Optional[str] = None
    authentication: Optional[str] = None

    @field_validator("signature", "decryption", "authentication")
    @classmethod
    def _normalize(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        normalized = normalize_fingerprint(value)
        # Empty slots are reported as all zeros by the card.
        if not normalized or set(normalized) == {"0"}:
            return None
        return normalized

    def for_role(self, role: KeyRole) -> Optional[str]:
        return getattr(self, role.value)

    def presence(self) -> tuple[bool, bool, bool]:
        return (
            self.signature is not None,
            self.decryption is not None,
            self.authentication is not None,
        )


class HardwareTokenIdentity(BaseModel):
    """Identity read from a connected token during one detection poll."""

    model_config = ConfigDict(frozen=True)

    serial: str = ""
    firmware_version: str = ""
    form_factor: Optional[str] = None
    pin_tries_remaining: Optional[int] = None
    key_fingerprints: KeyFingerprints = Field(default_factory=KeyFingerprints)

    @property
    def has_keys(self) -> bool:
        return any(self.key_fingerprints.presence())


class DetectionResult(BaseModel):
    """Outcome of a detection poll. Absence of a token is not an error."""

    model_config = ConfigDict(frozen=True)

    detected: bool
    identity: Optional[HardwareTokenIdentity] = None

    @classmethod
    def not_present(cls) -> "DetectionResult":
        return cls(detected=False)

    def change_key(self) -> tuple[bool, str, tuple[bool, bool, bool]]:
        """Fields whose difference between two polls is worth a notification."""
        if not self.detected or self.identity is None:
            return (False, "", (False, False, False))
        return (
            True,
            self.identity.serial,
            self.identity.key_fingerprints.presence(),
        )


class KeyState(str, Enum):
    UNKNOWN = "unknown"
    CHECKING = "checking"
    TRUSTED = "trusted"
    MISSING = "missing"
    VERIFYING = "verifying"


class ReconciliationMethod(str, Enum):
    DIRECT_SYNC = "direct_sync"
    KEYSERVER = "keyserver"
    FILE = "file"
    CARD_URL = "card_url"


DEFAULT_METHOD_ORDER: tuple[ReconciliationMethod, ...] = (
    ReconciliationMethod.DIRECT_SYNC,
    ReconciliationMethod.KEYSERVER,
    ReconciliationMethod.FILE,
    ReconciliationMethod.CARD_URL,
)


class ReconciliationResult(str, Enum):
    FOUND = "found"
    IMPORTED = "imported"
    FAILED = "failed"
    CANCELED = "canceled"
    NOT_APPLICABLE = "not_applicable"


class ReconciliationOutcome(BaseModel):
    """Result of a single trust check or import attempt."""

    model_config = ConfigDict(frozen=True)

    fingerprint: str
    method: Optional[ReconciliationMethod] = Field(
        None, description="None for the initial local keyring check."
    )
    result: ReconciliationResult
    reason: Optional[str] = None
    verification_failed: bool = False

    @property
    def succeeded(self) -> bool:
        return self.result in (ReconciliationResult.FOUND, ReconciliationResult.IMPORTED)


class ReconciliationReport(BaseModel):
    """Final state of a fingerprint and every outcome recorded on the way."""

    fingerprint: str
    state: KeyState
    outcomes: list[ReconciliationOutcome] = Field(default_factory=list)

    @property
    def trusted(self) -> bool:
        return self.state == KeyState.TRUSTED


class KeyDiagnosis(BaseModel):
    """Health summary of the connected token and the local keyring."""

    token_detected: bool
    signature_key_present: bool = False
    decryption_key_present: bool = False
    message: str = ""


__all__ = [
    "DEFAULT_METHOD_ORDER",
    "DetectionResult",
    "HardwareTokenIdentity",
    "KeyDiagnosis",
    "KeyFingerprints",
    "KeyRole",
    "KeyState",
    "ReconciliationMethod",
    "ReconciliationOutcome",
    "ReconciliationReport",
    "ReconciliationResult",
    "normalize_fingerprint",
]
