"""Domain model exports."""

from .hardware import (
    DEFAULT_METHOD_ORDER,
    DetectionResult,
    HardwareTokenIdentity,
    KeyDiagnosis,
    KeyFingerprints,
    KeyRole,
    KeyState,
    ReconciliationMethod,
    ReconciliationOutcome,
    ReconciliationReport,
    ReconciliationResult,
    normalize_fingerprint,
)
from .mail import Attachment, MailMessage, OutgoingMessage
from .session import (
    AuthenticationStatus,
    AuthorizationAttempt,
    AuthorizationState,
    SessionRecord,
)

__all__ = [
    "DEFAULT_METHOD_ORDER",
    "Attachment",
    "AuthenticationStatus",
    "AuthorizationAttempt",
    "AuthorizationState",
    "DetectionResult",
    "HardwareTokenIdentity",
    "KeyDiagnosis",
    "KeyFingerprints",
    "KeyRole",
    "KeyState",
    "MailMessage",
    "OutgoingMessage",
    "ReconciliationMethod",
    "ReconciliationOutcome",
    "ReconciliationReport",
    "ReconciliationResult",
    "SessionRecord",
    "normalize_fingerprint",
]
