"""Service layer exports."""

from .authorization_flow import (
    AuthorizationFlow,
    LoopbackAuthorizationFlow,
    OutOfBandAuthorizationFlow,
    PendingCodePrompt,
    build_authorization_flow,
)
from .credential_store import CredentialStore
from .key_reconciliation import KeyReconciliationEngine
from .mail import MailService
from .session_manager import SessionManager
from .token_cipher import TokenCipherService
from .token_detector import HardwareTokenDetector
from .token_refresh import RefreshDecision, TokenRefreshPolicy

__all__ = [
    "AuthorizationFlow",
    "CredentialStore",
    "HardwareTokenDetector",
    "KeyReconciliationEngine",
    "LoopbackAuthorizationFlow",
    "MailService",
    "OutOfBandAuthorizationFlow",
    "PendingCodePrompt",
    "RefreshDecision",
    "SessionManager",
    "TokenCipherService",
    "TokenRefreshPolicy",
    "build_authorization_flow",
]
