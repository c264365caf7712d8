"""
Factory functions wiring the shared clients and services.

Used as FastAPI dependencies by the bridge API and called directly by the
command line tools.
"""

from functools import lru_cache

from securemail.clients import (
    GmailTransport,
    GnuPGKeyring,
    KeyserverClient,
    ProviderOAuthClient,
    YkmanCardDriver,
)
from securemail.core.config import get_settings
from securemail.services import (
    AuthorizationFlow,
    CredentialStore,
    HardwareTokenDetector,
    KeyReconciliationEngine,
    MailService,
    PendingCodePrompt,
    SessionManager,
    TokenCipherService,
    TokenRefreshPolicy,
    build_authorization_flow,
)


@lru_cache()
def _settings():
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_token_cipher_service() -> TokenCipherService:
    """Provide symmetric encryption helper for token storage."""
    settings = _settings()
    secret = settings.security.token_encryption_secret or settings.provider.client_secret
    return TokenCipherService(secret=secret)


@lru_cache()
def get_credential_store() -> CredentialStore:
    settings = _settings()
    return CredentialStore(settings.storage.credential_path, get_token_cipher_service())


@lru_cache()
def get_provider_oauth_client() -> ProviderOAuthClient:
    """Create a singleton provider OAuth client."""
    settings = _settings()
    return ProviderOAuthClient(settings.provider, settings.oauth)


@lru_cache()
def get_code_prompt() -> PendingCodePrompt:
    """Shared prompt fed by ``POST /api/auth/code`` in the out-of-band strategy."""
    return PendingCodePrompt()


@lru_cache()
def get_authorization_flow() -> AuthorizationFlow:
    settings = _settings()
    return build_authorization_flow(
        get_provider_oauth_client(), settings.oauth, code_prompt=get_code_prompt()
    )


@lru_cache()
def get_session_manager() -> SessionManager:
    """Provide the process-wide session manager."""
    store = get_credential_store()
    oauth_client = get_provider_oauth_client()
    return SessionManager(
        store=store,
        refresh_policy=TokenRefreshPolicy(store, oauth_client),
        flow=get_authorization_flow(),
        oauth_client=oauth_client,
    )


@lru_cache()
def get_mail_service() -> MailService:
    settings = _settings()
    transport = GmailTransport(
        settings.provider.api_base_url,
        timeout_seconds=settings.provider.request_timeout_seconds,
    )
    return MailService(get_session_manager(), transport)


@lru_cache()
def get_card_driver() -> YkmanCardDriver:
    """Provide the ykman/gpg backed hardware token driver."""
    settings = _settings().hardware_token
    return YkmanCardDriver(
        ykman_path=settings.ykman_path,
        gpg_path=settings.gpg_path,
        timeout_seconds=settings.command_timeout_seconds,
    )


@lru_cache()
def get_keyring() -> GnuPGKeyring:
    settings = _settings().hardware_token
    return GnuPGKeyring(
        gpg_path=settings.gpg_path, timeout_seconds=settings.command_timeout_seconds
    )


@lru_cache()
def get_token_detector() -> HardwareTokenDetector:
    settings = _settings().hardware_token
    return HardwareTokenDetector(
        get_card_driver(), poll_interval=settings.poll_interval_seconds
    )


@lru_cache()
def get_reconciliation_engine() -> KeyReconciliationEngine:
    """Provide the key reconciliation engine; no file dialog is available here."""
    settings = _settings()
    return KeyReconciliationEngine(
        keyring=get_keyring(),
        driver=get_card_driver(),
        keyserver=KeyserverClient(
            settings.keyserver.hosts, timeout_seconds=settings.keyserver.timeout_seconds
        ),
        card_url_retries=settings.hardware_token.card_url_retries,
        http_timeout=settings.keyserver.timeout_seconds,
    )


__all__ = [
    "get_authorization_flow",
    "get_card_driver",
    "get_code_prompt",
    "get_credential_store",
    "get_keyring",
    "get_mail_service",
    "get_provider_oauth_client",
    "get_reconciliation_engine",
    "get_session_manager",
    "get_token_cipher_service",
    "get_token_detector",
]
