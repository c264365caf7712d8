"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_authorization_flow,
    get_card_driver,
    get_code_prompt,
    get_credential_store,
    get_keyring,
    get_mail_service,
    get_provider_oauth_client,
    get_reconciliation_engine,
    get_session_manager,
    get_token_cipher_service,
    get_token_detector,
)
from .config import SettingsDependency, get_app_settings

__all__ = [
    "SettingsDependency",
    "get_app_settings",
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
