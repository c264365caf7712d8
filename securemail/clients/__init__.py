"""Expose constructed client wrappers."""

from .callback_listener import CallbackListener, RedirectResult
from .gmail import GmailTransport, MailTransportError
from .gnupg import GnuPGKeyring, KeyringError
from .hardware_token import YkmanCardDriver
from .keyserver import KeyserverClient, KeyserverLookupError
from .provider_auth import ProviderOAuthClient

__all__ = [
    "CallbackListener",
    "GmailTransport",
    "GnuPGKeyring",
    "KeyringError",
    "KeyserverClient",
    "KeyserverLookupError",
    "MailTransportError",
    "ProviderOAuthClient",
    "RedirectResult",
    "YkmanCardDriver",
]
