"""
Error taxonomy shared by the session and hardware token subsystems.

Only unexpected failures are exceptions. Expected conditions such as an absent
token, a cancelled file import, a keyserver miss or a card without a URL are
returned as ordinary values by the services.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for session and authorization failures."""

    reason = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.reason)


class PortUnavailableError(AuthError):
    """The loopback callback port is already bound by another process."""

    reason = "The local authorization port is already in use."


class AuthorizationDeniedError(AuthError):
    """The provider reported an error, or the redirect was malformed."""

    reason = "Authorization was denied."


class AuthorizationCancelledError(AuthorizationDeniedError):
    """The user cancelled an in-flight authorization."""

    reason = "Authorization was cancelled."


class AuthorizationTimeoutError(AuthError):
    """No redirect arrived within the watchdog budget."""

    reason = "Authorization timed out."


class AuthorizationInProgressError(AuthError):
    """Another authorization attempt is already active."""

    reason = "An authorization attempt is already in progress."


class ReauthRequiredError(AuthError):
    """The stored session cannot be used or refreshed; consent is required."""

    reason = "Authentication expired. Please re-authenticate."


class NetworkFailureError(AuthError):
    """The provider could not be reached or returned an unusable response."""

    reason = "The mail provider could not be reached."


class OAuthTokenExchangeError(Exception):
    """Raised when the token endpoint returns an error."""


class DetectError(Exception):
    """Base class for hardware token driver failures."""


class TokenNotPresentError(DetectError):
    """An operation required a connected token and none was found."""


class DriverUnavailableError(DetectError):
    """The token management tooling is missing or unusable."""


class TransientDriverError(DetectError):
    """A driver lookup failed in a way that may succeed when repeated."""


class ReconcileError(Exception):
    """Base class for key reconciliation failures."""


class MethodFailedError(ReconcileError):
    """An import method failed unexpectedly."""

    def __init__(self, method: str, reason: str) -> None:
        super().__init__(f"{method} failed: {reason}")
        self.method = method
        self.reason = reason


class VerificationFailedError(ReconcileError):
    """An import reported success but the key is still not present locally."""

    def __init__(self, fingerprint: str) -> None:
        super().__init__(
            f"Imported key {fingerprint} could not be verified in the keyring."
        )
        self.fingerprint = fingerprint


__all__ = [
    "AuthError",
    "AuthorizationCancelledError",
    "AuthorizationDeniedError",
    "AuthorizationInProgressError",
    "AuthorizationTimeoutError",
    "DetectError",
    "DriverUnavailableError",
    "MethodFailedError",
    "NetworkFailureError",
    "OAuthTokenExchangeError",
    "PortUnavailableError",
    "ReauthRequiredError",
    "ReconcileError",
    "TokenNotPresentError",
    "TransientDriverError",
    "VerificationFailedError",
]
