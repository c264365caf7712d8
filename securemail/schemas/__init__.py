"""Public schema exports."""

from .auth import AuthStatusResponse, OAuthCodePayload
from .token import TokenStatusResponse

__all__ = ["AuthStatusResponse", "OAuthCodePayload", "TokenStatusResponse"]
