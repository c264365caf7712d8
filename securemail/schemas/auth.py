"""Schemas related to the provider session."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class OAuthCodePayload(BaseModel):
    """Authorization code pasted by the user in the out-of-band flow."""

    code: str = Field(..., min_length=1, description="Code shown by the consent screen.")


class AuthStatusResponse(BaseModel):
    is_authenticated: bool
    needs_refresh: bool = False
    expires_at: Optional[datetime] = None
    authorization_in_progress: bool = False
    authorization_url: Optional[str] = Field(
        None, description="Consent URL while an out-of-band code is awaited."
    )


__all__ = ["AuthStatusResponse", "OAuthCodePayload"]
