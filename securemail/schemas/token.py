"""Schemas for the hardware token endpoints."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel

from securemail.models.hardware import HardwareTokenIdentity


class TokenStatusResponse(BaseModel):
    detected: bool
    identity: Optional[HardwareTokenIdentity] = None
    has_keys: bool = False


__all__ = ["TokenStatusResponse"]
