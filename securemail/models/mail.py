"""Mail messages exchanged with the provider transport."""

from __future__ import annotations

import re
from typing import Optional

from pydantic import BaseModel, Field

PGP_BLOCK = re.compile(
    r"-----BEGIN PGP (MESSAGE|SIGNED MESSAGE)-----[\s\S]*?-----END PGP (MESSAGE|SIGNATURE)-----"
)


class Attachment(BaseModel):
    filename: str
    content_type: str = "application/octet-stream"
    content: str = Field(..., description="Attachment body, already text-encoded.")


class OutgoingMessage(BaseModel):
    """A message ready to hand to the transport, usually PGP-armored already."""

    to: str
    subject: str = ""
    body: str = ""
    attachments: list[Attachment] = Field(default_factory=list)

    @property
    def is_pgp(self) -> bool:
        return (
            "-----BEGIN PGP MESSAGE-----" in self.body
            or "-----BEGIN PGP SIGNED MESSAGE-----" in self.body
        )


class MailMessage(BaseModel):
    """A fetched message as rendered by the client."""

    id: str
    thread_id: Optional[str] = None
    subject: str = "No Subject"
    sender: str = "Unknown Sender"
    date: str = ""
    body: str = ""
    snippet: Optional[str] = None
    is_pgp: bool = False
    label_ids: list[str] = Field(default_factory=list)
    folder: str = "INBOX"


__all__ = ["Attachment", "MailMessage", "OutgoingMessage", "PGP_BLOCK"]
