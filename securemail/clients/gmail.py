"""
Mail provider REST transport.

Every call takes the bearer token explicitly; callers obtain it through
``SessionManager.with_valid_token`` and never from the credential store.
"""

from __future__ import annotations

import base64
import logging
from email.message import EmailMessage
from typing import Any, Dict, List, Optional

import httpx

from securemail.models.mail import PGP_BLOCK, MailMessage, OutgoingMessage

logger = logging.getLogger(__name__)

DEFAULT_QUERY = '("BEGIN PGP MESSAGE" OR "BEGIN PGP SIGNED MESSAGE") in:anywhere'
_FOLDER_LABELS = ("SENT", "DRAFT", "TRASH", "SPAM")


class MailTransportError(Exception):
    """Raised when the provider rejects a mail API call."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _b64url_decode(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8", errors="replace")


def build_raw_message(message: OutgoingMessage) -> str:
    """Render ``message`` as base64url RFC 822 text for the send endpoint."""
    mime = EmailMessage()
    mime["To"] = message.to
    mime["Subject"] = message.subject
    mime.set_content(message.body)
    for attachment in message.attachments:
        maintype, _, subtype = attachment.content_type.partition("/")
        mime.add_attachment(
            attachment.content.encode("utf-8"),
            maintype=maintype or "application",
            subtype=subtype or "octet-stream",
            filename=attachment.filename,
        )
    return base64.urlsafe_b64encode(mime.as_bytes()).decode("ascii").rstrip("=")


def parse_message(payload: Dict[str, Any]) -> MailMessage:
    """Turn a ``format=full`` message resource into a ``MailMessage``."""
    body_part = payload.get("payload") or {}
    headers = {h.get("name"): h.get("value") for h in body_part.get("headers", [])}

    body = ""
    parts = body_part.get("parts")
    if parts:
        text_part = next((p for p in parts if p.get("mimeType") == "text/plain"), None)
        if text_part and text_part.get("body", {}).get("data"):
            body = _b64url_decode(text_part["body"]["data"])
    elif body_part.get("body", {}).get("data"):
        body = _b64url_decode(body_part["body"]["data"])

    label_ids: List[str] = payload.get("labelIds") or []
    folder = next((label for label in _FOLDER_LABELS if label in label_ids), "INBOX")

    return MailMessage(
        id=payload["id"],
        thread_id=payload.get("threadId"),
        subject=headers.get("Subject") or "No Subject",
        sender=headers.get("From") or "Unknown Sender",
        date=headers.get("Date") or "",
        body=body,
        snippet=payload.get("snippet"),
        is_pgp=bool(PGP_BLOCK.search(body)),
        label_ids=label_ids,
        folder=folder,
    )


class GmailTransport:
    """Send, list and fetch messages through the provider REST API."""

    def __init__(
        self,
        api_base_url: str,
        *,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = api_base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._transport = transport

    async def _request(
        self,
        method: str,
        path: str,
        access_token: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        async with httpx.AsyncClient(
            base_url=self._base_url, timeout=self._timeout, transport=self._transport
        ) as client:
            response = await client.request(
                method,
                path,
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        if response.status_code >= 400:
            raise MailTransportError(
                f"{method} {path} failed with HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return response.json() if response.content else {}

    async def send(self, access_token: str, message: OutgoingMessage) -> str:
        """Send ``message`` and return the provider's message id."""
        if message.is_pgp:
            logger.info("Sending PGP-protected message")
        result = await self._request(
            "POST",
            "/users/me/messages/send",
            access_token,
            json={"raw": build_raw_message(message)},
        )
        return result.get("id", "")

    async def list_messages(
        self, access_token: str, query: str = DEFAULT_QUERY, max_results: int = 30
    ) -> List[str]:
        """Return ids of messages matching ``query``."""
        result = await self._request(
            "GET",
            "/users/me/messages",
            access_token,
            params={"q": query, "maxResults": max_results},
        )
        return [item["id"] for item in result.get("messages", [])]

    async def get_message(self, access_token: str, message_id: str) -> MailMessage:
        result = await self._request(
            "GET",
            f"/users/me/messages/{message_id}",
            access_token,
            params={"format": "full"},
        )
        return parse_message(result)

    async def mark_read(self, access_token: str, message_id: str, read: bool = True) -> None:
        labels = {"removeLabelIds": ["UNREAD"]} if read else {"addLabelIds": ["UNREAD"]}
        await self._request(
            "POST",
            f"/users/me/messages/{message_id}/modify",
            access_token,
            json=labels,
        )


__all__ = [
    "DEFAULT_QUERY",
    "GmailTransport",
    "MailTransportError",
    "build_raw_message",
    "parse_message",
]
