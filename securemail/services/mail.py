"""
Mail operations guarded by the session manager.

Every call borrows a verified access token through
``SessionManager.with_valid_token``; this service never reads stored tokens.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List

from securemail.clients.gmail import DEFAULT_QUERY, GmailTransport, MailTransportError
from securemail.models.mail import MailMessage, OutgoingMessage
from securemail.services.session_manager import SessionManager

logger = logging.getLogger(__name__)


class MailService:
    def __init__(self, session_manager: SessionManager, transport: GmailTransport) -> None:
        self._sessions = session_manager
        self._transport = transport

    async def send(self, message: OutgoingMessage) -> str:
        """Send ``message`` and return the provider's message id."""

        async def _send(token: str) -> str:
            return await self._transport.send(token, message)

        message_id = await self._sessions.with_valid_token(_send)
        logger.info("Message sent to %s", message.to)
        return message_id

    async def fetch_messages(
        self, query: str = DEFAULT_QUERY, max_results: int = 30
    ) -> List[MailMessage]:
        """
        Fetch messages matching ``query``, PGP messages by default.

        Messages that fail to load individually are skipped.
        """

        async def _fetch(token: str) -> List[MailMessage]:
            message_ids = await self._transport.list_messages(token, query, max_results)
            results = await asyncio.gather(
                *(self._transport.get_message(token, mid) for mid in message_ids),
                return_exceptions=True,
            )
            messages: List[MailMessage] = []
            for message_id, result in zip(message_ids, results):
                if isinstance(result, MailTransportError):
                    logger.warning("Skipping message %s: %s", message_id, result)
                    continue
                if isinstance(result, BaseException):
                    raise result
                messages.append(result)
            return messages

        return await self._sessions.with_valid_token(_fetch)

    async def mark_read(self, message_id: str, read: bool = True) -> None:
        async def _mark(token: str) -> None:
            await self._transport.mark_read(token, message_id, read)

        await self._sessions.with_valid_token(_mark)


__all__ = ["MailService"]
