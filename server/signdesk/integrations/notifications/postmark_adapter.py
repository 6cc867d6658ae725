"""
Postmark Email Adapter

Sends transactional email through the Postmark HTTP API.
"""

import json
import logging
from typing import Any, Dict, Optional

import aiohttp
from aiohttp import ClientTimeout

from .base import EmailMessage, NotificationError, Notifier

logger = logging.getLogger(__name__)

POSTMARK_API_URL = "https://api.postmarkapp.com"


class PostmarkNotifier(Notifier):
    """Postmark email adapter."""

    def __init__(self, server_token: str, from_email: str, base_url: str = POSTMARK_API_URL, message_stream: str = "outbound"):
        self.server_token = server_token
        self.from_email = from_email
        self.base_url = base_url.rstrip('/')
        self.message_stream = message_stream
        self._session: Optional[aiohttp.ClientSession] = None
        self._timeout = ClientTimeout(total=15, connect=5)

    @property
    def session(self) -> aiohttp.ClientSession:
        """Get or create the HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                headers={
                    "X-Postmark-Server-Token": self.server_token,
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
            )
        return self._session

    def _build_payload(self, message: EmailMessage) -> Dict[str, Any]:
        recipient = f"{message.to_name} <{message.to_email}>" if message.to_name else message.to_email
        payload: Dict[str, Any] = {
            "From": self.from_email,
            "To": recipient,
            "Subject": message.subject,
            "TextBody": message.text_body,
            "MessageStream": self.message_stream,
        }
        if message.tag:
            payload["Tag"] = message.tag
        if message.metadata:
            payload["Metadata"] = {key: str(value) for key, value in message.metadata.items()}
        return payload

    async def send(self, message: EmailMessage) -> None:
        try:
            async with self.session.post(f"{self.base_url}/email", json=self._build_payload(message)) as response:
                if response.status == 200:
                    return
                try:
                    error_data = await response.json()
                    error_message = error_data.get("Message", "Postmark rejected the message")
                except (aiohttp.ContentTypeError, json.JSONDecodeError):
                    error_message = await response.text() or "Postmark rejected the message"
                raise NotificationError(error_message, status_code=response.status)
        except aiohttp.ClientError as e:
            logger.error(f"Postmark API error: {e}")
            raise NotificationError(f"Failed to reach Postmark: {e}") from e

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
