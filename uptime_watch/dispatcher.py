"""Send-side wrapper around the Telegram channel."""

from __future__ import annotations

import httpx
import structlog

from .telegram import TelegramConfig, redact_telegram_response, send_telegram_message_chunked

logger = structlog.get_logger(__name__)


class NotificationDispatcher:
    """Delivers alert text to the configured chat.

    Delivery failures are logged and reported as False. They are never raised,
    queued or retried: the caller treats the transition as handled either way.
    """

    def __init__(self, client: httpx.AsyncClient, config: TelegramConfig):
        self.client = client
        self.config = config

    async def send(self, text: str, *, chat_id: str | None = None) -> bool:
        """Send text to chat_id (defaults to the alert destination).

        Returns:
            True if every chunk was accepted by Telegram
        """
        destination = chat_id or self.config.chat_id
        ok, responses = await send_telegram_message_chunked(self.client, self.config, text, chat_id=destination)
        if not ok:
            logger.error(
                "Failed to send Telegram message",
                chat_id=destination,
                telegram=redact_telegram_response(responses[-1] if responses else {}),
            )
        return ok
