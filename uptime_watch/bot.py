"""Inbound command handling: long-poll Telegram and answer /uptime and /stats."""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import structlog

from .dispatcher import NotificationDispatcher
from .query import QueryService
from .telegram import (
    TelegramConfig,
    get_telegram_bot_username,
    get_telegram_updates,
    parse_telegram_command,
    redact_telegram_response,
)

logger = structlog.get_logger(__name__)


class CommandListener:
    """Polls getUpdates and replies to each command in the chat it came from."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        config: TelegramConfig,
        queries: QueryService,
        *,
        poll_timeout_seconds: int = 30,
        retry_delay_seconds: float = 5.0,
        bot_username: str | None = None,
    ):
        self.client = client
        self.config = config
        self.queries = queries
        self.replies = NotificationDispatcher(client, config)
        self.poll_timeout_seconds = poll_timeout_seconds
        self.retry_delay_seconds = retry_delay_seconds
        self.bot_username = bot_username
        self.offset: int | None = None

    async def handle_update(self, update: dict[str, Any]) -> bool:
        """Answer one update. Returns True if a reply was sent."""
        message = update.get("message")
        if not isinstance(message, dict):
            return False
        chat = message.get("chat") or {}
        chat_id = chat.get("id")
        command = parse_telegram_command(message.get("text") or "", chat_id=chat_id, bot_username=self.bot_username)
        if command is None or command.chat_id is None:
            return False

        logger.info("Command received", command=command.name, args=command.args, chat_id=command.chat_id)
        reply = await self.queries.handle(command)
        return await self.replies.send(reply, chat_id=command.chat_id)

    async def resolve_bot_username(self) -> str | None:
        """Look up our own username so "/cmd@other_bot" can be told apart from ours."""
        username, data = await get_telegram_bot_username(self.client, self.config)
        if username is None:
            logger.warning("getMe failed; ignoring @-addressed commands", telegram=redact_telegram_response(data))
        else:
            logger.info("Bot identity resolved", bot_username=username)
        self.bot_username = username
        return username

    async def poll_once(self) -> int:
        """Fetch and answer one batch of updates. Returns the number of updates consumed."""
        if self.bot_username is None:
            await self.resolve_bot_username()
        ok, updates = await get_telegram_updates(
            self.client, self.config, offset=self.offset, timeout_seconds=self.poll_timeout_seconds
        )
        if not ok:
            logger.warning("getUpdates failed", telegram=redact_telegram_response(updates[0] if updates else {}))
            await asyncio.sleep(self.retry_delay_seconds)
            return 0

        for update in updates:
            update_id = update.get("update_id")
            if isinstance(update_id, int):
                # Acknowledge before answering so a reply that crashes is not replayed forever.
                self.offset = update_id + 1
            try:
                await self.handle_update(update)
            except Exception:
                logger.exception("Failed to answer update", update_id=update_id)
        return len(updates)

    async def run(self) -> None:
        logger.info("Command listener started", poll_timeout_seconds=self.poll_timeout_seconds)
        try:
            while True:
                await self.poll_once()
        finally:
            logger.info("Command listener stopped")
