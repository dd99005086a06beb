"""Telegram notification adapter — implements NotificationPort.

Pushes reminders and sync notices to the allowed users through a telegram.Bot.
"""

from __future__ import annotations

import logging

from telegram import Bot
from telegram.error import TelegramError

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Telegram implementation of NotificationPort."""

    def __init__(self, bot: Bot, user_ids: list[int] | None = None) -> None:
        if user_ids is None:
            from hard75.config import settings
            user_ids = settings.ALLOWED_USER_IDS
        self._bot = bot
        self._user_ids = list(user_ids)

    async def send_message(self, user_id: int, text: str) -> None:
        await self._bot.send_message(chat_id=user_id, text=text)

    async def broadcast(self, text: str) -> int:
        sent = 0
        for user_id in self._user_ids:
            try:
                await self.send_message(user_id, text)
                sent += 1
            except TelegramError as exc:
                logger.warning("Could not notify user_id=%s: %s", user_id, exc)
        return sent
