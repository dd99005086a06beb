"""Tests for hard75.adapters.telegram_notifier."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from telegram.error import TelegramError

from hard75.adapters.telegram_notifier import TelegramNotifier


@pytest.fixture
def bot():
    bot = MagicMock()
    bot.send_message = AsyncMock()
    return bot


class TestTelegramNotifier:
    @pytest.mark.asyncio
    async def test_send_message(self, bot):
        notifier = TelegramNotifier(bot, user_ids=[1])
        await notifier.send_message(1, "hi")
        bot.send_message.assert_awaited_once_with(chat_id=1, text="hi")

    @pytest.mark.asyncio
    async def test_broadcast_reaches_everyone(self, bot):
        notifier = TelegramNotifier(bot, user_ids=[1, 2, 3])
        assert await notifier.broadcast("reminder") == 3
        assert bot.send_message.await_count == 3

    @pytest.mark.asyncio
    async def test_broadcast_survives_blocked_user(self, bot):
        bot.send_message.side_effect = [TelegramError("Forbidden: bot was blocked"), None]
        notifier = TelegramNotifier(bot, user_ids=[1, 2])
        assert await notifier.broadcast("reminder") == 1

    def test_defaults_to_allowed_users(self, bot):
        notifier = TelegramNotifier(bot)
        assert notifier._user_ids == [12345]
