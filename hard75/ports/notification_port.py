"""Notification port — abstract interface for pushing messages to users.

The bot's scheduled jobs and sync hooks depend on this protocol, never on a
specific messaging provider.
"""

from __future__ import annotations

from typing import Protocol


class NotificationPort(Protocol):
    """Abstract notification interface."""

    async def send_message(self, user_id: int, text: str) -> None: ...

    async def broadcast(self, text: str) -> int:
        """Send text to every subscribed user; returns how many received it."""
        ...
