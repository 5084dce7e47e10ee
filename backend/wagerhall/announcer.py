"""Outbound announcements to wager channels and operators."""

from __future__ import annotations

import logging
from typing import Protocol

from pydantic import BaseModel

from wagerhall.services.telegram import TelegramClient, escape

logger = logging.getLogger(__name__)


class ChannelRef(BaseModel):
    """Opaque reference to the front-end place a wager lives in."""

    guild_id: str = ""
    channel_id: str


class Announcer(Protocol):
    async def announce(self, channel: ChannelRef, message: str) -> None: ...

    async def alert_operators(self, message: str) -> None: ...


class LoggingAnnouncer:
    """Announcer that only writes to the log."""

    async def announce(self, channel: ChannelRef, message: str) -> None:
        logger.info("[channel %s] %s", channel.channel_id, message)

    async def alert_operators(self, message: str) -> None:
        logger.warning("[operators] %s", message)


class TelegramAnnouncer:
    """Announcer backed by the Telegram client; channel ids are chat ids."""

    def __init__(self, client: TelegramClient, send_alerts: bool = True):
        self.client = client
        self.send_alerts = send_alerts

    async def announce(self, channel: ChannelRef, message: str) -> None:
        result = await self.client.send_message(channel.channel_id, escape(message))
        if not result.success:
            logger.warning(f"Announcement to {channel.channel_id} failed: {result.error}")

    async def alert_operators(self, message: str) -> None:
        logger.warning("[operators] %s", message)
        if not self.send_alerts:
            return
        result = await self.client.send_operator_alert(escape(message))
        if result is not None and not result.success:
            logger.warning(f"Operator alert failed: {result.error}")
