"""Telegram client for wager announcements and operator alerts."""

from __future__ import annotations

import asyncio
import html
import logging
from typing import Any

from telegram import Bot
from telegram.error import TelegramError as BotError

from .config import TelegramConfig
from .exceptions import TelegramAuthError, TelegramConfigError
from .models import DeliveryResult

logger = logging.getLogger(__name__)


def escape(text: object) -> str:
    """Escape user-controlled text for HTML parse mode."""
    return html.escape(str(text), quote=False)


class TelegramClient:
    """Async Telegram client.

    Sends never raise on delivery failure: the result object carries the error
    so callers on settlement paths are not interrupted by chat outages.
    """

    def __init__(
        self,
        config: TelegramConfig | None = None,
        bot_token: str | None = None,
        operator_chat_id: str | None = None,
    ):
        self.config = config or TelegramConfig()

        if bot_token:
            self.config.bot_token = bot_token
        if operator_chat_id:
            self.config.operator_chat_id = operator_chat_id

        if not self.config.bot_token:
            raise TelegramConfigError(
                "bot_token is required. Provide via config or constructor."
            )

        self._bot: Bot | None = None
        logger.info("Initialized TelegramClient")

    async def __aenter__(self) -> TelegramClient:
        try:
            self._bot = Bot(token=self.config.bot_token)
            bot_info = await self._bot.get_me()
            logger.info(f"Connected to Telegram bot: @{bot_info.username}")
        except BotError as e:
            logger.error(f"Failed to initialize Telegram bot: {e}")
            raise TelegramAuthError(f"Invalid bot token: {e}") from e

        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: Exception | None,
        exc_tb: Any,
    ) -> None:
        if self._bot:
            self._bot = None
            logger.info("Closed TelegramClient")

    @property
    def bot(self) -> Bot:
        if self._bot is None:
            raise RuntimeError(
                "TelegramClient must be used as async context manager"
            )
        return self._bot

    async def send_message(self, chat_id: str, message: str) -> DeliveryResult:
        """Send a message, retrying up to ``max_attempts`` times."""
        if not chat_id:
            raise TelegramConfigError("chat_id is required")

        attempts = max(1, self.config.max_attempts)
        last_error: str | None = None

        for attempt in range(1, attempts + 1):
            try:
                sent = await self.bot.send_message(
                    chat_id=chat_id,
                    text=message,
                    parse_mode=self.config.parse_mode,
                )
                logger.debug(
                    f"Telegram message sent to {chat_id} (message_id: {sent.message_id})"
                )
                return DeliveryResult(
                    success=True,
                    message_id=sent.message_id,
                    chat_id=chat_id,
                    attempts=attempt,
                )
            except BotError as e:
                last_error = e.message or "Telegram error"
            except Exception as e:
                last_error = str(e) or "Unexpected error"

            logger.warning(
                f"Telegram send to {chat_id} failed (attempt {attempt}/{attempts}): "
                f"{last_error}"
            )
            if attempt < attempts:
                await asyncio.sleep(self.config.retry_delay_seconds)

        return DeliveryResult(
            success=False,
            chat_id=chat_id,
            error=last_error or "Message send failed",
            attempts=attempts,
        )

    async def send_operator_alert(self, message: str) -> DeliveryResult | None:
        """Send to the operator chat; ``None`` when no operator chat is set."""
        if not self.config.operator_chat_id:
            logger.debug("Operator chat not configured, alert skipped")
            return None
        return await self.send_message(self.config.operator_chat_id, message)


def create_telegram_client(
    bot_token: str | None = None,
    operator_chat_id: str | None = None,
    config: TelegramConfig | None = None,
) -> TelegramClient:
    """Create a TelegramClient instance."""
    return TelegramClient(
        config=config,
        bot_token=bot_token,
        operator_chat_id=operator_chat_id,
    )
