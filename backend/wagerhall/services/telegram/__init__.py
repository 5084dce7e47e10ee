"""Telegram notification service."""

from .client import TelegramClient, create_telegram_client, escape
from .config import TelegramConfig
from .exceptions import TelegramAuthError, TelegramConfigError, TelegramError
from .models import DeliveryResult

__all__ = [
    "TelegramClient",
    "create_telegram_client",
    "escape",
    "TelegramConfig",
    "DeliveryResult",
    "TelegramError",
    "TelegramAuthError",
    "TelegramConfigError",
]
