"""Telegram service exceptions.

Delivery failures are reported through ``DeliveryResult``; these are raised
only for setup problems.
"""


class TelegramError(Exception):
    """Base Telegram exception."""

    pass


class TelegramAuthError(TelegramError):
    """The bot token was rejected."""

    pass


class TelegramConfigError(TelegramError):
    """Bot token or chat id is missing."""

    pass
