"""
Outbound notifications.

Usage:
    from notifications import Notifier, TelegramTransport

    notifier = Notifier(TelegramTransport(bot_token), chat_ids=['123'])
    notifier.notify(report.text)
"""

from notifications.telegram import (
    DeliveryResult, Notifier, TelegramTransport, TELEGRAM_MAX_MESSAGE_CHARS
)

__all__ = [
    'DeliveryResult',
    'Notifier',
    'TelegramTransport',
    'TELEGRAM_MAX_MESSAGE_CHARS',
]
