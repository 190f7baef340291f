"""
Telegram Notifier

Fan-out of one text block to every configured chat.

Delivery is best-effort: each chat gets exactly one sendMessage call;
a failure is logged and the next chat is still tried. No retry, no
queue.
"""

import json
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import requests

from tracker_utils.errors import DeliveryError


notify_logger = logging.getLogger('wallet_tracker.notifier')

TELEGRAM_API_URL = 'https://api.telegram.org/bot{token}/sendMessage'
TELEGRAM_MAX_MESSAGE_CHARS = 4096


def truncate_message(text: str, limit: int = TELEGRAM_MAX_MESSAGE_CHARS) -> str:
    if len(text) <= limit:
        return text
    suffix = '\n…'
    return text[:limit - len(suffix)] + suffix


class TelegramTransport:
    """Bot API sendMessage over requests"""

    def __init__(self, bot_token: str, timeout: float = 10.0,
                 api_url: str = TELEGRAM_API_URL):
        if not bot_token:
            raise ValueError('Telegram bot token is required')
        self.url = api_url.format(token=bot_token)
        self.timeout = timeout

    def send(self, chat_id: str, text: str) -> dict:
        """Send one message; returns the Telegram 'result' or raises DeliveryError"""
        try:
            response = requests.post(
                self.url,
                json={
                    'chat_id': chat_id,
                    'text': truncate_message(text),
                    'disable_web_page_preview': True,
                },
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            # Don't echo the URL - it carries the bot token
            raise DeliveryError(f'sendMessage to {chat_id} failed: {type(e).__name__}') from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400 or not body.get('ok', False):
            description = body.get('description') or response.reason
            raise DeliveryError(f'sendMessage to {chat_id} rejected: '
                                f'{response.status_code} {description}')

        return body.get('result') or {}


@dataclass
class DeliveryResult:
    chat_id: str
    ok: bool
    error: Optional[str] = None


class Notifier:
    """Delivers one report to every chat id, independently"""

    def __init__(self, transport, chat_ids: Sequence[str]):
        """
        Args:
            transport: Anything with send(chat_id, text)
            chat_ids: Destination chat ids
        """
        self.transport = transport
        self.chat_ids = list(chat_ids)

        # Stats
        self.sent = 0
        self.failed = 0

    def notify(self, text: str) -> List[DeliveryResult]:
        results = []
        for chat_id in self.chat_ids:
            try:
                self.transport.send(chat_id, text)
            except Exception as e:
                self.failed += 1
                notify_logger.error(json.dumps({
                    'event': 'delivery_failed',
                    'chat_id': chat_id,
                    'error': str(e),
                }))
                results.append(DeliveryResult(chat_id=chat_id, ok=False, error=str(e)))
                continue

            self.sent += 1
            notify_logger.info(json.dumps({
                'event': 'delivered',
                'chat_id': chat_id,
            }))
            results.append(DeliveryResult(chat_id=chat_id, ok=True))
        return results

    def get_stats(self) -> dict:
        return {
            'destinations': len(self.chat_ids),
            'sent': self.sent,
            'failed': self.failed,
        }
