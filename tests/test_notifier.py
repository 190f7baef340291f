"""
Notifier Test Suite

Fan-out is independent per chat and never retried; the Telegram
transport turns every failure shape into DeliveryError.
"""

from unittest.mock import Mock, patch

import pytest
import requests

from notifications.telegram import (
    Notifier, TelegramTransport, TELEGRAM_MAX_MESSAGE_CHARS, truncate_message,
)
from tracker_utils.errors import DeliveryError


class RecordingTransport:
    def __init__(self, failing=()):
        self.failing = set(failing)
        self.sent = []

    def send(self, chat_id, text):
        self.sent.append((chat_id, text))
        if chat_id in self.failing:
            raise DeliveryError(f'sendMessage to {chat_id} rejected: 403 Forbidden')
        return {'message_id': len(self.sent)}


def telegram_response(status=200, body=None):
    response = Mock()
    response.status_code = status
    response.reason = 'OK' if status < 400 else 'Bad Request'
    response.json.return_value = body if body is not None else {'ok': True, 'result': {'message_id': 1}}
    return response


# ============================================================================
# TEST SUITE 1: Fan-out
# ============================================================================

class TestNotifierFanOut:

    def test_delivers_to_every_chat(self):
        transport = RecordingTransport()
        notifier = Notifier(transport, ['1', '2', '3'])

        results = notifier.notify('hello')

        assert transport.sent == [('1', 'hello'), ('2', 'hello'), ('3', 'hello')]
        assert all(r.ok for r in results)
        assert notifier.sent == 3

    def test_failure_does_not_block_other_chats(self):
        transport = RecordingTransport(failing={'2'})
        notifier = Notifier(transport, ['1', '2', '3'])

        results = notifier.notify('hello')

        assert [chat for chat, _ in transport.sent] == ['1', '2', '3']
        assert [r.ok for r in results] == [True, False, True]
        assert 'rejected' in results[1].error
        assert notifier.get_stats() == {'destinations': 3, 'sent': 2, 'failed': 1}

    def test_no_retry(self):
        transport = RecordingTransport(failing={'1'})
        Notifier(transport, ['1']).notify('hello')
        assert len(transport.sent) == 1

    def test_unexpected_transport_error_is_contained(self):
        transport = Mock()
        transport.send.side_effect = [RuntimeError('bug'), {}]
        results = Notifier(transport, ['1', '2']).notify('x')
        assert [r.ok for r in results] == [False, True]


# ============================================================================
# TEST SUITE 2: Telegram transport
# ============================================================================

class TestTelegramTransport:

    def test_requires_token(self):
        with pytest.raises(ValueError):
            TelegramTransport('')

    @patch('notifications.telegram.requests.post')
    def test_send_posts_message(self, mock_post):
        mock_post.return_value = telegram_response()
        transport = TelegramTransport('123:ABC', timeout=3.0)

        result = transport.send('777', 'report text')

        assert result == {'message_id': 1}
        url = mock_post.call_args[0][0]
        kwargs = mock_post.call_args[1]
        assert url == 'https://api.telegram.org/bot123:ABC/sendMessage'
        assert kwargs['json']['chat_id'] == '777'
        assert kwargs['json']['text'] == 'report text'
        assert kwargs['timeout'] == 3.0

    @patch('notifications.telegram.requests.post')
    def test_http_error_raises(self, mock_post):
        mock_post.return_value = telegram_response(
            400, {'ok': False, 'description': 'Bad Request: chat not found'})

        with pytest.raises(DeliveryError, match='chat not found'):
            TelegramTransport('123:ABC').send('777', 'x')

    @patch('notifications.telegram.requests.post')
    def test_ok_false_raises(self, mock_post):
        mock_post.return_value = telegram_response(200, {'ok': False})
        with pytest.raises(DeliveryError):
            TelegramTransport('123:ABC').send('777', 'x')

    @patch('notifications.telegram.requests.post')
    def test_network_error_hides_token(self, mock_post):
        mock_post.side_effect = requests.exceptions.ConnectionError(
            'https://api.telegram.org/bot123:ABC/sendMessage unreachable')

        with pytest.raises(DeliveryError) as exc_info:
            TelegramTransport('123:ABC').send('777', 'x')
        assert '123:ABC' not in str(exc_info.value)

    @patch('notifications.telegram.requests.post')
    def test_long_message_is_truncated(self, mock_post):
        mock_post.return_value = telegram_response()
        TelegramTransport('123:ABC').send('777', 'x' * 10_000)

        sent = mock_post.call_args[1]['json']['text']
        assert len(sent) == TELEGRAM_MAX_MESSAGE_CHARS

    def test_short_message_untouched(self):
        assert truncate_message('abc') == 'abc'
