"""
Account Feed Test Suite

Websocket session handling against an in-memory WebSocketApp:
subscribe/ack matching, notification routing, and the guarantees the
supervisor relies on (probe fails once closed, subscriber errors never
reach the reader thread).
"""

import json
import threading
import time

import pytest

from realtime.account_feed import AccountChange, AccountFeed
from tracker_utils.errors import FeedError
from tests.fakes import FakeRpc

WALLET_A = '5RZivXzyW9LMsX9Uw9Gh6sZzSkkzGt9xzy3EjTVmVCvM'
WALLET_B = 'cvP9pZDXYHF9gdzc7wQsiEkAjVpAF9CJD51j8AfqZur'


class FakeWebSocketApp:
    """Mimics websocket.WebSocketApp; acks subscriptions synchronously"""

    def __init__(self, url, on_open=None, on_message=None, on_error=None, on_close=None):
        self.url = url
        self.on_open = on_open
        self.on_message = on_message
        self.on_error = on_error
        self.on_close = on_close
        self.sent = []
        self.ack = True
        self.reject = False
        self.open_on_run = True
        self.refuse = False
        self._closed = threading.Event()

    def run_forever(self, **kwargs):
        self.run_kwargs = kwargs
        if self.refuse:
            self.on_error(self, ConnectionRefusedError(111, 'Connection refused'))
            self.on_close(self, None, None)
            return
        if self.open_on_run:
            self.on_open(self)
        self._closed.wait()
        self.on_close(self, 1000, 'bye')

    def send(self, payload):
        msg = json.loads(payload)
        self.sent.append(msg)
        if self.reject:
            self.push({'jsonrpc': '2.0', 'id': msg['id'],
                       'error': {'code': -32602, 'message': 'Invalid param'}})
        elif self.ack:
            self.push({'jsonrpc': '2.0', 'id': msg['id'], 'result': 1000 + msg['id']})

    def close(self):
        self._closed.set()

    def push(self, data):
        self.on_message(self, json.dumps(data) if not isinstance(data, str) else data)


def notification(subscription, lamports, slot=300):
    return {
        'jsonrpc': '2.0',
        'method': 'accountNotification',
        'params': {
            'subscription': subscription,
            'result': {
                'context': {'slot': slot},
                'value': {'lamports': lamports, 'owner': '11111111111111111111111111111111'},
            },
        },
    }


@pytest.fixture
def sockets():
    return []


@pytest.fixture
def feed(sockets):
    def factory(url, **callbacks):
        ws = FakeWebSocketApp(url, **callbacks)
        sockets.append(ws)
        return ws

    feed = AccountFeed('wss://example', FakeRpc(), connect_timeout=1.0,
                       subscribe_timeout=0.2, ws_factory=factory)
    yield feed
    feed.close()


# ============================================================================
# TEST SUITE 1: Connect and subscribe
# ============================================================================

class TestFeedSubscribe:

    def test_connect(self, feed, sockets):
        feed.connect()
        assert feed.is_connected
        assert sockets[0].url == 'wss://example'

    def test_connect_timeout(self, sockets):
        def factory(url, **callbacks):
            ws = FakeWebSocketApp(url, **callbacks)
            ws.open_on_run = False
            sockets.append(ws)
            return ws

        feed = AccountFeed('wss://example', FakeRpc(), connect_timeout=0.05, ws_factory=factory)
        with pytest.raises(FeedError):
            feed.connect()
        assert not feed.is_connected

    def test_refused_connection_fails_fast(self, sockets):
        def factory(url, **callbacks):
            ws = FakeWebSocketApp(url, **callbacks)
            ws.refuse = True
            sockets.append(ws)
            return ws

        feed = AccountFeed('wss://example', FakeRpc(), connect_timeout=5.0, ws_factory=factory)
        started = time.monotonic()
        with pytest.raises(FeedError, match='closed before opening'):
            feed.connect()

        assert time.monotonic() - started < 1.0
        assert not feed.is_connected

    def test_subscribe_sends_account_subscribe(self, feed, sockets):
        feed.connect()
        sub_id = feed.subscribe(WALLET_A, lambda c: None)

        msg = sockets[0].sent[0]
        assert msg['method'] == 'accountSubscribe'
        assert msg['params'][0] == WALLET_A
        assert msg['params'][1] == {'encoding': 'jsonParsed', 'commitment': 'confirmed'}
        assert sub_id == 1000 + msg['id']
        assert feed.subscription_count == 1
        assert feed.subscribed_addresses() == [WALLET_A]

    def test_subscribe_before_connect(self, feed):
        with pytest.raises(FeedError, match='not connected'):
            feed.subscribe(WALLET_A, lambda c: None)

    def test_subscribe_rejected(self, feed, sockets):
        feed.connect()
        sockets[0].reject = True
        with pytest.raises(FeedError, match='rejected'):
            feed.subscribe(WALLET_A, lambda c: None)
        assert feed.subscription_count == 0

    def test_subscribe_ack_timeout(self, feed, sockets):
        feed.connect()
        sockets[0].ack = False
        with pytest.raises(FeedError, match='No subscription ack'):
            feed.subscribe(WALLET_A, lambda c: None)


# ============================================================================
# TEST SUITE 2: Notification routing
# ============================================================================

class TestFeedNotifications:

    def test_routes_to_matching_callback(self, feed, sockets):
        feed.connect()
        got_a, got_b = [], []
        sub_a = feed.subscribe(WALLET_A, got_a.append)
        sub_b = feed.subscribe(WALLET_B, got_b.append)

        sockets[0].push(notification(sub_b, 2_500_000_000, slot=9))

        assert got_a == []
        assert len(got_b) == 1
        change = got_b[0]
        assert isinstance(change, AccountChange)
        assert change.address == WALLET_B
        assert change.lamports == 2_500_000_000
        assert change.slot == 9

    def test_unknown_subscription_is_ignored(self, feed, sockets):
        feed.connect()
        got = []
        feed.subscribe(WALLET_A, got.append)
        sockets[0].push(notification(424242, 1))
        assert got == []

    def test_malformed_payloads_are_dropped(self, feed, sockets):
        feed.connect()
        got = []
        sub = feed.subscribe(WALLET_A, got.append)

        sockets[0].push('not json at all')
        sockets[0].push([1, 2, 3])
        bad = notification(sub, 1)
        del bad['params']['result']['value']['lamports']
        sockets[0].push(bad)

        assert got == []
        assert feed.notifications_received == 0

    def test_callback_error_is_contained(self, feed, sockets):
        feed.connect()

        def broken(change):
            raise RuntimeError('subscriber bug')

        sub = feed.subscribe(WALLET_A, broken)
        sockets[0].push(notification(sub, 1))
        sockets[0].push(notification(sub, 2))

        assert feed.callback_errors == 2
        assert feed.notifications_received == 2


# ============================================================================
# TEST SUITE 3: Probe and close
# ============================================================================

class TestFeedLiveness:

    def test_probe_returns_version(self, feed):
        feed.connect()
        assert feed.probe() == {'solana-core': '1.18.22'}

    def test_probe_fails_after_close(self, feed):
        feed.connect()
        feed.close()
        with pytest.raises(FeedError):
            feed.probe()

    def test_probe_fails_when_server_closes(self, feed, sockets):
        feed.connect()
        sockets[0].close()
        feed.thread.join(timeout=1)

        assert not feed.is_connected
        with pytest.raises(FeedError):
            feed.probe()

    def test_stats(self, feed, sockets):
        feed.connect()
        sub = feed.subscribe(WALLET_A, lambda c: None)
        sockets[0].push(notification(sub, 1))

        stats = feed.get_stats()
        assert stats['connected'] is True
        assert stats['subscriptions'] == 1
        assert stats['notifications_received'] == 1
