"""
Solana Account Feed

One live websocket session against a Solana node plus the RPC client
used for queries on the same endpoint. This is the feed handle: the
tracker subscribes every wallet on it, and the supervisor replaces it
as a unit when it stops answering.

The feed does NOT reconnect on its own. Subscriptions are bound to the
session, so a new session means a new handle and a fresh subscribe-all
pass.

Usage:
    from realtime.account_feed import AccountFeed

    feed = AccountFeed('wss://api.mainnet-beta.solana.com', rpc)
    feed.connect()
    feed.subscribe('2UWHq9JN...', on_change)
    feed.probe()   # raises if dead
    feed.close()
"""

import itertools
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

import websocket

from enrichment.solana_client import SolanaRpcClient
from tracker_utils.errors import FeedError


feed_logger = logging.getLogger('wallet_tracker.feed')

CONNECT_POLL_SECONDS = 0.05


@dataclass
class AccountChange:
    """Raw account-change notification for one tracked wallet"""
    address: str
    lamports: int
    slot: Optional[int] = None
    received_at: float = 0
    raw: dict = field(default_factory=dict)


ChangeCallback = Callable[[AccountChange], None]


@dataclass
class _PendingRequest:
    address: str
    callback: ChangeCallback
    done: threading.Event = field(default_factory=threading.Event)
    subscription_id: Optional[int] = None
    error: Optional[str] = None


class AccountFeed:
    """
    Websocket accountSubscribe client for a fixed endpoint.

    Handles:
    - Connection (background thread, run_forever)
    - accountSubscribe request/ack matching
    - Routing accountNotification to the subscriber's callback
    """

    def __init__(self, ws_url: str,
                 rpc: SolanaRpcClient,
                 commitment: str = 'confirmed',
                 connect_timeout: float = 10.0,
                 subscribe_timeout: float = 10.0,
                 ws_factory: Callable = websocket.WebSocketApp):
        """
        Args:
            ws_url: Solana websocket endpoint
            rpc: RPC client for queries and the liveness probe
            commitment: Commitment level for subscriptions
            connect_timeout: Seconds to wait for the socket to open
            subscribe_timeout: Seconds to wait for each subscription ack
            ws_factory: WebSocketApp constructor (swapped in tests)
        """
        self.ws_url = ws_url
        self.rpc = rpc
        self.commitment = commitment
        self.connect_timeout = connect_timeout
        self.subscribe_timeout = subscribe_timeout
        self.ws_factory = ws_factory

        self.ws = None
        self.thread: Optional[threading.Thread] = None
        self.lock = threading.Lock()
        self._opened = threading.Event()
        self._closed = threading.Event()
        self._ids = itertools.count(1)

        # {request_id: _PendingRequest}
        self._pending: Dict[int, _PendingRequest] = {}
        # {subscription_id: (address, callback)}
        self._subscriptions: Dict[int, tuple] = {}

        # Stats
        self.notifications_received = 0
        self.callback_errors = 0
        self.last_message_ts = 0

    @property
    def is_connected(self) -> bool:
        return self._opened.is_set() and not self._closed.is_set()

    @property
    def subscription_count(self) -> int:
        with self.lock:
            return len(self._subscriptions)

    def subscribed_addresses(self) -> list:
        with self.lock:
            return [address for address, _ in self._subscriptions.values()]

    def connect(self):
        """Open the websocket; raises FeedError if it does not open in time"""
        feed_logger.info(f'[Feed] Connecting to {self.ws_url}...')

        self.ws = self.ws_factory(
            self.ws_url,
            on_open=self._on_open,
            on_message=self._on_message,
            on_error=self._on_error,
            on_close=self._on_close
        )
        self.thread = threading.Thread(target=self._run, daemon=True)
        self.thread.start()

        # Poll both events so a refused/unresolvable endpoint fails fast
        deadline = time.monotonic() + self.connect_timeout
        while not self._opened.wait(CONNECT_POLL_SECONDS):
            if self._closed.is_set():
                self.close()
                raise FeedError(f'Websocket to {self.ws_url} closed before opening')
            if time.monotonic() >= deadline:
                self.close()
                raise FeedError(f'Websocket did not open within {self.connect_timeout}s')
        if self._closed.is_set():
            raise FeedError('Websocket closed during connect')

    def _run(self):
        try:
            self.ws.run_forever(ping_interval=30, ping_timeout=10)
        except Exception as e:
            feed_logger.error(f'[Feed] Connection error: {e}')
        finally:
            self._mark_closed()

    def subscribe(self, address: str, callback: ChangeCallback) -> int:
        """
        Subscribe to account changes for address.

        Blocks until the node acks with a subscription id.
        Returns the subscription id; raises FeedError on failure.
        """
        if not self.is_connected:
            raise FeedError(f'Cannot subscribe {address}: feed not connected')

        request_id = next(self._ids)
        pending = _PendingRequest(address=address, callback=callback)
        with self.lock:
            self._pending[request_id] = pending

        msg = {
            'jsonrpc': '2.0',
            'id': request_id,
            'method': 'accountSubscribe',
            'params': [
                address,
                {'encoding': 'jsonParsed', 'commitment': self.commitment}
            ]
        }

        try:
            self.ws.send(json.dumps(msg))
        except Exception as e:
            with self.lock:
                self._pending.pop(request_id, None)
            raise FeedError(f'Subscribe send failed for {address}: {e}') from e

        acked = pending.done.wait(self.subscribe_timeout)
        with self.lock:
            self._pending.pop(request_id, None)

        if not acked:
            raise FeedError(f'No subscription ack for {address} within {self.subscribe_timeout}s')
        if pending.error:
            raise FeedError(f'Subscribe rejected for {address}: {pending.error}')
        return pending.subscription_id

    def probe(self) -> dict:
        """
        Liveness probe: socket still open and node answers getVersion.

        Returns the version info; raises FeedError / SolanaRpcError.
        """
        if not self.is_connected:
            raise FeedError('Websocket is closed')
        return self.rpc.get_version()

    def close(self):
        """Close the socket; pending subscribes fail, callbacks stop"""
        self._mark_closed()
        if self.ws:
            try:
                self.ws.close()
            except Exception as e:
                feed_logger.warning(f'[Feed] Error while closing: {e}')
        if self.thread and self.thread is not threading.current_thread():
            self.thread.join(timeout=5)

    def _mark_closed(self):
        self._closed.set()
        with self.lock:
            pending = list(self._pending.values())
        for req in pending:
            if not req.done.is_set():
                req.error = 'connection closed'
                req.done.set()

    def _on_open(self, ws):
        feed_logger.info('[Feed] Connected')
        self._opened.set()

    def _on_message(self, ws, message):
        self.last_message_ts = time.time()

        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            feed_logger.warning(f'[Feed] Invalid JSON: {message[:100]}')
            return

        if not isinstance(data, dict):
            return

        # Subscription ack / rejection
        if 'id' in data:
            self._handle_response(data)
            return

        if data.get('method') == 'accountNotification':
            self._handle_notification(data.get('params') or {})

    def _handle_response(self, data: dict):
        with self.lock:
            pending = self._pending.get(data.get('id'))
            if pending is None:
                return
            if 'error' in data:
                pending.error = str(data['error'])
            else:
                pending.subscription_id = data.get('result')
                self._subscriptions[pending.subscription_id] = (pending.address, pending.callback)
        pending.done.set()

    def _handle_notification(self, params: dict):
        subscription_id = params.get('subscription')
        with self.lock:
            entry = self._subscriptions.get(subscription_id)
        if entry is None:
            return

        address, callback = entry
        result = params.get('result') or {}
        value = result.get('value') or {}

        try:
            lamports = int(value['lamports'])
        except (KeyError, TypeError, ValueError):
            feed_logger.warning(f'[Feed] Malformed notification for {address}: {str(params)[:200]}')
            return

        self.notifications_received += 1
        change = AccountChange(
            address=address,
            lamports=lamports,
            slot=(result.get('context') or {}).get('slot'),
            received_at=time.time(),
            raw=value,
        )

        # Never let a subscriber error kill the reader thread
        try:
            callback(change)
        except Exception as e:
            self.callback_errors += 1
            feed_logger.error(f'[Feed] Callback error for {address}: {e!r}')

    def _on_error(self, ws, error):
        feed_logger.error(f'[Feed] Error: {error}')

    def _on_close(self, ws, close_status_code, close_msg):
        feed_logger.warning(f'[Feed] Closed: {close_status_code} - {close_msg}')
        self._mark_closed()

    def get_stats(self) -> dict:
        return {
            'connected': self.is_connected,
            'subscriptions': self.subscription_count,
            'notifications_received': self.notifications_received,
            'callback_errors': self.callback_errors,
            'last_message_ts': self.last_message_ts,
        }
