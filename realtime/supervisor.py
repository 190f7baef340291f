"""
Connection Supervisor

Periodic liveness probe for the feed handle. On failure the handle is
thrown away, a new one is built against the same endpoint, and every
wallet is subscribed again on it.

States:
    HEALTHY       probe passed (or reconnect finished)
    RECONNECTING  probe failed, handle being rebuilt

There is no terminal state: a failed probe or a failed rebuild is
retried on the next period, forever.

Usage:
    supervisor = ConnectionSupervisor(
        feed_factory=lambda: AccountFeed(ws_url, rpc),
        on_reconnect=tracker.subscribe_all,
        probe_interval=60.0,
    )
    supervisor.start()
    supervisor.feed   # always the latest live handle
"""

import json
import logging
import threading
from enum import Enum
from typing import Callable, Optional

from realtime.account_feed import AccountFeed


supervisor_logger = logging.getLogger('wallet_tracker.supervisor')

DEFAULT_PROBE_INTERVAL = 60.0


class SupervisorState(Enum):
    HEALTHY = "HEALTHY"
    RECONNECTING = "RECONNECTING"


class ConnectionSupervisor:
    """
    Owns the single live AccountFeed.

    Nothing else holds on to a feed: callers go through `feed` every time,
    so a replaced handle is never used again by new work.
    """

    def __init__(self,
                 feed_factory: Callable[[], AccountFeed],
                 on_reconnect: Callable[[AccountFeed], object],
                 probe_interval: float = DEFAULT_PROBE_INTERVAL):
        """
        Args:
            feed_factory: Builds and connects a new feed handle
            on_reconnect: Subscribe-all against a fresh handle
            probe_interval: Seconds between probes
        """
        self.feed_factory = feed_factory
        self.on_reconnect = on_reconnect
        self.probe_interval = probe_interval

        self.state = SupervisorState.HEALTHY
        self._feed: Optional[AccountFeed] = None
        self._feed_lock = threading.Lock()

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

        # Stats
        self.probes = 0
        self.probe_failures = 0
        self.reconnects = 0
        self.last_version: Optional[str] = None

    @property
    def feed(self) -> Optional[AccountFeed]:
        """The current live handle"""
        with self._feed_lock:
            return self._feed

    def start(self):
        """Build the first handle, subscribe everything, start probing"""
        if self._thread is not None:
            return

        self._stop.clear()
        if self._feed is None:
            self._rebuild(reason='startup')

        self._thread = threading.Thread(target=self._run_loop, daemon=True)
        self._thread.start()
        supervisor_logger.info(json.dumps({
            'event': 'supervisor_started',
            'probe_interval': self.probe_interval,
        }))

    def stop(self):
        """Stop probing and close the live handle"""
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None

        with self._feed_lock:
            feed, self._feed = self._feed, None
        if feed is not None:
            self._close_quietly(feed)

        supervisor_logger.info(json.dumps({
            'event': 'supervisor_stopped',
        }))

    def _run_loop(self):
        """Probe loop - never exits except on stop()"""
        while not self._stop.wait(self.probe_interval):
            try:
                self.check()
            except Exception as e:
                supervisor_logger.error(json.dumps({
                    'event': 'supervisor_error',
                    'error': repr(e),
                }))

    def check(self) -> SupervisorState:
        """One probe cycle; reconnects on failure. Returns the resulting state."""
        self.probes += 1
        feed = self.feed

        try:
            if feed is None:
                raise RuntimeError('no live feed handle')
            version = feed.probe()
        except Exception as e:
            self.probe_failures += 1
            supervisor_logger.error(json.dumps({
                'event': 'probe_failed',
                'error': str(e),
            }))
            self._rebuild(reason='probe_failed')
            return self.state

        self.last_version = version.get('solana-core') if isinstance(version, dict) else None
        self.state = SupervisorState.HEALTHY
        supervisor_logger.debug(json.dumps({
            'event': 'probe_ok',
            'solana_core': self.last_version,
        }))
        return self.state

    def _rebuild(self, reason: str):
        """Replace the handle as a unit and resubscribe"""
        self.state = SupervisorState.RECONNECTING
        supervisor_logger.warning(json.dumps({
            'event': 'reconnecting',
            'reason': reason,
        }))

        with self._feed_lock:
            old, self._feed = self._feed, None
        if old is not None:
            self._close_quietly(old)

        try:
            new_feed = self.feed_factory()
        except Exception as e:
            # Stay RECONNECTING; next probe retries
            supervisor_logger.error(json.dumps({
                'event': 'reconnect_failed',
                'error': str(e),
            }))
            return

        with self._feed_lock:
            self._feed = new_feed

        try:
            subscribed = self.on_reconnect(new_feed)
        except Exception as e:
            subscribed = None
            supervisor_logger.error(json.dumps({
                'event': 'resubscribe_error',
                'error': repr(e),
            }))

        if reason != 'startup':
            self.reconnects += 1
        self.state = SupervisorState.HEALTHY
        supervisor_logger.info(json.dumps({
            'event': 'reconnected' if reason != 'startup' else 'connected',
            'subscribed': subscribed,
        }))

    def _close_quietly(self, feed: AccountFeed):
        try:
            feed.close()
        except Exception as e:
            supervisor_logger.warning(json.dumps({
                'event': 'close_error',
                'error': str(e),
            }))

    def get_stats(self) -> dict:
        feed = self.feed
        return {
            'state': self.state.value,
            'probes': self.probes,
            'probe_failures': self.probe_failures,
            'reconnects': self.reconnects,
            'last_version': self.last_version,
            'feed': feed.get_stats() if feed is not None else None,
        }
