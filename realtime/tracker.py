"""
Wallet Tracker - orchestrator

Wires the pieces together:

    AccountFeed --notification--> UpdateCoalescer (one per wallet)
        --allowed--> WalletReporter --report--> Notifier

and hands the feed's lifecycle to the ConnectionSupervisor, which calls
back into subscribe_all() whenever it builds a new handle.

Usage:
    from realtime.tracker import WalletTracker

    tracker = WalletTracker.from_config(config)
    tracker.start()
    ...
    tracker.stop()
"""

import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Iterable, Optional

from enrichment.solana_client import SolanaRpcClient
from enrichment.wallet_report import WalletReport, WalletReporter
from notifications.telegram import Notifier, TelegramTransport
from realtime.account_feed import AccountChange, AccountFeed
from realtime.coalescer import UpdateCoalescer
from realtime.supervisor import ConnectionSupervisor
from tracker_utils.config import TrackerConfig


tracker_logger = logging.getLogger('wallet_tracker.tracker')
report_logger = logging.getLogger('wallet_tracker.reports')


class WalletTracker:
    """
    Owns the fixed wallet set and one coalescer per wallet.

    The wallet list is frozen at construction; there is no add/remove
    at runtime.
    """

    def __init__(self,
                 wallet_addresses: Iterable[str],
                 reporter: WalletReporter,
                 notifier: Optional[Notifier],
                 feed_factory: Callable[[], AccountFeed],
                 cooldown: float = 15.0,
                 probe_interval: float = 60.0,
                 trailing_edge: bool = True,
                 max_workers: int = 4,
                 clock: Callable[[], float] = time.time,
                 executor=None):
        """
        Args:
            wallet_addresses: Wallets to track (exact strings, deduplicated)
            reporter: Builds reports from chain reads
            notifier: Delivers reports; None = log only
            feed_factory: Builds and connects a new AccountFeed
            cooldown: Per-wallet cooldown window in seconds
            probe_interval: Seconds between liveness probes
            trailing_edge: Deferred run for changes suppressed in the window
            max_workers: Worker threads for enrichment + notify
            clock: Time source for the coalescers
            executor: Pre-built executor (tests); default ThreadPoolExecutor
        """
        # dict keeps config order and drops duplicates
        self.wallet_addresses = list(dict.fromkeys(wallet_addresses))
        self.reporter = reporter
        self.notifier = notifier

        self.executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix='wallet-report')

        self.coalescers: Dict[str, UpdateCoalescer] = {
            address: UpdateCoalescer(
                address,
                on_trigger=self.handle_trigger,
                cooldown=cooldown,
                trailing_edge=trailing_edge,
                clock=clock,
                submit=self.executor.submit,
            )
            for address in self.wallet_addresses
        }

        self.supervisor = ConnectionSupervisor(
            feed_factory=feed_factory,
            on_reconnect=self.subscribe_all,
            probe_interval=probe_interval,
        )

        # Stats
        self.reports_sent = 0
        self.subscribe_failures = 0

    @classmethod
    def from_config(cls, config: TrackerConfig, notify: bool = True) -> 'WalletTracker':
        """Build the production wiring from a validated config"""
        rpc = SolanaRpcClient(config.rpc_url, commitment=config.commitment,
                              timeout=config.request_timeout)

        def feed_factory() -> AccountFeed:
            # Each handle gets its own RPC client
            feed = AccountFeed(
                config.ws_url,
                SolanaRpcClient(config.rpc_url, commitment=config.commitment,
                                timeout=config.request_timeout),
                commitment=config.commitment,
                connect_timeout=config.request_timeout,
                subscribe_timeout=config.request_timeout,
            )
            feed.connect()
            return feed

        reporter = WalletReporter(
            rpc,
            swap_program_ids=config.swap_program_ids,
            token_program_id=config.token_program_id,
            include_balance_snapshots=config.include_balance_snapshots,
        )

        notifier = None
        if notify:
            notifier = Notifier(
                TelegramTransport(config.bot_token, timeout=config.request_timeout),
                config.chat_ids,
            )

        return cls(
            config.wallet_addresses,
            reporter=reporter,
            notifier=notifier,
            feed_factory=feed_factory,
            cooldown=config.cooldown_seconds,
            probe_interval=config.probe_interval_seconds,
            trailing_edge=config.trailing_edge,
            max_workers=config.max_workers,
        )

    def start(self):
        """Connect, subscribe every wallet, start the probe loop"""
        tracker_logger.info(f'[Tracker] Starting, {len(self.wallet_addresses)} wallets')
        self.supervisor.start()

    def stop(self):
        tracker_logger.info('[Tracker] Stopping')
        for coalescer in self.coalescers.values():
            coalescer.cancel()
        self.supervisor.stop()
        self.executor.shutdown(wait=False)

    def subscribe_all(self, feed: AccountFeed) -> int:
        """
        Subscribe every wallet on `feed`.

        One failing wallet does not stop the others. Returns the number of
        successful subscriptions.
        """
        tracker_logger.info('[Tracker] Attempting to subscribe to wallet updates...')
        subscribed = 0

        for address in self.wallet_addresses:
            tracker_logger.info(f'[Tracker] Subscribing to updates for wallet: {address}')
            try:
                feed.subscribe(address, self.coalescers[address].on_change)
                subscribed += 1
            except Exception as e:
                self.subscribe_failures += 1
                tracker_logger.error(f'[Tracker] Error during subscription for {address}: {e}')

        tracker_logger.info(json.dumps({
            'event': 'subscribe_all',
            'subscribed': subscribed,
            'wallets': len(self.wallet_addresses),
        }))
        return subscribed

    def handle_trigger(self, change: AccountChange) -> WalletReport:
        """Enrichment + notify for one allowed change (worker thread)"""
        feed = self.supervisor.feed
        rpc = feed.rpc if feed is not None else None

        report = self.reporter.build_report(change.address, change.lamports, rpc=rpc)
        report_logger.info(report.text)

        if self.notifier is not None:
            results = self.notifier.notify(report.text)
            if any(r.ok for r in results):
                self.reports_sent += 1
        return report

    def get_stats(self) -> dict:
        return {
            'wallets': len(self.wallet_addresses),
            'reports_sent': self.reports_sent,
            'subscribe_failures': self.subscribe_failures,
            'supervisor': self.supervisor.get_stats(),
            'reporter': self.reporter.get_stats(),
            'notifier': self.notifier.get_stats() if self.notifier else None,
            'coalescers': [c.get_stats() for c in self.coalescers.values()],
        }
