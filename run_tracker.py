#!/usr/bin/env python3
"""
Solana Wallet Tracker - Main Runner

Watches a fixed set of wallets over the Solana websocket API and sends
a Telegram report whenever one of them changes:
1. Loads config (.env, environment, optional JSON file)
2. Subscribes every wallet through the connection supervisor
3. Rate-limits each wallet to one report per cooldown window
4. Re-subscribes everything when the liveness probe fails

Usage:
    python run_tracker.py
    python run_tracker.py --config tracker.json --cooldown 30
    python run_tracker.py --once 2UWHq9JNxnBi4ehpfivh9crJjG5EuayKCWsH9VuLXPeR
"""

import argparse
import json
import logging
import sys
import threading
import time
from datetime import datetime

from enrichment.solana_client import SolanaRpcClient
from enrichment.wallet_report import WalletReporter
from realtime.tracker import WalletTracker
from tracker_utils.config import load_config
from tracker_utils.errors import ConfigError, SolanaRpcError


LOG_FORMAT = '%(asctime)s %(levelname)-7s %(name)s: %(message)s'


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Solana Wallet Tracker')
    parser.add_argument('--config', default=None,
                        help='JSON config file (overrides environment)')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Log level (default: INFO)')
    parser.add_argument('--cooldown', type=float, default=None,
                        help='Per-wallet cooldown in seconds')
    parser.add_argument('--probe-interval', type=float, default=None,
                        help='Seconds between connection probes')
    parser.add_argument('--status-interval', type=float, default=300.0,
                        help='Seconds between status log lines')
    parser.add_argument('--no-notify', action='store_true',
                        help='Log reports only, do not send Telegram messages')
    parser.add_argument('--once', metavar='ADDRESS', default=None,
                        help='Build one report for ADDRESS, print it and exit')
    return parser.parse_args(argv)


def run_once(config, address: str) -> int:
    """One-shot report, no subscriptions, no Telegram"""
    rpc = SolanaRpcClient(config.rpc_url, commitment=config.commitment,
                          timeout=config.request_timeout)
    try:
        lamports = rpc.get_balance(address)
    except SolanaRpcError as e:
        logging.getLogger('wallet_tracker').error(f'Cannot read balance for {address}: {e}')
        return 1

    reporter = WalletReporter(
        rpc,
        swap_program_ids=config.swap_program_ids,
        token_program_id=config.token_program_id,
        include_balance_snapshots=config.include_balance_snapshots,
    )
    print(reporter.build_report(address, lamports).text)
    return 0


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format=LOG_FORMAT)
    logger = logging.getLogger('wallet_tracker')

    try:
        config = load_config(args.config)
        if args.cooldown is not None:
            config.cooldown_seconds = args.cooldown
        if args.probe_interval is not None:
            config.probe_interval_seconds = args.probe_interval

        if args.once:
            return run_once(config, args.once)

        config.validate(require_notifier=not args.no_notify)
    except ConfigError as e:
        logger.error(f'Configuration error: {e}')
        return 1

    print("=" * 60)
    print("SOLANA WALLET TRACKER")
    print("=" * 60)
    logger.info(json.dumps({'event': 'config', **config.to_log_dict()}))

    tracker = WalletTracker.from_config(config, notify=not args.no_notify)
    stop = threading.Event()

    def log_status():
        while not stop.wait(args.status_interval):
            stats = tracker.get_stats()
            supervisor = stats['supervisor']
            logger.info(json.dumps({
                'event': 'status',
                'time': datetime.now().strftime('%H:%M:%S'),
                'state': supervisor['state'],
                'reconnects': supervisor['reconnects'],
                'reports_sent': stats['reports_sent'],
                'triggers': sum(c['triggers'] for c in stats['coalescers']),
                'suppressed': sum(c['suppressed'] for c in stats['coalescers']),
            }))

    tracker.start()
    logger.info('Wallet tracking initialized. Press Ctrl+C to stop')

    status_thread = threading.Thread(target=log_status, daemon=True)
    status_thread.start()

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\nShutting down...")
    finally:
        stop.set()
        tracker.stop()

    return 0


if __name__ == '__main__':
    sys.exit(main())
