"""
Real-time wallet tracking for Solana.

Components:
- AccountFeed: Websocket accountSubscribe client (the feed handle)
- UpdateCoalescer: Per-wallet cooldown / rate limiter
- ConnectionSupervisor: Liveness probe + reconnect-and-resubscribe
- WalletTracker: Orchestrator

Usage:
    from realtime import WalletTracker
    from tracker_utils.config import load_config

    config = load_config()
    config.validate()

    tracker = WalletTracker.from_config(config)
    tracker.start()
"""

from realtime.account_feed import AccountFeed, AccountChange
from realtime.coalescer import UpdateCoalescer, CoalescingState
from realtime.supervisor import ConnectionSupervisor, SupervisorState
from realtime.tracker import WalletTracker

__all__ = [
    # Feed
    'AccountFeed',
    'AccountChange',

    # Coalescing
    'UpdateCoalescer',
    'CoalescingState',

    # Supervision
    'ConnectionSupervisor',
    'SupervisorState',

    # Orchestration
    'WalletTracker',
]
