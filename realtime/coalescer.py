"""
Update Coalescer - per-wallet rate limiter

Turns a high-frequency stream of account-change events into at most
one enrichment+notify run per cooldown window.

Rules (per wallet):
- never fetched            -> run now
- now - last_fetch < COOLDOWN -> suppress, mark pending_change
- otherwise                -> last_fetch = now, clear pending, run now

Runs are serialized per wallet: an event that arrives while a run is
still executing is treated like a cooldown hit.

Trailing edge (optional, on by default): a change suppressed inside the
window schedules ONE deferred run at last_fetch + COOLDOWN, so the last
state of a burst is always reported. The deadline is a single timer per
wallet, never a queue.

Usage:
    from realtime.coalescer import UpdateCoalescer

    coalescer = UpdateCoalescer(address, on_trigger=run_report, cooldown=15.0)
    feed.subscribe(address, coalescer.on_change)
"""

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from realtime.account_feed import AccountChange


coalescer_logger = logging.getLogger('wallet_tracker.coalescer')

DEFAULT_COOLDOWN_SECONDS = 15.0


@dataclass
class CoalescingState:
    """Coalescing state for one wallet - owned by its UpdateCoalescer"""
    address: str
    last_fetch_time: Optional[float] = None  # None = never fetched
    pending_change: bool = False
    in_flight: bool = False
    latest_change: Optional[AccountChange] = None

    # Stats
    events_seen: int = 0
    triggers: int = 0
    suppressed: int = 0

    def elapsed(self, now: float) -> float:
        if self.last_fetch_time is None:
            return float('inf')
        return now - self.last_fetch_time


def _run_inline(fn: Callable[[], None]):
    fn()


def _start_timer(delay: float, fn: Callable[[], None]):
    timer = threading.Timer(delay, fn)
    timer.daemon = True
    timer.start()
    return timer


class UpdateCoalescer:
    """
    Rate limiter for a single tracked wallet.

    on_change() is cheap and is called on the feed's reader thread; the
    expensive work (on_trigger) goes through `submit`, which runs it
    inline by default or on a worker pool when the tracker passes one.
    """

    def __init__(self, address: str,
                 on_trigger: Callable[[AccountChange], None],
                 cooldown: float = DEFAULT_COOLDOWN_SECONDS,
                 trailing_edge: bool = True,
                 clock: Callable[[], float] = time.time,
                 submit: Callable[[Callable[[], None]], object] = None,
                 scheduler: Callable[[float, Callable[[], None]], object] = None):
        """
        Args:
            address: Wallet this coalescer owns
            on_trigger: Enrichment + notify for one change
            cooldown: Minimum seconds between two runs
            trailing_edge: Schedule a deferred run for changes suppressed in the window
            clock: Time source (seconds)
            submit: Runs a zero-arg callable (e.g. executor.submit)
            scheduler: (delay, fn) -> object with cancel()
        """
        self.address = address
        self.on_trigger = on_trigger
        self.cooldown = cooldown
        self.trailing_edge = trailing_edge
        self.clock = clock
        self.submit = submit or _run_inline
        self.scheduler = scheduler or _start_timer

        self.state = CoalescingState(address=address)
        self.lock = threading.Lock()
        self._timer = None
        # Bumped on every arm/cancel; a callback from an older timer is stale
        self._timer_gen = 0

    def on_change(self, change: AccountChange) -> bool:
        """
        Handle one raw change event.

        Returns True if a run was started, False if suppressed.
        """
        with self.lock:
            st = self.state
            st.events_seen += 1
            now = self.clock()

            if st.elapsed(now) < self.cooldown or st.in_flight:
                st.pending_change = True
                st.latest_change = change
                st.suppressed += 1
                if self.trailing_edge:
                    self._schedule_deadline(now)
                coalescer_logger.debug(json.dumps({
                    'event': 'change_suppressed',
                    'wallet': self.address,
                    'in_flight': st.in_flight,
                    'since_last_s': round(st.elapsed(now), 3),
                }))
                return False

            self._begin_run(now)

        self._dispatch(change, trigger='change')
        return True

    def _begin_run(self, now: float):
        """Claim the run slot. Caller holds the lock."""
        st = self.state
        st.last_fetch_time = now
        st.pending_change = False
        st.latest_change = None
        st.in_flight = True
        st.triggers += 1
        self._cancel_timer()

    def _cancel_timer(self):
        """Caller holds the lock."""
        self._timer_gen += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _schedule_deadline(self, now: float):
        """Arm the single trailing-edge timer. Caller holds the lock."""
        st = self.state
        if self._timer is not None or st.in_flight:
            return
        deadline = st.last_fetch_time + self.cooldown
        self._timer_gen += 1
        gen = self._timer_gen
        self._timer = self.scheduler(max(0.0, deadline - now),
                                     lambda: self._on_deadline(gen))

    def _on_deadline(self, gen: int):
        """Trailing-edge timer fired"""
        with self.lock:
            if gen != self._timer_gen:
                return
            self._timer = None
            st = self.state
            if not st.pending_change or st.in_flight:
                return

            now = self.clock()
            if st.elapsed(now) < self.cooldown:
                self._schedule_deadline(now)
                return

            change = st.latest_change
            self._begin_run(now)

        self._dispatch(change, trigger='deadline')

    def _dispatch(self, change: AccountChange, trigger: str):
        coalescer_logger.info(json.dumps({
            'event': 'change_triggered',
            'wallet': self.address,
            'trigger': trigger,
            'lamports': change.lamports,
            'slot': change.slot,
        }))
        try:
            self.submit(lambda: self._run(change))
        except Exception as e:
            # e.g. executor already shut down
            coalescer_logger.error(json.dumps({
                'event': 'dispatch_error',
                'wallet': self.address,
                'error': str(e),
            }))
            self._finish_run()

    def _run(self, change: AccountChange):
        try:
            self.on_trigger(change)
        except Exception as e:
            coalescer_logger.error(json.dumps({
                'event': 'run_error',
                'wallet': self.address,
                'error': repr(e),
            }))
        finally:
            self._finish_run()

    def _finish_run(self):
        with self.lock:
            self.state.in_flight = False
            if self.trailing_edge and self.state.pending_change:
                self._schedule_deadline(self.clock())

    def cancel(self):
        """Drop a scheduled trailing-edge run (shutdown)"""
        with self.lock:
            self._cancel_timer()

    @property
    def has_scheduled_run(self) -> bool:
        return self._timer is not None

    def get_stats(self) -> dict:
        st = self.state
        return {
            'wallet': self.address,
            'last_fetch_time': st.last_fetch_time,
            'pending_change': st.pending_change,
            'in_flight': st.in_flight,
            'scheduled': self.has_scheduled_run,
            'events_seen': st.events_seen,
            'triggers': st.triggers,
            'suppressed': st.suppressed,
        }
