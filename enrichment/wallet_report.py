"""
Wallet Report - Enrichment Reader

Turns an account-change notification into a human-readable report:
- SOL balance (taken from the notification, no extra round-trip)
- SPL token balances
- Most recent transaction, with swap detection

Each network section is guarded on its own. A failed read degrades
that section to one explanatory line; it never aborts the report.

Usage:
    from enrichment.wallet_report import WalletReporter

    reporter = WalletReporter(swap_program_ids=[...])
    report = reporter.build_report(address, lamports, rpc=rpc_client)
    print(report.text)
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence, Tuple

from enrichment.solana_client import LAMPORTS_PER_SOL, SolanaRpcClient
from tracker_utils.config import KNOWN_SWAP_PROGRAM_IDS, TOKEN_PROGRAM_ID
from tracker_utils.errors import SolanaRpcError


report_logger = logging.getLogger('wallet_tracker.enrichment')

REPORT_HEADER = '🔔 Dynamic Update 🔔'
NO_TRANSACTIONS_LINE = 'No recent transactions found.'
TX_NOT_FOUND_LINE = 'Unable to fetch transaction details.'
TX_ERROR_LINE = 'Error fetching transaction details.'
NO_TOKENS_LINE = 'No token accounts found.'
TOKENS_ERROR_LINE = 'Error fetching token balances.'
TIMESTAMP_NA = 'N/A'


def lamports_to_sol(lamports: int) -> float:
    return lamports / LAMPORTS_PER_SOL


def format_sol(lamports: int) -> str:
    return f'{lamports_to_sol(lamports):.8f}'


def detect_swap(program_ids: Iterable[str], known_swap_programs: Iterable[str]) -> bool:
    """True iff any program id exactly matches a known swap program"""
    known = set(known_swap_programs)
    for program_id in program_ids:
        if program_id in known:
            return True
    return False


@dataclass(frozen=True)
class TransactionSummary:
    """The parts of a parsed transaction that go into a report"""
    slot: int
    block_time: Optional[int]
    fee_lamports: int
    program_ids: Tuple[str, ...] = ()
    pre_balances: Tuple[int, ...] = ()
    post_balances: Tuple[int, ...] = ()
    signature: str = ''

    @property
    def fee_sol(self) -> float:
        return lamports_to_sol(self.fee_lamports)

    @property
    def timestamp(self) -> str:
        if not self.block_time:
            return TIMESTAMP_NA
        dt = datetime.fromtimestamp(self.block_time, tz=timezone.utc)
        return dt.strftime('%Y-%m-%d %H:%M:%S UTC')

    @classmethod
    def from_rpc(cls, tx: dict, signature: str = '') -> 'TransactionSummary':
        """
        Build from a jsonParsed getTransaction result.

        Raises KeyError/TypeError/ValueError on a malformed body.
        """
        if not isinstance(tx, dict):
            raise TypeError(f'transaction body is {type(tx).__name__}, not dict')
        meta = tx.get('meta') or {}
        message = tx['transaction']['message']
        if not isinstance(meta, dict) or not isinstance(message, dict):
            raise TypeError('meta/message is not an object')
        instructions = message.get('instructions') or []

        program_ids = []
        for ix in instructions:
            if not isinstance(ix, dict):
                raise TypeError(f'instruction is {type(ix).__name__}, not dict')
            program_id = ix.get('programId')
            if program_id is not None:
                program_ids.append(str(program_id))

        block_time = tx.get('blockTime')
        if block_time is not None and (isinstance(block_time, bool)
                                       or not isinstance(block_time, int)):
            raise TypeError(f'blockTime is {type(block_time).__name__}, not int')

        return cls(
            slot=int(tx['slot']),
            block_time=block_time,
            fee_lamports=int(meta.get('fee') or 0),
            program_ids=tuple(program_ids),
            pre_balances=tuple(int(b) for b in meta.get('preBalances') or []),
            post_balances=tuple(int(b) for b in meta.get('postBalances') or []),
            signature=signature,
        )

    def to_lines(self, known_swap_programs: Iterable[str],
                 include_balance_snapshots: bool = True) -> List[str]:
        lines = [
            f'Slot: {self.slot}',
            f'Timestamp: {self.timestamp}',
            f'Fee: {self.fee_sol:.8f} SOL',
        ]
        if include_balance_snapshots:
            lines.append('Pre-Transaction Balances: ' +
                         ', '.join(format_sol(b) for b in self.pre_balances))
            lines.append('Post-Transaction Balances: ' +
                         ', '.join(format_sol(b) for b in self.post_balances))

        swap = detect_swap(self.program_ids, known_swap_programs)
        lines.append(f"Swap Detected: {'YES' if swap else 'NO'}")
        return lines


@dataclass(frozen=True)
class WalletReport:
    """One notification, built fresh per triggered update"""
    address: str
    lamports: int
    lines: Tuple[str, ...]

    @property
    def sol_balance(self) -> float:
        return lamports_to_sol(self.lamports)

    @property
    def text(self) -> str:
        return '\n'.join(self.lines)

    @property
    def swap_detected(self) -> bool:
        return 'Swap Detected: YES' in self.lines


class WalletReporter:
    """
    Builds WalletReports from chain reads.

    Stateless apart from stats; safe to share between worker threads.
    """

    def __init__(self, rpc: Optional[SolanaRpcClient] = None,
                 swap_program_ids: Sequence[str] = None,
                 token_program_id: str = TOKEN_PROGRAM_ID,
                 include_balance_snapshots: bool = True):
        self.rpc = rpc
        self.swap_program_ids = tuple(swap_program_ids if swap_program_ids is not None
                                      else KNOWN_SWAP_PROGRAM_IDS)
        self.token_program_id = token_program_id
        self.include_balance_snapshots = include_balance_snapshots

        # Stats
        self.reports_built = 0
        self.section_failures = 0
        self.token_lines_skipped = 0

    def build_report(self, address: str, lamports: int,
                     rpc: Optional[SolanaRpcClient] = None) -> WalletReport:
        """
        Build the full report for one account change.

        rpc overrides the default client (the tracker passes the client
        of the live feed handle, which changes on reconnect).
        """
        rpc = rpc or self.rpc
        if rpc is None:
            raise ValueError('no RPC client to read from')

        lines = [
            REPORT_HEADER,
            f'Wallet: {address}',
            f'SOL Balance: {format_sol(lamports)} SOL',
            '',
            'Token Balances:',
        ]
        lines.extend(self.token_balance_lines(address, rpc))
        lines.append('')
        lines.append('Recent Transaction Details:')
        lines.extend(self.transaction_lines(address, rpc))

        self.reports_built += 1
        return WalletReport(address=address, lamports=lamports, lines=tuple(lines))

    def token_balance_lines(self, address: str, rpc: SolanaRpcClient) -> List[str]:
        """One 'Token: <mint>, Balance: <amount>' line per token account"""
        try:
            accounts = rpc.get_token_accounts_by_owner(address, self.token_program_id)
        except SolanaRpcError as e:
            self.section_failures += 1
            report_logger.error(f'[Enrichment] Failed to fetch token balances for {address}: {e}')
            return [TOKENS_ERROR_LINE]

        lines = []
        for entry in accounts:
            try:
                info = entry['account']['data']['parsed']['info']
                mint = info['mint']
                amount = info['tokenAmount']['uiAmountString']
            except (KeyError, TypeError) as e:
                self.token_lines_skipped += 1
                pubkey = entry.get('pubkey', '?') if isinstance(entry, dict) else '?'
                report_logger.warning(f'[Enrichment] Skipping unparsable token account '
                                      f'{pubkey} for {address}: {e!r}')
                continue
            lines.append(f'Token: {mint}, Balance: {amount}')

        if not accounts:
            return [NO_TOKENS_LINE]
        return lines

    def transaction_lines(self, address: str, rpc: SolanaRpcClient) -> List[str]:
        """Summary of the single most recent transaction"""
        try:
            signature = rpc.get_latest_signature(address)
            if not signature:
                return [NO_TRANSACTIONS_LINE]

            tx = rpc.get_transaction(signature)
            if not tx:
                return [TX_NOT_FOUND_LINE]

            summary = TransactionSummary.from_rpc(tx, signature=signature)
            # Out-of-range blockTime surfaces here, from fromtimestamp()
            return summary.to_lines(self.swap_program_ids, self.include_balance_snapshots)
        except (SolanaRpcError, KeyError, TypeError, ValueError,
                AttributeError, OverflowError, OSError) as e:
            self.section_failures += 1
            report_logger.error(f'[Enrichment] Failed to fetch transactions for {address}: {e!r}')
            return [TX_ERROR_LINE]

    def get_stats(self) -> dict:
        return {
            'reports_built': self.reports_built,
            'section_failures': self.section_failures,
            'token_lines_skipped': self.token_lines_skipped,
        }
