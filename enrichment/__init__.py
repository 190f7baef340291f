"""
Wallet Enrichment via Solana JSON-RPC

Turns a bare balance change into a readable report:
- SPL token balances
- Most recent transaction (slot, time, fee, balances)
- Swap detection against known DEX programs

Usage:
    from enrichment import SolanaRpcClient, WalletReporter

    rpc = SolanaRpcClient('https://api.mainnet-beta.solana.com')
    reporter = WalletReporter(rpc)
    report = reporter.build_report(address, lamports)
"""

from enrichment.solana_client import SolanaRpcClient, LAMPORTS_PER_SOL
from enrichment.wallet_report import (
    WalletReporter, WalletReport, TransactionSummary, detect_swap
)

__all__ = [
    'SolanaRpcClient',
    'LAMPORTS_PER_SOL',
    'WalletReporter',
    'WalletReport',
    'TransactionSummary',
    'detect_swap',
]
