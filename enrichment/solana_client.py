"""
Solana JSON-RPC Client

Thin wrapper over the Solana HTTP JSON-RPC API for the reads the
tracker needs:
- latest signature for an address
- parsed transaction body
- SPL token accounts owned by an address
- node version (liveness probe)

Every call has a timeout and raises SolanaRpcError on failure, so
callers can decide per section what to do with a failed read.

Usage:
    from enrichment.solana_client import SolanaRpcClient

    client = SolanaRpcClient('https://api.mainnet-beta.solana.com')
    sig = client.get_latest_signature('2UWHq9JN...')
    tx = client.get_transaction(sig)
"""

import itertools
import threading
import time
from typing import List, Optional

import requests

from tracker_utils.errors import SolanaRpcError


LAMPORTS_PER_SOL = 1_000_000_000


class SolanaRpcClient:
    """
    Solana JSON-RPC client.

    Rate limiting: public mainnet endpoints allow roughly 10 requests/s
    per IP for most methods. Shared by every worker thread, so the
    limiter is locked.
    """

    def __init__(self, rpc_url: str,
                 commitment: str = 'confirmed',
                 timeout: float = 10.0,
                 calls_per_second: float = 8):
        self.rpc_url = rpc_url
        self.commitment = commitment
        self.timeout = timeout

        # Rate limiting
        self.calls_per_second = calls_per_second
        self.last_call_time = 0
        self._rate_lock = threading.Lock()

        self._ids = itertools.count(1)

        # Stats
        self.calls_made = 0
        self.calls_failed = 0

    def _rate_limit(self):
        """Simple rate limiting"""
        if self.calls_per_second <= 0:
            return
        with self._rate_lock:
            now = time.time()
            min_interval = 1.0 / self.calls_per_second
            elapsed = now - self.last_call_time
            if elapsed < min_interval:
                time.sleep(min_interval - elapsed)
            self.last_call_time = time.time()

    def _rpc_call(self, method: str, params: list):
        """Make JSON-RPC call, return the 'result' member"""
        self._rate_limit()
        self.calls_made += 1

        try:
            response = requests.post(
                self.rpc_url,
                json={
                    'jsonrpc': '2.0',
                    'id': next(self._ids),
                    'method': method,
                    'params': params
                },
                timeout=self.timeout
            )
            response.raise_for_status()
            result = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            self.calls_failed += 1
            raise SolanaRpcError(f'{method} failed: {e}') from e

        if not isinstance(result, dict):
            self.calls_failed += 1
            raise SolanaRpcError(f'{method} returned malformed response')

        if 'error' in result:
            self.calls_failed += 1
            raise SolanaRpcError(f"{method} RPC error: {result['error']}")

        return result.get('result')

    def get_version(self) -> dict:
        """Node version info - cheap call used as a liveness probe"""
        result = self._rpc_call('getVersion', [])
        if not isinstance(result, dict):
            raise SolanaRpcError('getVersion returned malformed response')
        return result

    def get_balance(self, address: str) -> int:
        """Native balance in lamports"""
        result = self._rpc_call('getBalance', [address, {'commitment': self.commitment}])
        try:
            return int(result['value'])
        except (TypeError, KeyError, ValueError) as e:
            raise SolanaRpcError(f'getBalance returned malformed response: {result!r}') from e

    def get_signatures_for_address(self, address: str, limit: int = 1) -> List[dict]:
        """Most recent signatures first"""
        result = self._rpc_call('getSignaturesForAddress', [
            address,
            {'limit': limit, 'commitment': self.commitment}
        ])
        if result is None:
            return []
        if not isinstance(result, list):
            raise SolanaRpcError('getSignaturesForAddress returned malformed response')
        return result

    def get_latest_signature(self, address: str) -> Optional[str]:
        """Signature of the most recent transaction, None if there is none"""
        signatures = self.get_signatures_for_address(address, limit=1)
        if not signatures:
            return None
        if not isinstance(signatures, list) or not isinstance(signatures[0], dict):
            raise SolanaRpcError(f'getSignaturesForAddress: unexpected result {str(signatures)[:100]}')
        return signatures[0].get('signature')

    def get_transaction(self, signature: str) -> Optional[dict]:
        """
        Parsed transaction body, None if the node does not know it.

        maxSupportedTransactionVersion=0 so versioned transactions
        are returned instead of rejected.
        """
        return self._rpc_call('getTransaction', [
            signature,
            {
                'encoding': 'jsonParsed',
                'commitment': self.commitment,
                'maxSupportedTransactionVersion': 0,
            }
        ])

    def get_token_accounts_by_owner(self, address: str, program_id: str) -> List[dict]:
        """
        Token accounts owned by address, jsonParsed.

        Returns the raw 'value' list; each entry is
        {'pubkey': ..., 'account': {'data': {'parsed': {'info': {...}}}}}
        """
        result = self._rpc_call('getTokenAccountsByOwner', [
            address,
            {'programId': program_id},
            {'encoding': 'jsonParsed', 'commitment': self.commitment}
        ])
        if not isinstance(result, dict) or not isinstance(result.get('value'), list):
            raise SolanaRpcError('getTokenAccountsByOwner returned malformed response')
        return result['value']

    def get_stats(self) -> dict:
        return {
            'rpc_url': self.rpc_url,
            'calls_made': self.calls_made,
            'calls_failed': self.calls_failed,
        }
