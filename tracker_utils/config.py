"""
Tracker configuration.

Values come from (later wins):
1. .env file in the working directory (python-dotenv)
2. Environment variables
3. Optional JSON config file

Lists (wallets, chat ids, swap programs) are comma-separated in the
environment and plain JSON arrays in the config file.
"""

import json
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from dotenv import find_dotenv, load_dotenv

from tracker_utils.errors import ConfigError


DEFAULT_RPC_URL = 'https://api.mainnet-beta.solana.com'

# SPL Token program
TOKEN_PROGRAM_ID = 'TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA'

# Known swap / DEX programs
KNOWN_SWAP_PROGRAM_IDS = [
    'RVKd61ztZW9VYGrgzeXkqUyXTN4C2xz7RtXnYmAB3Jo',
    '9xQeWvG816bUx9EPv6gSuE7iEEh7ouE9Z2w2n7aM6bZX',
    'JUP4Fb2cqiRUcaTHdrPC8h2gNsA2ETXiPDD33WcGuJB',
    '9W5kdiR2b1aGZTVysb3tYZkzDU5QbBhAsCRc5Qugosxh',
]

# env var -> (field, kind)
ENV_FIELDS = {
    'SOLANA_RPC_URL': ('rpc_url', 'str'),
    'SOLANA_WS_URL': ('ws_url', 'str'),
    'SOLANA_COMMITMENT': ('commitment', 'str'),
    'TELEGRAM_BOT_TOKEN': ('bot_token', 'str'),
    'TELEGRAM_CHAT_IDS': ('chat_ids', 'list'),
    'WALLET_ADDRESSES': ('wallet_addresses', 'list'),
    'SWAP_PROGRAM_IDS': ('swap_program_ids', 'list'),
    'FETCH_COOLDOWN_SECONDS': ('cooldown_seconds', 'float'),
    'PROBE_INTERVAL_SECONDS': ('probe_interval_seconds', 'float'),
    'REQUEST_TIMEOUT': ('request_timeout', 'float'),
    'MAX_WORKERS': ('max_workers', 'int'),
    'TRAILING_EDGE': ('trailing_edge', 'bool'),
    'INCLUDE_BALANCE_SNAPSHOTS': ('include_balance_snapshots', 'bool'),
}


@dataclass
class TrackerConfig:
    """Everything the tracker needs at startup"""
    rpc_url: str = DEFAULT_RPC_URL
    ws_url: str = ''  # Derived from rpc_url when empty
    commitment: str = 'confirmed'

    wallet_addresses: List[str] = field(default_factory=list)

    # Telegram
    bot_token: str = ''
    chat_ids: List[str] = field(default_factory=list)

    # Timing (seconds)
    cooldown_seconds: float = 15.0
    probe_interval_seconds: float = 60.0
    request_timeout: float = 10.0

    # Enrichment
    swap_program_ids: List[str] = field(default_factory=lambda: list(KNOWN_SWAP_PROGRAM_IDS))
    token_program_id: str = TOKEN_PROGRAM_ID
    include_balance_snapshots: bool = True

    # Coalescing
    trailing_edge: bool = True
    max_workers: int = 4

    def __post_init__(self):
        if not self.ws_url:
            self.ws_url = derive_ws_url(self.rpc_url)

    def validate(self, require_notifier: bool = True):
        """Raise ConfigError if the tracker cannot start with this config"""
        if require_notifier:
            if not self.bot_token:
                raise ConfigError('TELEGRAM_BOT_TOKEN is missing')
            if not self.chat_ids:
                raise ConfigError('TELEGRAM_CHAT_IDS is missing')
        if not self.wallet_addresses:
            raise ConfigError('WALLET_ADDRESSES is missing')
        if self.cooldown_seconds <= 0:
            raise ConfigError(f'cooldown must be positive, got {self.cooldown_seconds}')
        if self.probe_interval_seconds <= 0:
            raise ConfigError(f'probe interval must be positive, got {self.probe_interval_seconds}')
        if self.request_timeout <= 0:
            raise ConfigError(f'request timeout must be positive, got {self.request_timeout}')
        if self.max_workers < 1:
            raise ConfigError(f'max_workers must be >= 1, got {self.max_workers}')

    def to_log_dict(self) -> dict:
        """Config summary safe to log (no bot token)"""
        return {
            'rpc_url': self.rpc_url,
            'ws_url': self.ws_url,
            'wallets': len(self.wallet_addresses),
            'chats': len(self.chat_ids),
            'cooldown_s': self.cooldown_seconds,
            'probe_interval_s': self.probe_interval_seconds,
            'trailing_edge': self.trailing_edge,
        }


def derive_ws_url(rpc_url: str) -> str:
    """https://host -> wss://host, http://host -> ws://host"""
    if rpc_url.startswith('https://'):
        return 'wss://' + rpc_url[len('https://'):]
    if rpc_url.startswith('http://'):
        return 'ws://' + rpc_url[len('http://'):]
    return rpc_url


def _split_list(raw: str) -> List[str]:
    return [item.strip() for item in raw.split(',') if item.strip()]


def _parse_bool(raw) -> bool:
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() in ('1', 'true', 'yes', 'on')


def _convert(name: str, raw, kind: str):
    try:
        if kind == 'list':
            if isinstance(raw, list):
                return [str(item).strip() for item in raw if str(item).strip()]
            return _split_list(str(raw))
        if kind == 'float':
            return float(raw)
        if kind == 'int':
            return int(raw)
        if kind == 'bool':
            return _parse_bool(raw)
        return str(raw).strip()
    except (TypeError, ValueError) as e:
        raise ConfigError(f'Invalid value for {name}: {raw!r} ({e})') from e


def load_config(path: Optional[str] = None,
                env: Optional[Dict[str, str]] = None,
                dotenv: bool = True) -> TrackerConfig:
    """
    Build a TrackerConfig from .env, environment and an optional JSON file.

    Args:
        path: JSON config file (keys are TrackerConfig field names)
        env: Mapping to read instead of os.environ (tests)
        dotenv: Load .env into os.environ first

    Does not validate - call config.validate() before starting.
    """
    if env is None:
        if dotenv:
            load_dotenv(find_dotenv(usecwd=True))
        env = os.environ

    values = {}
    for env_name, (field_name, kind) in ENV_FIELDS.items():
        raw = env.get(env_name)
        if raw is None or raw == '':
            continue
        values[field_name] = _convert(env_name, raw, kind)

    if path:
        values.update(_load_json(path))

    return TrackerConfig(**values)


def _load_json(path: str) -> dict:
    kinds = {field_name: kind for field_name, kind in ENV_FIELDS.values()}
    kinds['token_program_id'] = 'str'

    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f'Cannot read config file {path}: {e}') from e

    if not isinstance(data, dict):
        raise ConfigError(f'Config file {path} must hold a JSON object')

    values = {}
    for key, raw in data.items():
        if key not in kinds:
            raise ConfigError(f'Unknown config key in {path}: {key}')
        values[key] = _convert(key, raw, kinds[key])
    return values
