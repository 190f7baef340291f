"""Exception hierarchy for the wallet tracker"""


class TrackerError(Exception):
    """Base class for every error raised by the tracker"""


class ConfigError(TrackerError):
    """Missing or invalid configuration - fatal at startup"""


class SolanaRpcError(TrackerError):
    """JSON-RPC call failed (transport, HTTP status, or RPC error object)"""


class FeedError(TrackerError):
    """Websocket feed could not connect or subscribe"""


class DeliveryError(TrackerError):
    """A notification could not be delivered to one destination"""
