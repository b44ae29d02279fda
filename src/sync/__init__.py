"""Room sync client: connection lifecycle, optimistic edits, credentials."""

from sync.client import RoomSnapshot, SyncClient, SyncStrategy
from sync.config import SyncConfig
from sync.connection import ConnectionMetrics, ConnectionState, backoff_delay_ms
from sync.connection_manager import ConnectionManager
from sync.credentials import CredentialExchangeError, InvalidPasswordError, fetch_credential

__all__ = [
    "ConnectionManager",
    "ConnectionMetrics",
    "ConnectionState",
    "CredentialExchangeError",
    "InvalidPasswordError",
    "RoomSnapshot",
    "SyncClient",
    "SyncConfig",
    "SyncStrategy",
    "backoff_delay_ms",
    "fetch_credential",
]
