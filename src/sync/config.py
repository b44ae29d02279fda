"""Room sync client configuration."""

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006
FORCED_RECONNECT = 4000


def _safe_int_env(name: str, default: int, min_val: int | None = None) -> int:
    """
    Parse an integer environment variable.

    Falls back to default on invalid values.
    """
    try:
        value = int(os.getenv(name, str(default)))
    except (ValueError, TypeError):
        logger.warning(f"Invalid {name}, using default {default}")
        return default
    if min_val is not None:
        value = max(min_val, value)
    return value


def _safe_float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except (ValueError, TypeError):
        logger.warning(f"Invalid {name}, using default {default}")
        return default


@dataclass
class SyncConfig:
    """
    Configuration for a room sync client.

    All settings can be overridden via environment variables.
    """

    # Endpoints
    ws_url: str = field(
        default_factory=lambda: os.getenv("ROULETTE_WS_URL", "ws://localhost:8080/ws")
    )
    api_url: str = field(
        default_factory=lambda: os.getenv("ROULETTE_API_URL", "http://localhost:8081/api")
    )

    # Reconnection: delay(n) = min(base_interval_ms * 2**n, max_delay_ms)
    base_interval_ms: int = field(
        default_factory=lambda: _safe_int_env("ROULETTE_RETRY_INTERVAL_MS", 2000, min_val=1)
    )
    max_delay_ms: int = field(
        default_factory=lambda: _safe_int_env("ROULETTE_MAX_RETRY_DELAY_MS", 30000, min_val=1)
    )
    connect_timeout: float = field(
        default_factory=lambda: _safe_float_env("ROULETTE_CONNECT_TIMEOUT", 5.0)
    )

    # Outbound coalescing window for the snapshot strategy
    debounce_ms: int = field(
        default_factory=lambda: _safe_int_env("ROULETTE_DEBOUNCE_MS", 10, min_val=0)
    )

    # Closure codes
    normal_close_code: int = NORMAL_CLOSURE
    forced_reconnect_code: int = FORCED_RECONNECT
