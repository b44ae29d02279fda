"""Connection state and backoff policy for the room sync client."""

import time
from dataclasses import dataclass
from enum import Enum


class ConnectionState(Enum):
    """
    Connection states.

    State machine:
        IDLE -> CONNECTING -> OPEN
                    |          |
                    |          +-> RECONNECTING -> CONNECTING (backoff timer)
                    +-> AWAITING_AUTH -> CONNECTING (credential + forced reconnect)
        any -> CLOSED (deliberate teardown or normal closure)
    """

    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    AWAITING_AUTH = "awaiting_auth"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


def backoff_delay_ms(attempt: int, base_interval_ms: int = 2000, max_delay_ms: int = 30000) -> int:
    """
    Reconnect delay for a given attempt number.

    delay(n) = min(base_interval_ms * 2**n, max_delay_ms)

    With the defaults attempts 1..6 give 4000, 8000, 16000, 30000, 30000, 30000.
    """
    if attempt <= 0:
        return 0
    # Clamp the exponent so huge attempt counts don't build huge ints
    exponent = min(attempt, 62)
    return min(base_interval_ms * (2**exponent), max_delay_ms)


@dataclass
class ConnectionMetrics:
    """Connection counters for diagnostics and UI feedback."""

    connection_attempts: int = 0
    messages_received: int = 0
    malformed_messages: int = 0
    ignored_messages: int = 0
    dropped_sends: int = 0
    reconnects_scheduled: int = 0
    last_connected_time: int | None = None
    last_close_code: int | None = None

    def mark_connected(self) -> None:
        self.last_connected_time = int(time.time() * 1000)

    def to_dict(self) -> dict:
        """Serialize metrics to dict."""
        return {
            "connection_attempts": self.connection_attempts,
            "messages_received": self.messages_received,
            "malformed_messages": self.malformed_messages,
            "ignored_messages": self.ignored_messages,
            "dropped_sends": self.dropped_sends,
            "reconnects_scheduled": self.reconnects_scheduled,
            "last_connected_time": self.last_connected_time,
            "last_close_code": self.last_close_code,
        }
