"""Reference room server configuration."""

import os
from dataclasses import dataclass, field

from sync.config import _safe_int_env


@dataclass
class ServerConfig:
    """
    Configuration for the reference room server.

    All settings can be overridden via environment variables.
    """

    host: str = field(default_factory=lambda: os.getenv("ROULETTE_HOST", "localhost"))
    port: int = field(default_factory=lambda: _safe_int_env("ROULETTE_PORT", 8080, min_val=0))
    http_port: int = field(
        default_factory=lambda: _safe_int_env("ROULETTE_HTTP_PORT", 8081, min_val=0)
    )

    # Keepalive
    ping_interval: int = 30
    ping_timeout: int = 10

    @property
    def ws_url(self) -> str:
        return f"ws://{self.host}:{self.port}/ws"

    @property
    def http_url(self) -> str:
        return f"http://{self.host}:{self.http_port}"
