"""
Shared test fixtures for pytest
"""

import asyncio
import json

import pytest

from services import cleanup_logging, setup_logging
from sync.config import SyncConfig


@pytest.fixture(autouse=True, scope="session")
def setup_test_logging():
    """Setup logging for all tests"""
    setup_logging({"console_level": "DEBUG", "colored_output": False})
    yield
    cleanup_logging()


class _Close:
    def __init__(self, code: int, reason: str = ""):
        self.code = code
        self.reason = reason


class FakeTransport:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self):
        self.sent: list[str] = []
        self.close_code: int | None = None
        self.close_reason: str | None = None
        self.closed_with: tuple[int, str] | None = None
        self._inbox: asyncio.Queue = asyncio.Queue()

    @property
    def messages(self) -> list[dict]:
        """Frames sent by the client, decoded."""
        return [json.loads(raw) for raw in self.sent]

    async def send(self, payload: str) -> None:
        if self.close_code is not None:
            raise ConnectionError("transport closed")
        self.sent.append(payload)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed_with = (code, reason)
        self._inbox.put_nowait(_Close(code, reason))

    def feed(self, message) -> None:
        """Deliver a server frame (dict is JSON-encoded, str sent as is)."""
        self._inbox.put_nowait(json.dumps(message) if isinstance(message, dict) else message)

    def drop(self, code: int = 1006, reason: str = "") -> None:
        """Simulate the server closing the connection."""
        self._inbox.put_nowait(_Close(code, reason))

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if isinstance(item, _Close):
            if self.close_code is None:
                self.close_code = item.code
                self.close_reason = item.reason
            raise StopAsyncIteration
        return item


class FakeConnector:
    """connect_factory that hands out FakeTransports, optionally failing first."""

    def __init__(self, failures: int = 0, always_fail: bool = False):
        self.failures = failures
        self.always_fail = always_fail
        self.urls: list[str] = []
        self.transports: list[FakeTransport] = []

    async def __call__(self, url: str) -> FakeTransport:
        self.urls.append(url)
        if self.always_fail or self.failures > 0:
            self.failures -= 1
            raise OSError("connection refused")
        transport = FakeTransport()
        self.transports.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.transports[-1]


async def settle(rounds: int = 10) -> None:
    """Let queued callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll predicate until true or fail after timeout."""

    async def _poll():
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(_poll(), timeout)


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def sync_config():
    """Config with the reference timings and a fixed URL."""
    return SyncConfig(
        ws_url="ws://test/ws",
        api_url="http://test/api",
        base_interval_ms=2000,
        max_delay_ms=30000,
        debounce_ms=10,
    )
