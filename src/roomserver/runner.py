"""roulette-sync command line: run the reference server or watch a room."""

import argparse
import asyncio
import logging
import signal

from analysis.age_index import oldest_outcomes
from roomserver.config import ServerConfig
from roomserver.http_server import RoomHTTPServer
from roomserver.server import RoomServer
from services.logger import cleanup_logging, setup_logging
from sync.client import RoomSnapshot, SyncClient
from sync.config import SyncConfig
from sync.connection import ConnectionState
from sync.credentials import CredentialExchangeError, fetch_credential

logger = logging.getLogger(__name__)

# Forecasts over shorter histories are noise
MIN_FORECAST_ENTRIES = 5


class RoomServerRunner:
    """
    Runs the WebSocket room server and its HTTP API until stopped.

    Usage:
        runner = RoomServerRunner()
        await runner.start()  # Runs until interrupted
    """

    def __init__(self, config: ServerConfig | None = None):
        self.config = config or ServerConfig()
        self.room_server = RoomServer(config=self.config)
        self.http_server = RoomHTTPServer(config=self.config, room_server=self.room_server)
        self._stopped = asyncio.Event()
        self._running = False

    async def start(self) -> None:
        self._running = True
        logger.info("Starting room server...")
        logger.info(f"  WebSocket: {self.config.ws_url}")
        logger.info(f"  HTTP:      {self.config.http_url}")

        await self.room_server.start()
        await self.http_server.start()

        _install_signal_handlers(lambda: asyncio.create_task(self.stop()))
        logger.info("Room server running. Press Ctrl+C to stop.")
        await self._stopped.wait()

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        logger.info("Stopping room server...")
        await self.http_server.stop()
        await self.room_server.stop()
        self._stopped.set()
        logger.info("Room server stopped")


def format_summary(snapshot: RoomSnapshot) -> str:
    """One-line view of a room: length, newest outcome, oldest numbers, top forecast."""
    sequence = snapshot.sequence
    parts = [f"[{snapshot.room}] {len(sequence)} spins"]
    if sequence:
        parts.append(f"last={sequence[-1]}")

    oldest = oldest_outcomes(snapshot.age_index)
    if sequence and oldest:
        parts.append("oldest=" + ", ".join(f"{key}({age})" for key, age in oldest))

    if len(sequence) >= MIN_FORECAST_ENTRIES and snapshot.forecast:
        top = snapshot.forecast[:3]
        parts.append("forecast=" + ", ".join(f"{e.key}:{e.probability:.2%}" for e in top))

    return " | ".join(parts)


class RoomWatcher:
    """Binds a SyncClient to a room and logs every change."""

    def __init__(self, room: str, config: SyncConfig, token: str | None = None,
                 password: str | None = None):
        self.room = room
        self.config = config
        self.token = token
        self.password = password
        self.client = SyncClient(config)
        self._stopped = asyncio.Event()
        self._auth_task: asyncio.Task | None = None
        # Set between authenticate() and the next sync
        self._token_unconfirmed = False

    async def run(self) -> None:
        if self.password is not None and self.token is None:
            self.token = await fetch_credential(self.config.api_url, self.room, self.password)

        self.client.on("sequence", lambda _seq: logger.info(format_summary(self.client.snapshot())))
        self.client.on("state", self._on_state)
        self.client.on("auth_required", self._on_auth_required)
        self.client.on("error", lambda message: logger.warning(f"Server error: {message}"))

        self.client.start(self.room, self.token)
        _install_signal_handlers(self._stopped.set)
        await self._stopped.wait()
        await self.client.aclose()

    def _on_state(self, old: ConnectionState, new: ConnectionState) -> None:
        logger.info(f"Connection {new.value}")
        if new == ConnectionState.OPEN:
            self._token_unconfirmed = False

    def _on_auth_required(self, error: str | None) -> None:
        if self._auth_task is not None and not self._auth_task.done():
            return
        if self.password is None:
            logger.error(f"Room {self.room} requires a password (--password)")
            self._stopped.set()
            return
        if self._token_unconfirmed:
            logger.error(f"Room {self.room} rejected a fresh credential: {error}")
            self._stopped.set()
            return
        self._auth_task = asyncio.get_running_loop().create_task(self._reauthenticate())

    async def _reauthenticate(self) -> None:
        try:
            token = await fetch_credential(self.config.api_url, self.room, self.password)
        except CredentialExchangeError as e:
            logger.error(f"Authentication failed: {e}")
            self._stopped.set()
            return
        self._token_unconfirmed = True
        self.client.authenticate(token)


def _install_signal_handlers(callback) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, callback)
        except NotImplementedError:
            # Windows event loops
            logger.debug(f"Signal handler for {sig.name} unavailable")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="roulette-sync", description="Roulette room sync")
    parser.add_argument("--log-level", default=None, help="Console log level (default INFO)")
    parser.add_argument("--log-dir", default=None, help="Also write rotating log files here")
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the reference room server")
    serve.add_argument("--host", help="Bind address")
    serve.add_argument("--port", type=int, help="WebSocket port")
    serve.add_argument("--http-port", type=int, help="HTTP port")

    watch = commands.add_parser("watch", help="Follow a room and log its state")
    watch.add_argument("room", help="Room key")
    watch.add_argument("--url", help="WebSocket URL (default $ROULETTE_WS_URL)")
    watch.add_argument("--api-url", help="HTTP API URL (default $ROULETTE_API_URL)")
    watch.add_argument("--token", help="Session token")
    watch.add_argument("--password", help="Room password, exchanged for a token")

    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    log_config = {}
    if args.log_level:
        log_config["console_level"] = args.log_level.upper()
    if args.log_dir:
        log_config["log_dir"] = args.log_dir
    setup_logging(log_config)

    try:
        if args.command == "serve":
            config = ServerConfig()
            if args.host:
                config.host = args.host
            if args.port is not None:
                config.port = args.port
            if args.http_port is not None:
                config.http_port = args.http_port
            asyncio.run(RoomServerRunner(config).start())
        else:
            config = SyncConfig()
            if args.url:
                config.ws_url = args.url
            if args.api_url:
                config.api_url = args.api_url
            watcher = RoomWatcher(args.room, config, token=args.token, password=args.password)
            asyncio.run(watcher.run())
    except CredentialExchangeError as e:
        logger.error(f"Authentication failed: {e}")
        return 1
    except KeyboardInterrupt:
        pass
    finally:
        cleanup_logging()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
