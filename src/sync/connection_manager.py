"""
Connection Manager - one room binding over a websocket transport.

Owns the transport lifecycle for a single room:
- Sends the join handshake on open (key, optional token)
- Decodes inbound frames and drops malformed or foreign-room ones
- Exponential backoff reconnection with a single pending timer
- Auth-required rejections park the binding until a credential arrives

Every mutation happens on the event loop thread. Each binding or forced
reconnect bumps a generation counter; transport callbacks and timers carry
the generation they were created for and are ignored once it is stale.

Events (see on()):
    state(old, new)                 ConnectionState change
    sync(history)                   Full history from the server
    add(number, nonce)              Remote append
    remove(index, nonce)            Remote removal
    auth_required(error)            Server wants a credential
    error(message)                  Server-reported error
    reconnect_scheduled(attempt, delay_ms)
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import websockets

from models.messages import (
    AddMessage,
    AuthRequiredMessage,
    ErrorMessage,
    JoinMessage,
    MalformedMessageError,
    RemoveMessage,
    SyncMessage,
    UpdateMessage,
    parse_server_message,
    to_wire,
)
from sync.config import ABNORMAL_CLOSURE, SyncConfig
from sync.connection import ConnectionMetrics, ConnectionState, backoff_delay_ms
from sync.listeners import ListenerRegistry

logger = logging.getLogger(__name__)

ConnectFactory = Callable[[str], Awaitable[Any]]
OutboundMessage = AddMessage | RemoveMessage | UpdateMessage


class ConnectionManager(ListenerRegistry):
    """
    Binds to a room and keeps the binding alive.

    Usage:
        manager = ConnectionManager(SyncConfig())
        manager.on('sync', lambda history: print(history))
        manager.bind('lobby')
    """

    def __init__(
        self,
        config: SyncConfig | None = None,
        connect_factory: ConnectFactory | None = None,
    ):
        """
        Initialize connection manager.

        Args:
            config: Sync configuration (defaults from environment)
            connect_factory: Coroutine function url -> transport; defaults to
                             websockets.connect
        """
        super().__init__()
        self.config = config or SyncConfig()
        self._connect_factory = connect_factory or self._default_connect

        self._state = ConnectionState.IDLE
        self._room: str | None = None
        self._credential: str | None = None
        self._generation = 0
        self._attempts = 0
        self._last_delay_ms: int | None = None

        self._ws = None
        self._task: asyncio.Task | None = None
        self._reconnect_timer: asyncio.TimerHandle | None = None
        self._background: set[asyncio.Task] = set()

        self._metrics = ConnectionMetrics()

    # ========== Properties ==========

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def room(self) -> str | None:
        return self._room

    @property
    def credential(self) -> str | None:
        return self._credential

    @property
    def attempts(self) -> int:
        """Reconnect attempts since the last successful sync."""
        return self._attempts

    @property
    def pending_timer(self) -> bool:
        """True while a backoff timer is scheduled."""
        return self._reconnect_timer is not None

    @property
    def last_delay_ms(self) -> int | None:
        return self._last_delay_ms

    @property
    def generation(self) -> int:
        return self._generation

    def is_open(self) -> bool:
        return self._state == ConnectionState.OPEN

    def get_metrics(self) -> ConnectionMetrics:
        return self._metrics

    # ========== Public API ==========

    def bind(self, room: str, credential: str | None = None) -> None:
        """
        Bind to a room, tearing down any existing binding first.

        Args:
            room: Room key
            credential: Optional session token sent with the join
        """
        if not room:
            raise ValueError("room key must be a non-empty string")

        if self._room is not None:
            logger.info(f"[Sync] Rebinding from {self._room} to {room}")
            self._teardown(self.config.normal_close_code, "Client rebinding")

        self._room = room
        self._credential = credential
        self._attempts = 0
        self._last_delay_ms = None
        self._generation += 1
        self._connect()

    def unbind(self) -> None:
        """Deliberately tear down the binding. No reconnect follows."""
        if self._room is None:
            return
        logger.info(f"[Sync] Unbinding from {self._room}")
        self._generation += 1
        self._teardown(self.config.normal_close_code, "Client unbinding")
        self._room = None
        self._attempts = 0
        self._transition_to(ConnectionState.CLOSED)

    async def aclose(self) -> None:
        """Unbind and wait for outstanding transport work to finish."""
        task = self._task
        self.unbind()
        pending = [t for t in (task, *self._background) if t is not None and not t.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def force_reconnect(self) -> None:
        """
        Drop the current transport and connect again immediately.

        Resets the attempt counter and cancels any pending backoff timer.
        """
        if self._room is None:
            logger.warning("[Sync] force_reconnect() called while unbound")
            return
        logger.info(f"[Sync] Forced reconnect to {self._room}")
        self._generation += 1
        self._teardown(self.config.forced_reconnect_code, "Manual reconnect")
        self._attempts = 0
        self._connect()

    def set_credential(self, token: str | None, reconnect: bool = True) -> None:
        """
        Store a session credential.

        Args:
            token: Session token (None clears it)
            reconnect: Force a reconnect so the join carries the new token
        """
        self._credential = token
        if reconnect and self._room is not None:
            self.force_reconnect()

    def send(self, message: OutboundMessage) -> bool:
        """
        Send a mutation on the current binding.

        The room key and credential are filled in from the binding.

        Returns:
            True if the frame was handed to the transport, False if dropped
            because the binding is not open
        """
        if self._state != ConnectionState.OPEN or self._ws is None:
            self._metrics.dropped_sends += 1
            logger.warning(f"[Sync] Dropping {message.type}: connection is {self._state.value}")
            return False

        stamped = message.model_copy(update={"key": self._room, "token": self._credential})
        self._spawn(self._write(self._ws, to_wire(stamped)))
        return True

    # ========== Transport lifecycle ==========

    async def _default_connect(self, url: str):
        return await websockets.connect(url, open_timeout=self.config.connect_timeout)

    def _connect(self) -> None:
        self._transition_to(ConnectionState.CONNECTING)
        self._metrics.connection_attempts += 1
        generation = self._generation
        self._task = asyncio.get_running_loop().create_task(self._run_transport(generation))

    async def _run_transport(self, generation: int) -> None:
        """Open one transport, pump its frames, report its closure."""
        logger.info(f"[Sync] Connecting to {self.config.ws_url} (room {self._room})...")
        try:
            ws = await self._connect_factory(self.config.ws_url)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[Sync] Connect failed: {e}")
            self._on_close(generation, ABNORMAL_CLOSURE, str(e))
            return

        if generation != self._generation:
            await self._close_quietly(ws, self.config.normal_close_code, "Stale binding")
            return

        self._ws = ws
        await self._on_open(generation, ws)

        try:
            async for raw in ws:
                self._on_message(generation, raw)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug(f"[Sync] Connection error: {e}")

        code = getattr(ws, "close_code", None) or ABNORMAL_CLOSURE
        reason = getattr(ws, "close_reason", None) or ""
        self._on_close(generation, code, reason)

    async def _on_open(self, generation: int, ws) -> None:
        if generation != self._generation:
            return
        self._metrics.mark_connected()
        logger.info(f"[Sync] Transport open, joining {self._room}")
        join = JoinMessage(key=self._room, token=self._credential)
        await self._write(ws, to_wire(join))

    def _on_message(self, generation: int, raw: str | bytes) -> None:
        """Dispatch one inbound frame."""
        if generation != self._generation:
            return
        self._metrics.messages_received += 1

        try:
            message = parse_server_message(raw)
        except MalformedMessageError as e:
            self._metrics.malformed_messages += 1
            logger.warning(f"[Sync] Discarding malformed message: {e}")
            return

        if message.key is not None and message.key != self._room:
            self._metrics.ignored_messages += 1
            logger.debug(f"[Sync] Ignoring {message.type} for room {message.key}")
            return

        if isinstance(message, SyncMessage):
            self._attempts = 0
            self._last_delay_ms = None
            self._transition_to(ConnectionState.OPEN)
            self._emit("sync", list(message.history))
        elif isinstance(message, AddMessage):
            self._emit("add", message.number, message.nonce)
        elif isinstance(message, RemoveMessage):
            self._emit("remove", message.index, message.nonce)
        elif isinstance(message, AuthRequiredMessage):
            self._on_auth_required(message.error)
        elif isinstance(message, ErrorMessage):
            logger.warning(f"[Sync] Server error: {message.error}")
            self._emit("error", message.error)

    def _on_auth_required(self, error: str | None) -> None:
        """Park the binding until a credential is supplied."""
        logger.info(f"[Sync] Room {self._room} requires authentication ({error or 'no token'})")
        self._cancel_timer()
        self._transition_to(ConnectionState.AWAITING_AUTH)
        self._emit("auth_required", error)

        ws, self._ws = self._ws, None
        if ws is not None:
            self._spawn(self._close_quietly(ws, self.config.normal_close_code, "Awaiting auth"))

    def _on_close(self, generation: int, code: int, reason: str = "") -> None:
        """Decide what a transport closure means for the binding."""
        if generation != self._generation:
            logger.debug(f"[Sync] Ignoring closure of stale transport (code {code})")
            return

        self._ws = None
        self._metrics.last_close_code = code
        logger.info(f"[Sync] Disconnected (code: {code}) {reason}".rstrip())

        if self._state in (ConnectionState.IDLE, ConnectionState.CLOSED):
            return
        if self._state == ConnectionState.AWAITING_AUTH:
            return
        if code == self.config.normal_close_code:
            self._transition_to(ConnectionState.CLOSED)
            return

        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        """Schedule the next attempt. A second trigger while one is pending is a no-op."""
        if self._reconnect_timer is not None and self._state == ConnectionState.RECONNECTING:
            logger.debug("[Sync] Reconnect already scheduled")
            return

        self._attempts += 1
        delay = backoff_delay_ms(
            self._attempts, self.config.base_interval_ms, self.config.max_delay_ms
        )
        self._last_delay_ms = delay
        self._metrics.reconnects_scheduled += 1

        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._reconnect_timer = loop.call_later(
            delay / 1000, self._on_backoff_elapsed, self._generation
        )

        self._transition_to(ConnectionState.RECONNECTING)
        logger.info(f"[Sync] Reconnecting in {delay}ms (attempt {self._attempts})")
        self._emit("reconnect_scheduled", self._attempts, delay)

    def _on_backoff_elapsed(self, generation: int) -> None:
        self._reconnect_timer = None
        if generation != self._generation or self._state != ConnectionState.RECONNECTING:
            return
        self._connect()

    def _cancel_timer(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    def _teardown(self, code: int, reason: str) -> None:
        """Cancel timers and release the current transport."""
        self._cancel_timer()

        ws, self._ws = self._ws, None
        task, self._task = self._task, None

        if ws is not None:
            self._spawn(self._close_quietly(ws, code, reason))
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # ========== Helpers ==========

    def _transition_to(self, new_state: ConnectionState) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        logger.info(f"[Sync] State: {old_state.value} -> {new_state.value}")
        self._emit("state", old_state, new_state)

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _write(self, ws, payload: str) -> None:
        try:
            await ws.send(payload)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._metrics.dropped_sends += 1
            logger.warning(f"[Sync] Send failed: {e}")

    @staticmethod
    async def _close_quietly(ws, code: int, reason: str) -> None:
        try:
            await ws.close(code=code, reason=reason)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug(f"[Sync] Error closing transport: {e}")
