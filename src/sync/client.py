"""
SyncClient - a room's outcome history kept in step with its peers.

Composes a SequenceStore (local canonical copy) with a ConnectionManager
(transport binding). Local edits are applied optimistically and then
published; inbound messages are applied to the store; an authoritative
``sync`` always replaces whatever the store holds.

Two publishing strategies:

    POINT     add/remove frames per edit, sent right after the local apply
    SNAPSHOT  edits coalesced over a short window into one ``update``
              carrying the full sequence as it is when the window closes

Point mutations carry a nonce. The server echoes add/remove to every client
in the room, including the sender; an inbound mutation carrying a nonce this
client issued is the echo of our own edit and is not applied twice.
"""

import asyncio
import logging
import uuid
from collections import OrderedDict, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from analysis.age_index import compute_age_index
from analysis.forecast import ForecastConfig, ForecastEngine, ForecastEntry
from core.sequence_store import SequenceStore
from models.messages import AddMessage, RemoveMessage, UpdateMessage
from models.outcome import OutcomeValue, outcome_key, parse_outcome
from sync.config import SyncConfig
from sync.connection import ConnectionState
from sync.connection_manager import ConnectFactory, ConnectionManager
from sync.listeners import ListenerRegistry

logger = logging.getLogger(__name__)

# Unechoed local mutations older than this many entries are forgotten
MAX_PENDING = 256
# Nonces this client issued, remembered past eviction from the pending window
MAX_ISSUED_NONCES = 4096


class SyncStrategy(Enum):
    POINT = "point"
    SNAPSHOT = "snapshot"


@dataclass
class PendingMutation:
    """A local point mutation waiting for its echo."""

    kind: str  # "add" or "remove"
    nonce: str
    value: OutcomeValue | None = None
    index: int | None = None

    def matches(self, kind: str, value: OutcomeValue | None, index: int | None) -> bool:
        if kind != self.kind:
            return False
        if kind == "add":
            return outcome_key(value) == outcome_key(self.value)
        return index == self.index


@dataclass
class RoomSnapshot:
    """Everything a view needs to render a room."""

    room: str | None
    sequence: list[OutcomeValue]
    connection_state: ConnectionState
    reconnect_attempts: int
    age_index: dict[str, int]
    forecast: list[ForecastEntry] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Serialize snapshot to dict."""
        return {
            "room": self.room,
            "sequence": list(self.sequence),
            "connection_state": self.connection_state.value,
            "reconnect_attempts": self.reconnect_attempts,
            "age_index": dict(self.age_index),
            "forecast": [entry.to_dict() for entry in self.forecast],
        }


class SyncClient(ListenerRegistry):
    """
    Public entry point for one room.

    Usage:
        client = SyncClient()
        client.on('sequence', lambda seq: print(seq))
        client.start('lobby')
        client.add(17)

    Events (see on()):
        sequence(list)          Store changed
        state(old, new)         Connection state changed
        auth_required(error)    Room needs a credential
        error(message)          Server-reported error
    """

    def __init__(
        self,
        config: SyncConfig | None = None,
        strategy: SyncStrategy = SyncStrategy.POINT,
        forecast_config: ForecastConfig | None = None,
        connect_factory: ConnectFactory | None = None,
    ):
        super().__init__()
        self.config = config or SyncConfig()
        self.strategy = strategy

        self.store = SequenceStore()
        self.connection = ConnectionManager(self.config, connect_factory)
        self._forecast_engine = ForecastEngine(forecast_config)

        self._pending: deque[PendingMutation] = deque(maxlen=MAX_PENDING)
        self._issued: OrderedDict[str, None] = OrderedDict()
        self._flush_handle: asyncio.TimerHandle | None = None
        self._auth_error: str | None = None
        self._last_error: str | None = None

        # Derived views cached per store version
        self._age_cache: tuple[int, dict[str, int]] | None = None
        self._forecast_cache: tuple[int, list[ForecastEntry]] | None = None

        self.store.subscribe(self._on_store_changed)
        self.connection.on("state", self._on_state_changed)
        self.connection.on("sync", self._on_sync)
        self.connection.on("add", self._on_remote_add)
        self.connection.on("remove", self._on_remote_remove)
        self.connection.on("auth_required", self._on_auth_required)
        self.connection.on("error", self._on_error)

    # ========== Properties ==========

    @property
    def room(self) -> str | None:
        return self.connection.room

    @property
    def sequence(self) -> list[OutcomeValue]:
        return self.store.snapshot()

    @property
    def connection_state(self) -> ConnectionState:
        return self.connection.state

    @property
    def reconnect_attempts(self) -> int:
        return self.connection.attempts

    @property
    def needs_auth(self) -> bool:
        return self.connection.state == ConnectionState.AWAITING_AUTH

    @property
    def auth_error(self) -> str | None:
        return self._auth_error

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def pending_mutations(self) -> int:
        return len(self._pending)

    @property
    def age_index(self) -> dict[str, int]:
        """Spins since each outcome last appeared."""
        version = self.store.version
        if self._age_cache is None or self._age_cache[0] != version:
            self._age_cache = (version, compute_age_index(self.store.snapshot()))
        return self._age_cache[1]

    @property
    def forecast(self) -> list[ForecastEntry]:
        """Ranked forecast for the current sequence."""
        version = self.store.version
        if self._forecast_cache is None or self._forecast_cache[0] != version:
            self._forecast_cache = (version, self._forecast_engine.forecast(self.store.snapshot()))
        return self._forecast_cache[1]

    def snapshot(self) -> RoomSnapshot:
        return RoomSnapshot(
            room=self.room,
            sequence=self.store.snapshot(),
            connection_state=self.connection_state,
            reconnect_attempts=self.reconnect_attempts,
            age_index=dict(self.age_index),
            forecast=list(self.forecast),
        )

    def subscribe(self, callback: Callable[[RoomSnapshot], None]) -> Callable[[], None]:
        """
        Register a view callback.

        Called with a fresh RoomSnapshot whenever the sequence or the
        connection state changes.

        Returns:
            Unsubscribe function
        """
        unsubscribers = [
            self.on("sequence", lambda _seq: callback(self.snapshot())),
            self.on("state", lambda _old, _new: callback(self.snapshot())),
        ]

        def unsubscribe():
            for unsub in unsubscribers:
                unsub()

        return unsubscribe

    # ========== Lifecycle ==========

    def start(self, room: str, credential: str | None = None) -> None:
        """
        Bind to a room with an empty local sequence.

        Args:
            room: Room key
            credential: Optional session token
        """
        self._cancel_flush()
        self._clear_pending()
        self._auth_error = None
        self._last_error = None
        if len(self.store):
            self.store.clear()
        self.connection.bind(room, credential)

    def stop(self) -> None:
        """Deliberately unbind. Unflushed snapshot edits are discarded."""
        self._cancel_flush()
        self._clear_pending()
        self.connection.unbind()

    async def aclose(self) -> None:
        self._cancel_flush()
        self._clear_pending()
        await self.connection.aclose()

    def force_reconnect(self) -> None:
        self._cancel_flush()
        self.connection.force_reconnect()

    def authenticate(self, token: str) -> None:
        """Supply a session credential and reconnect with it."""
        self._auth_error = None
        self.connection.set_credential(token, reconnect=True)

    # ========== Local edits ==========

    def add(self, value) -> OutcomeValue:
        """
        Append an outcome locally and publish it.

        Raises:
            InvalidOutcomeError: If value is not 0..36 or "00"
        """
        outcome = parse_outcome(value)
        self.store.append(outcome)

        if self.strategy == SyncStrategy.SNAPSHOT:
            self._schedule_flush()
        else:
            nonce = self._new_nonce()
            self._track(PendingMutation("add", nonce, value=outcome))
            self._publish(AddMessage(number=outcome, nonce=nonce), nonce)
        return outcome

    def remove_at(self, index: int) -> bool:
        """
        Remove the outcome at ``index`` locally and publish the removal.

        Returns:
            False (and nothing is published) if the index is out of range
        """
        if not self.store.remove_at(index):
            return False

        if self.strategy == SyncStrategy.SNAPSHOT:
            self._schedule_flush()
        else:
            nonce = self._new_nonce()
            self._track(PendingMutation("remove", nonce, index=index))
            self._publish(RemoveMessage(index=index, nonce=nonce), nonce)
        return True

    def _publish(self, message: AddMessage | RemoveMessage, nonce: str) -> None:
        if not self.connection.send(message):
            self._forget(nonce)

    def _schedule_flush(self) -> None:
        self._cancel_flush()
        loop = asyncio.get_running_loop()
        self._flush_handle = loop.call_later(
            self.config.debounce_ms / 1000, self._flush, self.connection.generation
        )

    def _flush(self, generation: int) -> None:
        self._flush_handle = None
        if generation != self.connection.generation:
            return
        # Current state at flush time, not the state when the edit was made
        self.connection.send(UpdateMessage(key=self.room or "", history=self.store.snapshot()))

    def _cancel_flush(self) -> None:
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None

    # ========== Pending echoes ==========

    @staticmethod
    def _new_nonce() -> str:
        return uuid.uuid4().hex[:12]

    def _track(self, mutation: PendingMutation) -> None:
        self._pending.append(mutation)
        self._issued[mutation.nonce] = None
        while len(self._issued) > MAX_ISSUED_NONCES:
            self._issued.popitem(last=False)

    def _forget(self, nonce: str) -> None:
        self._issued.pop(nonce, None)
        for mutation in self._pending:
            if mutation.nonce == nonce:
                self._pending.remove(mutation)
                return

    def _clear_pending(self) -> None:
        self._pending.clear()
        self._issued.clear()

    def _consume_echo(
        self,
        kind: str,
        nonce: str | None,
        value: OutcomeValue | None = None,
        index: int | None = None,
    ) -> bool:
        """
        Pop the pending mutation an inbound frame echoes, if any.

        With a nonce only an exact nonce match counts; a nonce this client
        issued is an echo even after its pending entry was evicted. Without
        one, the oldest pending mutation of the same kind and payload is taken.
        """
        if nonce is not None:
            if nonce not in self._issued:
                return False
            self._forget(nonce)
            return True

        for mutation in self._pending:
            if mutation.matches(kind, value, index):
                self._forget(mutation.nonce)
                return True
        return False

    # ========== Inbound ==========

    def _on_sync(self, history: list[OutcomeValue]) -> None:
        self._clear_pending()
        self._auth_error = None
        self.store.replace(history)

    def _on_remote_add(self, number: OutcomeValue, nonce: str | None) -> None:
        if self._consume_echo("add", nonce, value=number):
            logger.debug(f"[Sync] Echo of local add {number}")
            return
        self.store.append(number)

    def _on_remote_remove(self, index: int, nonce: str | None) -> None:
        if self._consume_echo("remove", nonce, index=index):
            logger.debug(f"[Sync] Echo of local remove at {index}")
            return
        self.store.remove_at(index)

    def _on_auth_required(self, error: str | None) -> None:
        self._cancel_flush()
        self._clear_pending()
        self._auth_error = error
        self._emit("auth_required", error)

    def _on_error(self, message: str) -> None:
        # Frames are answered in order, so the oldest unechoed mutation is the rejected one
        if self._pending:
            rejected = self._pending[0]
            self._forget(rejected.nonce)
            logger.debug(f"[Sync] Server rejected local {rejected.kind}: {message}")
        self._last_error = message
        self._emit("error", message)

    def _on_store_changed(self, sequence: list[OutcomeValue]) -> None:
        self._emit("sequence", sequence)

    def _on_state_changed(self, old: ConnectionState, new: ConnectionState) -> None:
        self._emit("state", old, new)
