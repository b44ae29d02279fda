"""
Reference room server over WebSocket.

Protocol (see models.messages):
    join    -> sync to the joiner, or authRequired for a protected room
               without a valid token
    add     -> add broadcast to the room (nonce echoed)
    remove  -> remove broadcast to the room (nonce echoed)
    update  -> sync broadcast to the room
Malformed frames are logged and ignored; protocol violations get an
``error`` reply and the connection stays open.
"""

import asyncio
import logging
from dataclasses import dataclass

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
    parse_client_message,
    to_wire,
)
from roomserver.config import ServerConfig
from roomserver.store import RoomStore

logger = logging.getLogger(__name__)


@dataclass
class ServerStats:
    """Statistics for the room server."""

    clients_connected: int = 0
    clients_disconnected: int = 0
    messages_handled: int = 0
    malformed_messages: int = 0
    broadcasts: int = 0


class RoomServer:
    """WebSocket server keeping every client of a room on the same history."""

    def __init__(self, store: RoomStore | None = None, config: ServerConfig | None = None):
        self.store = store or RoomStore()
        self.config = config or ServerConfig()
        self._members: dict[str, set] = {}
        self._server = None
        self._stats = ServerStats()

    @property
    def is_running(self) -> bool:
        return self._server is not None

    @property
    def port(self) -> int | None:
        """Bound port (useful when started on port 0)."""
        if self._server is None:
            return None
        for sock in self._server.sockets:
            return sock.getsockname()[1]
        return None

    def member_count(self, key: str) -> int:
        return len(self._members.get(key, ()))

    async def start(self, host: str | None = None, port: int | None = None) -> None:
        """Start listening. Returns once the socket is bound."""
        host = host or self.config.host
        port = self.config.port if port is None else port
        self._server = await websockets.serve(
            self._handle_client,
            host,
            port,
            ping_interval=self.config.ping_interval,
            ping_timeout=self.config.ping_timeout,
        )
        logger.info(f"Room server listening on ws://{host}:{self.port}")

    async def stop(self) -> None:
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
            logger.info("Room server stopped")

    async def _handle_client(self, websocket) -> None:
        """Serve one client until it disconnects."""
        self._stats.clients_connected += 1
        client_id = id(websocket)
        remote = getattr(websocket, "remote_address", "unknown")
        logger.info(f"Client {client_id} connected from {remote}")

        room: str | None = None
        try:
            async for raw in websocket:
                room = await self.handle_message(websocket, room, raw)
        except Exception as e:
            logger.debug(f"Client {client_id} error: {e}")
        finally:
            self._leave(websocket, room)
            self._stats.clients_disconnected += 1
            logger.info(f"Client {client_id} disconnected")

    async def handle_message(self, websocket, room: str | None, raw: str | bytes) -> str | None:
        """
        Handle one frame from a client.

        Args:
            websocket: Sender
            room: Room the sender has joined, if any
            raw: Frame payload

        Returns:
            Room the sender is joined to after this frame
        """
        try:
            message = parse_client_message(raw)
        except MalformedMessageError as e:
            self._stats.malformed_messages += 1
            logger.warning(f"Ignoring malformed frame: {e}")
            return room

        self._stats.messages_handled += 1

        if isinstance(message, JoinMessage):
            return await self._handle_join(websocket, room, message)

        key = message.key or room
        if key is None or key != room:
            await self._send(websocket, ErrorMessage(key=key, error="join the room first"))
            return room
        if not self.store.validate_token(key, message.token):
            await self._send(websocket, AuthRequiredMessage(key=key, error="invalid token"))
            return room

        if isinstance(message, AddMessage):
            self.store.append(key, message.number)
            echo = AddMessage(key=key, number=message.number, nonce=message.nonce)
            await self.broadcast(key, echo)
        elif isinstance(message, RemoveMessage):
            if not self.store.remove_at(key, message.index):
                error = f"index {message.index} out of range"
                await self._send(websocket, ErrorMessage(key=key, error=error))
                return room
            echo = RemoveMessage(key=key, index=message.index, nonce=message.nonce)
            await self.broadcast(key, echo)
        elif isinstance(message, UpdateMessage):
            self.store.replace(key, message.history)
            await self.broadcast(key, SyncMessage(key=key, history=self.store.history(key)))
        return room

    async def _handle_join(self, websocket, room: str | None, message: JoinMessage) -> str | None:
        key = message.key
        if not self.store.validate_token(key, message.token):
            error = "invalid token" if message.token else None
            logger.info(f"Join to protected room {key} rejected ({error or 'no token'})")
            await self._send(websocket, AuthRequiredMessage(key=key, error=error))
            return room

        self.store.get_or_create(key)
        if room != key:
            self._leave(websocket, room)
            self._members.setdefault(key, set()).add(websocket)
        logger.info(f"Client {id(websocket)} joined {key} ({self.member_count(key)} members)")

        await self._send(websocket, SyncMessage(key=key, history=self.store.history(key)))
        return key

    def _leave(self, websocket, room: str | None) -> None:
        if room is None:
            return
        members = self._members.get(room)
        if members is None:
            return
        members.discard(websocket)
        if not members:
            del self._members[room]

    async def broadcast(self, key: str, message) -> None:
        """Send a message to every client joined to ``key``."""
        members = list(self._members.get(key, ()))
        if not members:
            return
        payload = to_wire(message)
        await asyncio.gather(*[self._safe_send(ws, payload) for ws in members])
        self._stats.broadcasts += 1

    async def _send(self, websocket, message) -> None:
        await self._safe_send(websocket, to_wire(message))

    async def _safe_send(self, websocket, payload: str) -> None:
        try:
            await websocket.send(payload)
        except Exception as e:
            # Client gone; its handler cleans up membership
            logger.debug(f"Send to client {id(websocket)} failed: {e}")

    def get_stats(self) -> dict:
        """Get server statistics."""
        return {
            "is_running": self.is_running,
            "rooms": len(self.store),
            "active_rooms": len(self._members),
            "clients_connected": self._stats.clients_connected,
            "clients_disconnected": self._stats.clients_disconnected,
            "messages_handled": self._stats.messages_handled,
            "malformed_messages": self._stats.malformed_messages,
            "broadcasts": self._stats.broadcasts,
        }
