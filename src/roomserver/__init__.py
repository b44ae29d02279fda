"""Reference room server: WebSocket sync hub plus HTTP auth and history API."""

from roomserver.config import ServerConfig
from roomserver.http_server import RoomHTTPServer
from roomserver.server import RoomServer
from roomserver.store import Room, RoomAuthError, RoomStore

__all__ = ["Room", "RoomAuthError", "RoomHTTPServer", "RoomServer", "RoomStore", "ServerConfig"]
