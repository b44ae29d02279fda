"""HTTP API for the reference room server."""

import logging
import time

from aiohttp import web

from roomserver.config import ServerConfig
from roomserver.server import RoomServer
from roomserver.store import RoomAuthError, RoomStore

logger = logging.getLogger(__name__)


class RoomHTTPServer:
    """
    HTTP companion to the WebSocket room server.

    Serves:
    - GET /health - Health check endpoint
    - POST /api/rooms/auth - Exchange {key, password} for {token}
    - GET /api/roulette/sessions - List known rooms
    - GET /api/roulette/{key} - Room history
    """

    def __init__(
        self,
        store: RoomStore | None = None,
        config: ServerConfig | None = None,
        room_server: RoomServer | None = None,
    ):
        self.config = config or ServerConfig()
        self.store = store or (room_server.store if room_server else RoomStore())
        self.room_server = room_server
        self._start_time = time.time()
        self._runner: web.AppRunner | None = None

        self.app = web.Application()
        self._setup_routes()

        logger.info(f"RoomHTTPServer initialized (port={self.config.http_port})")

    def _setup_routes(self) -> None:
        """Configure HTTP routes."""
        self.app.router.add_get("/health", self._handle_health)
        self.app.router.add_post("/api/rooms/auth", self._handle_auth)
        # Registered before /{key} so "sessions" is not taken as a room key
        self.app.router.add_get("/api/roulette/sessions", self._handle_sessions)
        self.app.router.add_get("/api/roulette/{key}", self._handle_history)

    async def _handle_health(self, request: web.Request) -> web.Response:
        uptime = time.time() - self._start_time
        body = {
            "status": "healthy",
            "service": "roulette-sync",
            "uptime_seconds": round(uptime, 2),
            "rooms": len(self.store),
            "config": {
                "ws_port": self.config.port,
                "http_port": self.config.http_port,
            },
        }
        if self.room_server is not None:
            body["server"] = self.room_server.get_stats()
        return web.json_response(body)

    async def _handle_auth(self, request: web.Request) -> web.Response:
        """
        Password exchange.

        Unknown rooms are created with the supplied password; known rooms
        validate it. Returns 401 on a wrong password.
        """
        try:
            data = await request.json()
        except ValueError:
            return web.json_response({"error": "Invalid request body"}, status=400)

        if not isinstance(data, dict):
            return web.json_response({"error": "Invalid request body"}, status=400)

        key = data.get("key")
        if not key or not isinstance(key, str):
            return web.json_response({"error": "Key is required"}, status=400)

        password = data.get("password") or None
        try:
            token = self.store.authenticate(key, password)
        except RoomAuthError:
            logger.info(f"Rejected password for room {key}")
            return web.json_response({"error": "Invalid password"}, status=401)

        return web.json_response({"token": token})

    async def _handle_sessions(self, request: web.Request) -> web.Response:
        rooms = []
        for room in self.store.rooms():
            info = room.to_dict()
            if self.room_server is not None:
                info["members"] = self.room_server.member_count(room.key)
            rooms.append(info)
        return web.json_response({"rooms": rooms})

    async def _handle_history(self, request: web.Request) -> web.Response:
        key = request.match_info["key"]
        room = self.store.get(key)
        if room is None:
            return web.json_response({"error": f"Room {key} not found"}, status=404)
        if room.protected:
            token = request.headers.get("Authorization", "").removeprefix("Bearer ").strip()
            if not self.store.validate_token(key, token or None):
                return web.json_response({"error": "Authentication required"}, status=401)
        return web.json_response({"key": key, "history": list(room.history)})

    async def start(self, host: str | None = None, port: int | None = None) -> None:
        """Start the HTTP server."""
        host = host or self.config.host
        port = self.config.http_port if port is None else port
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, host, port)
        await site.start()
        logger.info(f"HTTP server running at http://{host}:{port}")

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

    def get_app(self) -> web.Application:
        """Get the aiohttp application (for testing)."""
        return self.app
