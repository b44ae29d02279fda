"""In-memory room registry: histories, passwords and session tokens."""

import hashlib
import logging
import secrets
import time
from dataclasses import dataclass, field

from models.outcome import OutcomeValue, parse_outcome

logger = logging.getLogger(__name__)


class RoomAuthError(Exception):
    """Password rejected for a protected room."""


def _hash_password(password: str) -> str:
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


@dataclass
class Room:
    """One room's state."""

    key: str
    history: list[OutcomeValue] = field(default_factory=list)
    password_hash: str | None = None
    tokens: set[str] = field(default_factory=set)
    created_at: float = field(default_factory=time.time)

    @property
    def protected(self) -> bool:
        return self.password_hash is not None

    def to_dict(self) -> dict:
        """Serialize public room info to dict."""
        return {
            "key": self.key,
            "length": len(self.history),
            "protected": self.protected,
            "created_at": self.created_at,
        }


class RoomStore:
    """
    Room registry.

    Rooms are created on first join (unprotected) or on first password
    exchange (protected when a non-empty password is given).
    """

    def __init__(self):
        self._rooms: dict[str, Room] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)

    def get(self, key: str) -> Room | None:
        return self._rooms.get(key)

    def get_or_create(self, key: str) -> Room:
        room = self._rooms.get(key)
        if room is None:
            room = Room(key)
            self._rooms[key] = room
            logger.info(f"Room {key} not found, created")
        return room

    def rooms(self) -> list[Room]:
        return list(self._rooms.values())

    # ========== Auth ==========

    def authenticate(self, key: str, password: str | None = None) -> str:
        """
        Exchange a password for a session token.

        Unknown rooms are created with the given password. Known rooms
        without a password accept any password.

        Raises:
            RoomAuthError: Wrong password for a protected room
        """
        room = self._rooms.get(key)
        if room is None:
            room = Room(key, password_hash=_hash_password(password) if password else None)
            self._rooms[key] = room
            logger.info(f"Room {key} created (protected={room.protected})")
        elif room.protected:
            supplied = _hash_password(password or "")
            if not secrets.compare_digest(supplied, room.password_hash):
                raise RoomAuthError(f"Invalid password for room {key}")

        token = secrets.token_urlsafe(24)
        room.tokens.add(token)
        return token

    def requires_auth(self, key: str) -> bool:
        room = self._rooms.get(key)
        return room is not None and room.protected

    def validate_token(self, key: str, token: str | None) -> bool:
        """True if the room is open or the token was issued for it."""
        room = self._rooms.get(key)
        if room is None or not room.protected:
            return True
        return token is not None and token in room.tokens

    # ========== History ==========

    def history(self, key: str) -> list[OutcomeValue]:
        room = self._rooms.get(key)
        return list(room.history) if room else []

    def append(self, key: str, value: OutcomeValue) -> int:
        """Append an outcome. Returns the new history length."""
        room = self.get_or_create(key)
        room.history.append(parse_outcome(value))
        return len(room.history)

    def remove_at(self, key: str, index: int) -> bool:
        room = self._rooms.get(key)
        if room is None or not 0 <= index < len(room.history):
            return False
        del room.history[index]
        return True

    def replace(self, key: str, history: list[OutcomeValue]) -> None:
        room = self.get_or_create(key)
        room.history = [parse_outcome(v) for v in history]
