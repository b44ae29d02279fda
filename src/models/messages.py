"""
Room Sync Wire Messages

JSON messages exchanged over the room WebSocket.

Client -> Server:
    join    {type, key, token?, version}
    add     {type, key, token?, number, nonce?}
    remove  {type, key, token?, index, nonce?}
    update  {type, key, token?, history}

Server -> Client:
    sync          {type, history, key?}
    add           {type, number, key?, nonce?}
    remove        {type, index, key?, nonce?}
    authRequired  {type, error?, key?}
    error         {type, error}

Unknown fields are ignored so that servers which attach bookkeeping
(``version``, ``full``) still parse.
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, BeforeValidator, Field, TypeAdapter, ValidationError

from models.outcome import parse_outcome

Outcome = Annotated[Union[int, Literal["00"]], BeforeValidator(parse_outcome)]


class MalformedMessageError(ValueError):
    """Raised when a frame is not valid JSON or has an unexpected shape."""


# =============================================================================
# CLIENT -> SERVER
# =============================================================================


class JoinMessage(BaseModel):
    """Join a room. Answered with ``sync`` or ``authRequired``."""

    type: Literal["join"] = "join"
    key: str
    token: str | None = None
    version: int = 0


class UpdateMessage(BaseModel):
    """Full-replace of the room history (snapshot sync strategy)."""

    type: Literal["update"] = "update"
    key: str
    token: str | None = None
    history: list[Outcome]


# =============================================================================
# BOTH DIRECTIONS
# =============================================================================


class AddMessage(BaseModel):
    """Append one outcome. Broadcast back to every client in the room."""

    type: Literal["add"] = "add"
    key: str | None = None
    token: str | None = None
    number: Outcome
    nonce: str | None = Field(None, description="Client-generated id echoed by the server")


class RemoveMessage(BaseModel):
    """Remove the outcome at ``index``. Broadcast back to every client in the room."""

    type: Literal["remove"] = "remove"
    key: str | None = None
    token: str | None = None
    # Servers serializing with omitempty drop a zero index
    index: int = 0
    nonce: str | None = Field(None, description="Client-generated id echoed by the server")


# =============================================================================
# SERVER -> CLIENT
# =============================================================================


class SyncMessage(BaseModel):
    """Authoritative full history."""

    type: Literal["sync"] = "sync"
    key: str | None = None
    history: list[Outcome] = Field(default_factory=list)


class AuthRequiredMessage(BaseModel):
    """Room needs a (valid) session credential."""

    type: Literal["authRequired"] = "authRequired"
    key: str | None = None
    error: str | None = None


class ErrorMessage(BaseModel):
    """Protocol-level failure. Not fatal to the connection."""

    type: Literal["error"] = "error"
    key: str | None = None
    error: str = ""


ServerMessage = Annotated[
    Union[SyncMessage, AddMessage, RemoveMessage, AuthRequiredMessage, ErrorMessage],
    Field(discriminator="type"),
]

ClientMessage = Annotated[
    Union[JoinMessage, AddMessage, RemoveMessage, UpdateMessage],
    Field(discriminator="type"),
]

_server_adapter: TypeAdapter = TypeAdapter(ServerMessage)
_client_adapter: TypeAdapter = TypeAdapter(ClientMessage)


def parse_server_message(raw: str | bytes):
    """
    Parse a frame received by a client.

    Raises:
        MalformedMessageError: On invalid JSON, unknown type or bad fields
    """
    try:
        return _server_adapter.validate_json(raw)
    except ValidationError as e:
        raise MalformedMessageError(str(e)) from e


def parse_client_message(raw: str | bytes):
    """
    Parse a frame received by the server.

    Raises:
        MalformedMessageError: On invalid JSON, unknown type or bad fields
    """
    try:
        return _client_adapter.validate_json(raw)
    except ValidationError as e:
        raise MalformedMessageError(str(e)) from e


def to_wire(message: BaseModel) -> str:
    """Serialize a message, leaving out unset optional fields."""
    return message.model_dump_json(exclude_none=True)
