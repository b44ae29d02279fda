"""Data models: outcome values, wheel categories and wire messages."""

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
    parse_server_message,
    to_wire,
)
from models.outcome import (
    ALL_OUTCOMES,
    BET_GROUPS,
    DOUBLE_ZERO,
    OUTCOME_KEYS,
    InvalidOutcomeError,
    OutcomeValue,
    groups_of,
    outcome_key,
    parse_outcome,
)

__all__ = [
    "ALL_OUTCOMES",
    "BET_GROUPS",
    "DOUBLE_ZERO",
    "OUTCOME_KEYS",
    "AddMessage",
    "AuthRequiredMessage",
    "ErrorMessage",
    "InvalidOutcomeError",
    "JoinMessage",
    "MalformedMessageError",
    "OutcomeValue",
    "RemoveMessage",
    "SyncMessage",
    "UpdateMessage",
    "groups_of",
    "outcome_key",
    "parse_client_message",
    "parse_outcome",
    "parse_server_message",
    "to_wire",
]
