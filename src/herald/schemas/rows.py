"""Pydantic schemas for rows streamed from the region database.

Learn: The change feed only ever delivers inserts, so each row type is a
plain immutable value. Column names follow the region module; aliases let
the same schema accept both our short names and the module's names
(e.g. player_username_state.username → ReferenceRow.name).

SpacetimeDB encodes some values in its own JSON dialect (SATS-JSON):
- Timestamp: {"__timestamp_micros_since_unix_epoch__": n}, [n], or bare micros
  (chat_message_state.timestamp is the exception: plain unix seconds)
- Sum-type enum: {"VariantName": []}, {"<index>": []}, [index, payload], or index
The "before" validators below normalize these so sources can pass rows
through untouched.
"""

from datetime import datetime, timedelta, timezone
from typing import Annotated, Any, Optional

from pydantic import (
    AfterValidator,
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
)

from herald.events.types import (
    CHAT_MESSAGE_STATE,
    CLAIM_STATE,
    EMPIRE_STATE,
    PLAYER_USERNAME_STATE,
    USER_MODERATION_STATE,
    ModerationPolicy,
)

TIMESTAMP_KEY = "__timestamp_micros_since_unix_epoch__"
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def decode_timestamp(value: Any) -> Any:
    """Turn a SATS-JSON timestamp into an aware datetime.

    Anything that isn't a SATS shape (datetime, ISO string) is returned
    unchanged for pydantic to parse.
    """
    if isinstance(value, dict) and TIMESTAMP_KEY in value:
        value = value[TIMESTAMP_KEY]
    elif isinstance(value, list) and len(value) == 1:
        value = value[0]
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return EPOCH + timedelta(microseconds=value)
    return value


def decode_epoch_seconds(value: Any) -> Any:
    """Chat timestamps are plain unix seconds in the region module."""
    if isinstance(value, int) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return decode_timestamp(value)


def assume_utc(value: datetime) -> datetime:
    """Naive times from the module are UTC, never host local time."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def decode_variant(value: Any) -> Any:
    """Turn a SATS-JSON sum value into a ModerationPolicy (or pass through)."""
    if isinstance(value, dict) and len(value) == 1:
        (value,) = value.keys()
    elif isinstance(value, list) and value:
        value = value[0]
    if isinstance(value, str) and value.isdigit():
        value = int(value)
    if isinstance(value, int) and not isinstance(value, bool):
        try:
            return ModerationPolicy.from_index(value)
        except IndexError:
            raise ValueError(f"unknown moderation policy index {value}")
    return value


Timestamp = Annotated[
    datetime, BeforeValidator(decode_timestamp), AfterValidator(assume_utc)
]
EpochSeconds = Annotated[
    datetime, BeforeValidator(decode_epoch_seconds), AfterValidator(assume_utc)
]
Policy = Annotated[ModerationPolicy, BeforeValidator(decode_variant)]


class Row(BaseModel):
    """Base for all streamed rows — frozen, unknown columns ignored."""
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


# ─── Reference rows ─────────────────────────────────────


class ReferenceRow(Row):
    """An entity id and its display name (claims, empires, players)."""
    entity_id: int
    name: str = Field(validation_alias=AliasChoices("name", "username"))


# ─── Fact rows ──────────────────────────────────────────


class ChatRow(Row):
    """A chat message posted in the region."""
    entity_id: Optional[int] = None
    channel_id: int
    target_id: int = 0
    username: str
    text: str
    timestamp: Optional[EpochSeconds] = None


class ModerationRow(Row):
    """A moderation action taken against a player."""
    entity_id: Optional[int] = None
    target_entity_id: int
    policy: Policy = Field(
        validation_alias=AliasChoices("policy", "user_moderation_policy")
    )
    expiration_time: Optional[Timestamp] = None


# ─── One tick of the change feed ────────────────────────


class UpdateBatch(BaseModel):
    """Rows inserted during one tick, partitioned by table.

    Learn: Tables the relay doesn't know about are dropped on the floor —
    the subscription never asks for them, so seeing one means a newer
    module, not an error.
    """
    model_config = ConfigDict(frozen=True)

    claims: list[ReferenceRow] = Field(default_factory=list)
    empires: list[ReferenceRow] = Field(default_factory=list)
    players: list[ReferenceRow] = Field(default_factory=list)
    chat_messages: list[ChatRow] = Field(default_factory=list)
    moderations: list[ModerationRow] = Field(default_factory=list)

    @classmethod
    def from_tables(cls, tables: dict[str, list[dict]]) -> "UpdateBatch":
        """Build a batch from a {table_name: [row, ...]} mapping."""
        return cls(
            claims=tables.get(CLAIM_STATE, []),
            empires=tables.get(EMPIRE_STATE, []),
            players=tables.get(PLAYER_USERNAME_STATE, []),
            chat_messages=tables.get(CHAT_MESSAGE_STATE, []),
            moderations=tables.get(USER_MODERATION_STATE, []),
        )

    def reference_rows(self) -> dict[str, list[ReferenceRow]]:
        return {
            CLAIM_STATE: self.claims,
            EMPIRE_STATE: self.empires,
            PLAYER_USERNAME_STATE: self.players,
        }

    def is_empty(self) -> bool:
        return not (
            self.claims
            or self.empires
            or self.players
            or self.chat_messages
            or self.moderations
        )
