"""Table names and enumerations of the region module.

Learn: Centralizing table names as constants prevents typos and makes it
easy to discover every table the relay subscribes to. The enum values
mirror the region module's own numbering, so they must not be reordered.
"""

from enum import Enum, IntEnum

# ─── Reference tables (id → display name) ────────────────

CLAIM_STATE = "claim_state"
EMPIRE_STATE = "empire_state"
PLAYER_USERNAME_STATE = "player_username_state"

REFERENCE_TABLES = (CLAIM_STATE, EMPIRE_STATE, PLAYER_USERNAME_STATE)

# ─── Fact tables (events we notify about) ────────────────

CHAT_MESSAGE_STATE = "chat_message_state"
USER_MODERATION_STATE = "user_moderation_state"


class ChatChannel(IntEnum):
    """Chat channels as numbered by the region module.

    Channels below EMPIRE_INTERNAL are local/private and never subscribed.
    """
    SYSTEM = 0
    LOCAL = 1
    PRIVATE = 2
    EMPIRE_INTERNAL = 3
    EMPIRE_PUBLIC = 4
    CLAIM = 5
    REGION = 6


class ModerationPolicy(str, Enum):
    """User moderation policies, in the module's variant order."""
    PERMANENT_BLOCK_LOGIN = "PermanentBlockLogin"
    TEMPORARY_BLOCK_LOGIN = "TemporaryBlockLogin"
    BLOCK_CHAT = "BlockChat"
    BLOCK_CONSTRUCT = "BlockConstruct"

    @classmethod
    def from_index(cls, index: int) -> "ModerationPolicy":
        members = list(cls)
        if not 0 <= index < len(members):
            raise IndexError(index)
        return members[index]


class ResolutionPolicy(str, Enum):
    """What to do with a moderation row whose player isn't cached yet.

    - substitute: use "{<id>}" as the name and notify anyway
    - drop: skip the row silently
    - warn: skip the row and log a warning
    """
    SUBSTITUTE = "substitute"
    DROP = "drop"
    WARN = "warn"
