"""Materializer — name caches + row → notification transformation.

Learn: The region database streams raw rows that only carry numeric ids
(an empire chat message knows its empire's entity_id, not its name). The
materializer keeps three id → name caches built from reference-table
inserts and uses them to render readable notifications.

Per batch (one tick of the change feed):
1. Apply every reference row (claims, empires, players) — overwrite wins
2. Render chat rows, in batch order
3. Render moderation rows, in batch order

Step 1 always runs first, so a fact row can name an entity inserted in
the same tick.

Key design decisions:
- The caches belong to whichever task calls apply() — never shared
- A cache miss is an outcome, not an error (see ResolutionPolicy)
- Chat rows for unknown empires/claims are always dropped
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import structlog

from herald.events.types import (
    CLAIM_STATE,
    EMPIRE_STATE,
    PLAYER_USERNAME_STATE,
    REFERENCE_TABLES,
    ChatChannel,
    ModerationPolicy,
    ResolutionPolicy,
)
from herald.schemas.notification import Chat
from herald.schemas.rows import ChatRow, ModerationRow, UpdateBatch, assume_utc

logger = structlog.get_logger()

# policy → verb phrase used in "banned from <action>"
MODERATION_ACTIONS = {
    ModerationPolicy.PERMANENT_BLOCK_LOGIN: "logging in",
    ModerationPolicy.TEMPORARY_BLOCK_LOGIN: "logging in",
    ModerationPolicy.BLOCK_CHAT: "chatting",
    ModerationPolicy.BLOCK_CONSTRUCT: "building",
}


def as_expiry(expiration: Optional[datetime]) -> str:
    """Render an expiration time as a Discord timestamp token.

    Learn: "<t:SECONDS:f>" is shown by Discord in each reader's own
    timezone, so we only need whole seconds since the epoch.
    """
    if expiration is None:
        return "until further notice"
    return f"until <t:{int(assume_utc(expiration).timestamp())}:f>"


@dataclass
class MaterializerStats:
    """Runtime counters for monitoring."""
    batches: int = 0
    emitted: int = 0
    dropped: int = 0
    substituted: int = 0


class Materializer:
    """Incrementally maintained name caches and the row renderer."""

    def __init__(self, policy: ResolutionPolicy = ResolutionPolicy.SUBSTITUTE):
        self.policy = ResolutionPolicy(policy)
        self.caches: dict[str, dict[int, str]] = {
            table: {} for table in REFERENCE_TABLES
        }
        self.stats = MaterializerStats()

    def apply(self, batch: UpdateBatch) -> list[Chat]:
        """Fold one tick into the caches and return its notifications."""
        self.stats.batches += 1

        for table, rows in batch.reference_rows().items():
            cache = self.caches[table]
            for row in rows:
                cache[row.entity_id] = row.name

        out: list[Chat] = []
        for row in batch.chat_messages:
            msg = self._on_chat(row)
            if msg is not None:
                out.append(msg)
        for row in batch.moderations:
            msg = self._on_moderation(row)
            if msg is not None:
                out.append(msg)

        self.stats.emitted += len(out)
        return out

    # ─── Fact row handlers ────────────────────────────────

    def _on_chat(self, row: ChatRow) -> Optional[Chat]:
        try:
            channel = ChatChannel(row.channel_id)
        except ValueError:
            return None

        if channel in (ChatChannel.EMPIRE_INTERNAL, ChatChannel.EMPIRE_PUBLIC):
            table = EMPIRE_STATE
        elif channel == ChatChannel.CLAIM:
            table = CLAIM_STATE
        elif channel == ChatChannel.REGION:
            return Chat(username=row.username, content=row.text)
        else:
            return None

        name = self.caches[table].get(row.target_id)
        if name is None:
            logger.debug(
                "herald.chat_unresolved",
                table=table,
                target_id=row.target_id,
                username=row.username,
            )
            self.stats.dropped += 1
            return None
        return Chat.tagged(row.username, name, row.text)

    def _on_moderation(self, row: ModerationRow) -> Optional[Chat]:
        name = self.caches[PLAYER_USERNAME_STATE].get(row.target_entity_id)
        if name is None:
            if self.policy == ResolutionPolicy.SUBSTITUTE:
                name = f"{{{row.target_entity_id}}}"
                self.stats.substituted += 1
            else:
                if self.policy == ResolutionPolicy.WARN:
                    logger.warning(
                        "herald.moderation_unresolved",
                        target_entity_id=row.target_entity_id,
                        policy=row.policy.value,
                    )
                self.stats.dropped += 1
                return None

        action = MODERATION_ACTIONS[row.policy]
        if row.policy == ModerationPolicy.PERMANENT_BLOCK_LOGIN:
            expiry = "permanently"
        else:
            expiry = as_expiry(row.expiration_time)
        return Chat.moderation(name, action, expiry)

    # ─── Introspection ────────────────────────────────────

    def lookup(self, table: str, entity_id: int) -> Optional[str]:
        return self.caches[table].get(entity_id)

    def cache_sizes(self) -> dict[str, int]:
        return {table: len(cache) for table, cache in self.caches.items()}
