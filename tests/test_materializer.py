"""Materializer tests — cache updates and row rendering.

Learn: Tests cover:
1. Same-tick references resolve (references apply before fact rows)
2. Channel routing: empire / claim / region / ignored channels
3. Moderation phrasing for every policy
4. The three resolution policies for unknown players
5. Idempotent reference overwrite
"""

from datetime import datetime, timezone

import pytest

from conftest import chat
from herald.events.types import (
    EMPIRE_STATE,
    PLAYER_USERNAME_STATE,
    ChatChannel,
    ResolutionPolicy,
)
from herald.relay.materializer import Materializer, as_expiry
from herald.schemas.notification import Chat
from herald.schemas.rows import UpdateBatch

EXPIRY = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
EXPIRY_TOKEN = f"<t:{int(EXPIRY.timestamp())}:f>"


def moderation(target: int, policy: str, expiry: datetime = EXPIRY) -> dict:
    return {
        "target_entity_id": target,
        "user_moderation_policy": {policy: []},
        "expiration_time": {
            "__timestamp_micros_since_unix_epoch__": int(expiry.timestamp()) * 1_000_000
        },
    }


# ═══════════════════════════════════════════════════════════
# Chat rows
# ═══════════════════════════════════════════════════════════


def test_empire_chat_resolves_same_tick_reference():
    """An empire inserted in the same tick as its chat message is visible."""
    m = Materializer()
    batch = UpdateBatch.from_tables({
        "chat_message_state": [chat(ChatChannel.EMPIRE_INTERNAL, "Bob", "hello", 5)],
        "empire_state": [{"entity_id": 5, "name": "Sol Empire"}],
    })

    assert m.apply(batch) == [Chat(username="Bob [Sol Empire]", content="hello")]


def test_empire_public_uses_empire_cache():
    m = Materializer()
    m.apply(UpdateBatch.from_tables({"empire_state": [{"entity_id": 9, "name": "Nova"}]}))

    out = m.apply(UpdateBatch.from_tables({
        "chat_message_state": [chat(ChatChannel.EMPIRE_PUBLIC, "Cy", "gm", 9)],
    }))
    assert out == [Chat(username="Cy [Nova]", content="gm")]


def test_claim_chat_uses_claim_cache():
    m = Materializer()
    out = m.apply(UpdateBatch.from_tables({
        "claim_state": [{"entity_id": 7, "name": "Riverside"}],
        "chat_message_state": [chat(ChatChannel.CLAIM, "Dee", "wood here", 7)],
    }))
    assert out == [Chat(username="Dee [Riverside]", content="wood here")]


def test_region_chat_passes_through():
    m = Materializer()
    out = m.apply(UpdateBatch.from_tables({
        "chat_message_state": [chat(ChatChannel.REGION, "Ann", "hi all")],
    }))
    assert out == [Chat(username="Ann", content="hi all")]


@pytest.mark.parametrize("channel_id", [0, 1, 2, 7, 99])
def test_other_channels_ignored(channel_id):
    m = Materializer()
    out = m.apply(UpdateBatch.from_tables({
        "chat_message_state": [{
            "channel_id": channel_id, "target_id": 1,
            "username": "Eve", "text": "psst",
        }],
    }))
    assert out == []
    assert m.stats.dropped == 0


def test_unknown_empire_is_dropped():
    m = Materializer()
    out = m.apply(UpdateBatch.from_tables({
        "chat_message_state": [chat(ChatChannel.EMPIRE_INTERNAL, "Bob", "hello", 404)],
    }))
    assert out == []
    assert m.stats.dropped == 1


def test_empire_cache_does_not_answer_claim_lookups():
    m = Materializer()
    out = m.apply(UpdateBatch.from_tables({
        "empire_state": [{"entity_id": 3, "name": "Sol"}],
        "chat_message_state": [chat(ChatChannel.CLAIM, "Bob", "hi", 3)],
    }))
    assert out == []


# ═══════════════════════════════════════════════════════════
# Moderation rows
# ═══════════════════════════════════════════════════════════


@pytest.mark.parametrize(
    "policy,expected",
    [
        ("PermanentBlockLogin", "User Mallory has been banned from logging in permanently!"),
        ("TemporaryBlockLogin", f"User Mallory has been banned from logging in until {EXPIRY_TOKEN}!"),
        ("BlockChat", f"User Mallory has been banned from chatting until {EXPIRY_TOKEN}!"),
        ("BlockConstruct", f"User Mallory has been banned from building until {EXPIRY_TOKEN}!"),
    ],
)
def test_moderation_phrasing(policy, expected):
    m = Materializer()
    out = m.apply(UpdateBatch.from_tables({
        "player_username_state": [{"entity_id": 42, "username": "Mallory"}],
        "user_moderation_state": [moderation(42, policy)],
    }))
    assert out == [Chat(username="<<MODERATION>>", content=expected)]


def test_unknown_player_substituted_by_default():
    m = Materializer()
    out = m.apply(UpdateBatch.from_tables({
        "user_moderation_state": [moderation(42, "TemporaryBlockLogin")],
    }))
    assert out[0].content == (
        f"User {{42}} has been banned from logging in until {EXPIRY_TOKEN}!"
    )
    assert m.stats.substituted == 1


@pytest.mark.parametrize("policy", [ResolutionPolicy.DROP, ResolutionPolicy.WARN])
def test_unknown_player_dropped(policy):
    m = Materializer(policy)
    out = m.apply(UpdateBatch.from_tables({
        "user_moderation_state": [moderation(42, "BlockChat")],
    }))
    assert out == []
    assert m.stats.dropped == 1


def test_policy_accepts_plain_string():
    assert Materializer("drop").policy is ResolutionPolicy.DROP


def test_as_expiry_without_time():
    assert as_expiry(None) == "until further notice"


def test_naive_expiry_rendered_as_utc():
    naive = EXPIRY.replace(tzinfo=None)
    assert as_expiry(naive) == f"until {EXPIRY_TOKEN}"


def test_naive_iso_expiration_from_row_rendered_as_utc():
    m = Materializer()
    row = moderation(42, "BlockChat")
    row["expiration_time"] = "2026-01-02T03:04:05"
    out = m.apply(UpdateBatch.from_tables({
        "player_username_state": [{"entity_id": 42, "username": "Mallory"}],
        "user_moderation_state": [row],
    }))
    assert out[0].content == (
        f"User Mallory has been banned from chatting until {EXPIRY_TOKEN}!"
    )


# ═══════════════════════════════════════════════════════════
# Caches + ordering
# ═══════════════════════════════════════════════════════════


def test_reference_insert_is_idempotent():
    m = Materializer()
    batch = UpdateBatch.from_tables({"empire_state": [{"entity_id": 5, "name": "Sol"}]})
    m.apply(batch)
    once = {t: dict(c) for t, c in m.caches.items()}
    m.apply(batch)
    assert m.caches == once


def test_reference_overwrite_last_wins():
    m = Materializer()
    m.apply(UpdateBatch.from_tables({
        "player_username_state": [
            {"entity_id": 1, "username": "old"},
            {"entity_id": 1, "username": "new"},
        ],
    }))
    assert m.lookup(PLAYER_USERNAME_STATE, 1) == "new"


def test_output_order_chat_then_moderation():
    m = Materializer()
    out = m.apply(UpdateBatch.from_tables({
        "user_moderation_state": [moderation(1, "PermanentBlockLogin")],
        "chat_message_state": [
            chat(ChatChannel.REGION, "A", "first"),
            chat(ChatChannel.REGION, "B", "second"),
        ],
        "player_username_state": [{"entity_id": 1, "username": "Zed"}],
    }))
    assert [c.username for c in out] == ["A", "B", "<<MODERATION>>"]
    assert "Zed" in out[2].content


def test_cache_sizes_and_stats():
    m = Materializer()
    m.apply(UpdateBatch.from_tables({
        "empire_state": [{"entity_id": 1, "name": "E"}, {"entity_id": 2, "name": "F"}],
        "chat_message_state": [chat(ChatChannel.REGION, "A", "x")],
    }))
    assert m.cache_sizes()[EMPIRE_STATE] == 2
    assert m.stats.batches == 1
    assert m.stats.emitted == 1
