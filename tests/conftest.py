"""Test fixtures — in-memory change sources and recording sinks.

Learn: Nothing here talks to a real region or webhook. Change sources are
plain lists of batches; HTTP is faked with httpx.MockTransport in the
tests that need it.
"""

import asyncio
from typing import Callable, Optional

import pytest

from herald.events.types import ChatChannel
from herald.schemas.rows import UpdateBatch
from herald.sources.base import ChangeSource


class ListSource(ChangeSource):
    """Yields the given batches, then ends, raises, or hangs."""

    def __init__(
        self,
        batches: list[UpdateBatch],
        *,
        hold: bool = False,
        error: Optional[BaseException] = None,
        before_each: Optional[Callable[[int], None]] = None,
    ):
        self._items = batches
        self.hold = hold
        self.error = error
        self.before_each = before_each
        self.closed = False

    @property
    def name(self) -> str:
        return "list"

    async def batches(self):
        for i, batch in enumerate(self._items):
            if self.before_each:
                self.before_each(i)
            yield batch
            await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        if self.hold:
            await asyncio.Event().wait()

    async def close(self) -> None:
        self.closed = True


class RecordingDelivery:
    """Stands in for WebhookDelivery; optionally fails or waits on a gate."""

    def __init__(self, ok: bool = True, gate: Optional[asyncio.Event] = None):
        self.ok = ok
        self.gate = gate
        self.payloads: list[dict] = []

    async def deliver(self, payload: dict) -> bool:
        if self.gate is not None:
            await self.gate.wait()
        self.payloads.append(payload)
        return self.ok

    async def aclose(self) -> None:
        pass


def chat(channel: ChatChannel, username: str, text: str, target_id: int = 0) -> dict:
    return {
        "channel_id": int(channel),
        "target_id": target_id,
        "username": username,
        "text": text,
        "timestamp": 1_700_000_000,
    }


@pytest.fixture()
def echoed() -> list[str]:
    """Collects console echo lines."""
    return []
