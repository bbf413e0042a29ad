"""Replay source — feed a recorded JSON-lines file through the pipeline.

Each non-blank line is one tick:

    {"empire_state": [{"entity_id": 5, "name": "Sol Empire"}],
     "chat_message_state": [{"channel_id": 3, "target_id": 5,
                             "username": "Bob", "text": "hello"}]}

Useful for trying a webhook without a live region.
"""

import asyncio
import json
from pathlib import Path
from typing import AsyncIterator

from pydantic import ValidationError

from herald.schemas.rows import UpdateBatch
from herald.sources.base import ChangeSource, SourceError


class ReplaySource(ChangeSource):
    def __init__(self, path: str | Path, interval: float = 0.0):
        self.path = Path(path)
        self.interval = interval

    @property
    def name(self) -> str:
        return "replay"

    async def batches(self) -> AsyncIterator[UpdateBatch]:
        with self.path.open(encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    tables = json.loads(line)
                    batch = UpdateBatch.from_tables(tables)
                except (ValueError, TypeError, AttributeError, ValidationError) as e:
                    raise SourceError(f"{self.path}:{lineno}: {e}") from e
                yield batch
                if self.interval:
                    await asyncio.sleep(self.interval)
