"""Change source base — pluggable interface for region change feeds.

Learn: Herald doesn't care how inserts reach it. A source yields one
UpdateBatch per tick, in order, until it disconnects:
- the iterator ending means a clean disconnect
- raising (SourceError or a transport error) means a failed one

Either way the coordinator drains the pipeline and reports the outcome.
"""

from abc import ABC, abstractmethod
from typing import AsyncIterator

from herald.schemas.rows import UpdateBatch


class SourceError(Exception):
    """The change feed failed and cannot continue."""


class ChangeSource(ABC):
    """Abstract base for change feeds."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Source identifier for logs, e.g. 'spacetime', 'replay'."""

    @abstractmethod
    def batches(self) -> AsyncIterator[UpdateBatch]:
        """Yield inserted rows tick by tick until disconnected."""

    async def close(self) -> None:
        """Release connections. Called once after iteration stops."""
