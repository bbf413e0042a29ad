"""Shutdown coordinator — runs the pipeline and drains it deterministically.

Learn: The coordinator runs three concurrent tasks:
1. ingest      — pulls UpdateBatches from the change source
2. materialize — applies each batch and enqueues its notifications
3. sink        — echoes and delivers notifications until Disconnect

States: RUNNING → DRAINING → TERMINATED

Draining starts when the operator asks (request_shutdown, wired to
SIGINT/SIGTERM), when the source disconnects on its own (clean end or
error), or when the sink dies before DISCONNECT. From then on:
- ingest stops reading; a pending read is abandoned, but a batch that was
  already received is always materialized in full (no partial ticks)
- once materialize has applied everything it was handed, the queue is
  closed, which enqueues DISCONNECT behind every notification produced
- the sink drains up to DISCONNECT and returns

Key design decisions:
- Caches live in the materialize task only — tasks share nothing but
  queues and the one-shot cancel event
- The sentinel is enqueued by exactly one place (run()'s finally), and
  NotificationQueue.close() is itself idempotent
- Nothing is force-killed: each task stops at its own clean point
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

import structlog

from herald.relay.materializer import Materializer
from herald.relay.queue import NotificationQueue
from herald.relay.sink import Sink, SinkStats
from herald.schemas.rows import UpdateBatch
from herald.sources.base import ChangeSource

logger = structlog.get_logger()


class CoordinatorState(str, Enum):
    RUNNING = "running"
    DRAINING = "draining"
    TERMINATED = "terminated"


@dataclass
class DisconnectOutcome:
    """How the run ended — reported to the operator on exit."""
    reason: str
    error: Optional[BaseException] = None
    sink: SinkStats = field(default_factory=SinkStats)

    @property
    def ok(self) -> bool:
        return self.error is None


class ShutdownCoordinator:
    def __init__(
        self,
        source: ChangeSource,
        materializer: Materializer,
        queue: NotificationQueue,
        sink: Sink,
    ):
        self.source = source
        self.materializer = materializer
        self.queue = queue
        self.sink = sink
        self.state = CoordinatorState.RUNNING
        self.started_at: Optional[datetime] = None
        self.errors = 0
        self._cancel = asyncio.Event()
        # None marks the end of ingestion
        self._batches: asyncio.Queue[Optional[UpdateBatch]] = asyncio.Queue()
        self._reason: Optional[str] = None
        self._error: Optional[BaseException] = None

    def request_shutdown(self, reason: str = "cancelled") -> None:
        """Begin draining. Safe to call any number of times."""
        if self._reason is None:
            self._reason = reason
        if self.state == CoordinatorState.RUNNING:
            self.state = CoordinatorState.DRAINING
            logger.info("herald.draining", reason=self._reason)
        self._cancel.set()

    def _sink_ended(self, sink: asyncio.Task) -> None:
        """The sink stopped before DISCONNECT; nothing would drain the queue."""
        error = None if sink.cancelled() else sink.exception()
        if error is None:
            error = RuntimeError("sink stopped before disconnect")
        logger.error(
            "herald.sink_failed",
            error=str(error) or error.__class__.__name__,
            exc_info=error,
        )
        self._error = self._error or error
        self.request_shutdown("sink error")

    async def run(self) -> DisconnectOutcome:
        """Run until drained. Returns the disconnect outcome."""
        self.started_at = datetime.now(timezone.utc)
        logger.info("herald.running", source=self.source.name)

        ingest = asyncio.create_task(self._ingest(), name="herald-ingest")
        materialize = asyncio.create_task(
            self._materialize(), name="herald-materialize"
        )
        sink = asyncio.create_task(self.sink.run(), name="herald-sink")

        ended_early = False
        try:
            # The sink only ends on its own by failing
            done, _ = await asyncio.wait(
                {materialize, sink}, return_when=asyncio.FIRST_COMPLETED
            )
            ended_early = sink in done and not materialize.done()
            if ended_early:
                self._sink_ended(sink)
            await materialize
            await ingest
        finally:
            self.queue.close()

        try:
            stats = await sink
        except Exception as e:
            if not ended_early:
                logger.exception("herald.sink_failed")
            self._error = self._error or e
            stats = self.sink.stats

        self.state = CoordinatorState.TERMINATED
        outcome = DisconnectOutcome(
            reason=self._reason or "disconnected",
            error=self._error,
            sink=stats,
        )
        logger.info(
            "herald.terminated",
            reason=outcome.reason,
            ok=outcome.ok,
            echoed=stats.echoed,
            delivered=stats.delivered,
            failed=stats.failed,
        )
        return outcome

    # ─── Tasks ────────────────────────────────────────────

    async def _ingest(self) -> None:
        """Forward batches from the source until cancelled or disconnected."""
        batches = self.source.batches()
        try:
            while not self._cancel.is_set():
                pending = asyncio.ensure_future(anext(batches, None))
                cancelled = asyncio.ensure_future(self._cancel.wait())
                done, _ = await asyncio.wait(
                    {pending, cancelled}, return_when=asyncio.FIRST_COMPLETED
                )

                if pending not in done:
                    # Nothing received yet, abandon the read
                    pending.cancel()
                    try:
                        await pending
                    except asyncio.CancelledError:
                        pass
                    break

                cancelled.cancel()
                batch = pending.result()
                if batch is None:
                    self.request_shutdown("disconnected")
                    break
                await self._batches.put(batch)

        except Exception as e:
            logger.error(
                "herald.source_failed",
                source=self.source.name,
                error=str(e) or e.__class__.__name__,
            )
            self._error = e
            self.request_shutdown("source error")

        finally:
            try:
                aclose = getattr(batches, "aclose", None)
                if aclose is not None:
                    await aclose()
                await self.source.close()
            except Exception:
                logger.exception("herald.source_close_failed")
            finally:
                self._batches.put_nowait(None)

    async def _materialize(self) -> None:
        """Apply batches in order and enqueue what they produce."""
        while True:
            batch = await self._batches.get()
            if batch is None:
                return
            try:
                msgs = self.materializer.apply(batch)
            except Exception:
                # Skip the tick
                logger.exception("herald.materialize_failed")
                self.errors += 1
                continue
            self.queue.put_many(msgs)

    # ─── Stats ────────────────────────────────────────────

    def get_stats(self) -> dict:
        """Return pipeline statistics for monitoring."""
        m = self.materializer.stats
        return {
            "state": self.state.value,
            "caches": self.materializer.cache_sizes(),
            "batches": m.batches,
            "emitted": m.emitted,
            "dropped": m.dropped,
            "substituted": m.substituted,
            "errors": self.errors,
            "queued": self.queue.qsize(),
            "echoed": self.sink.stats.echoed,
            "delivered": self.sink.stats.delivered,
            "failed": self.sink.stats.failed,
            "started_at": (
                self.started_at.isoformat() if self.started_at else None
            ),
        }
