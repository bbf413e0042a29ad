"""SpacetimeDB change source — polls the region's HTTP SQL endpoint.

Learn: The relay only ever needs inserts, so instead of holding a
subscription open we re-run the subscription queries every poll_interval
seconds and diff against what we've already seen:

    POST {cluster_url}/v1/database/{region}/sql
    Authorization: Bearer <token>
    body: SELECT * FROM chat_message_state WHERE ...

Rows are keyed by entity_id. A key we haven't seen (or a reference row
whose name changed) counts as an insert for this tick. Everything new
from one poll becomes one UpdateBatch, and a poll only counts once every
query in it has succeeded.

Reference tables are small and re-read in full. The fact tables only grow,
so each keeps a lower bound that moves up to the newest row seen; rows
below it are forgotten and no longer fetched.

Result sets come back as SATS-JSON: a schema listing column names plus
positional rows. decode_result() zips them into dicts so the row schemas
can validate them.

Failure handling mirrors the dispatcher's fallback poller: an error is
logged and the loop sleeps and tries again. After max_failures
consecutive errors the source gives up with SourceError.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Optional

import httpx
import structlog

from herald.events.types import (
    CHAT_MESSAGE_STATE,
    CLAIM_STATE,
    EMPIRE_STATE,
    PLAYER_USERNAME_STATE,
    USER_MODERATION_STATE,
    ChatChannel,
)
from herald.schemas.rows import (
    UpdateBatch,
    assume_utc,
    decode_epoch_seconds,
    decode_timestamp,
)
from herald.sources.base import ChangeSource, SourceError

logger = structlog.get_logger()

FACT_TABLES = (CHAT_MESSAGE_STATE, USER_MODERATION_STATE)


def subscription_queries(
    chat_since: datetime, moderation_since: Optional[datetime] = None
) -> dict[str, str]:
    """The per-table queries, with fact tables limited to rows from a bound on."""
    if moderation_since is None:
        moderation_since = chat_since
    return {
        CLAIM_STATE: f"SELECT * FROM {CLAIM_STATE}",
        EMPIRE_STATE: f"SELECT * FROM {EMPIRE_STATE}",
        PLAYER_USERNAME_STATE: f"SELECT * FROM {PLAYER_USERNAME_STATE}",
        CHAT_MESSAGE_STATE: (
            f"SELECT t.* FROM {CHAT_MESSAGE_STATE} t "
            f"WHERE t.channel_id > {ChatChannel.PRIVATE.value} "
            f"AND t.timestamp >= {int(chat_since.timestamp())}"
        ),
        USER_MODERATION_STATE: (
            f"SELECT t.* FROM {USER_MODERATION_STATE} t "
            f"WHERE t.created_time >= '{moderation_since.isoformat()}'"
        ),
    }


def fact_time(table: str, row: dict) -> Optional[datetime]:
    """When a fact row was written, or None if the row doesn't say."""
    if table == CHAT_MESSAGE_STATE:
        value = decode_epoch_seconds(row.get("timestamp"))
    else:
        value = decode_timestamp(row.get("created_time"))
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    return assume_utc(value)


def _column_name(element: dict) -> str:
    name = element.get("name")
    if isinstance(name, dict):
        # Option<String> encoded as {"some": "col"}
        name = name.get("some")
    if not isinstance(name, str):
        raise SourceError(f"Unnamed column in result schema: {element!r}")
    return name


def decode_result(body: Any) -> list[dict]:
    """Zip a SQL endpoint response into a list of {column: value} dicts."""
    if isinstance(body, list):
        if not body:
            return []
        body = body[0]
    try:
        columns = [_column_name(e) for e in body["schema"]["elements"]]
        return [dict(zip(columns, row)) for row in body["rows"]]
    except (KeyError, TypeError) as e:
        raise SourceError(f"Unexpected SQL response shape: {e}") from e


def _row_key(row: dict) -> Any:
    if "entity_id" in row:
        return row["entity_id"]
    return json.dumps(row, sort_keys=True, default=str)


class SpacetimeSqlSource(ChangeSource):
    """Polling change feed for one region module."""

    def __init__(
        self,
        cluster_url: str,
        region: str,
        token: str,
        *,
        poll_interval: float = 2.0,
        max_failures: int = 5,
        client: Optional[httpx.AsyncClient] = None,
        on_connect: Optional[Callable[[], None]] = None,
        start: Optional[datetime] = None,
    ):
        self.region = region
        self.poll_interval = poll_interval
        self.max_failures = max_failures
        self.on_connect = on_connect
        self.start = assume_utc(start) if start else datetime.now(timezone.utc)
        # fact table → lower bound of the next query
        self._marks: dict[str, datetime] = {t: self.start for t in FACT_TABLES}
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=cluster_url.rstrip("/"),
            headers={"Authorization": f"Bearer {token}"},
            timeout=30.0,
        )
        # table → key → last seen row
        self._seen: dict[str, dict[Any, dict]] = {t: {} for t in self.queries}
        self._connected = False

    @property
    def name(self) -> str:
        return "spacetime"

    @property
    def queries(self) -> dict[str, str]:
        return subscription_queries(
            self._marks[CHAT_MESSAGE_STATE], self._marks[USER_MODERATION_STATE]
        )

    async def _query(self, sql: str) -> list[dict]:
        r = await self._client.post(
            f"/v1/database/{self.region}/sql",
            content=sql,
            headers={"Content-Type": "text/plain"},
        )
        r.raise_for_status()
        return decode_result(r.json())

    async def poll(self) -> dict[str, list[dict]]:
        """Run every query once and return the rows not seen before.

        Nothing is marked seen unless every query in the poll succeeded,
        so a failed poll is retried in full.
        """
        results = {}
        for table, sql in self.queries.items():
            results[table] = await self._query(sql)

        fresh: dict[str, list[dict]] = {}
        for table, rows in results.items():
            seen = self._seen[table]
            mark = self._marks.get(table)
            new = []
            for row in rows:
                if mark is not None:
                    written = fact_time(table, row)
                    if written is not None and written < mark:
                        continue
                key = _row_key(row)
                if seen.get(key) != row:
                    seen[key] = row
                    new.append(row)
            if new:
                fresh[table] = new

        for table in FACT_TABLES:
            self._advance(table)
        return fresh

    def _advance(self, table: str) -> None:
        """Raise a fact table's lower bound and forget rows below it."""
        seen = self._seen[table]
        times = {key: fact_time(table, row) for key, row in seen.items()}
        known = [t for t in times.values() if t is not None]
        if known:
            self._marks[table] = max(self._marks[table], max(known))
        mark = self._marks[table]
        for key, written in times.items():
            if written is not None and written < mark:
                del seen[key]

    async def batches(self) -> AsyncIterator[UpdateBatch]:
        failures = 0
        while True:
            try:
                tables = await self.poll()
            except (httpx.HTTPError, SourceError, ValueError) as e:
                failures += 1
                logger.warning(
                    "herald.source.poll_failed",
                    region=self.region,
                    failures=failures,
                    error=str(e) or e.__class__.__name__,
                )
                if failures >= self.max_failures:
                    raise SourceError(
                        f"Giving up on region {self.region} after "
                        f"{failures} failed polls: {e}"
                    ) from e
                await asyncio.sleep(self.poll_interval)
                continue

            failures = 0
            if not self._connected:
                self._connected = True
                logger.info("herald.source.connected", region=self.region)
                if self.on_connect:
                    self.on_connect()

            if tables:
                yield UpdateBatch.from_tables(tables)
            await asyncio.sleep(self.poll_interval)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
