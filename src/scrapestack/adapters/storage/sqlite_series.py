"""SQLite series store adapter."""

import asyncio
import heapq
import json
import logging
import math
from collections.abc import AsyncIterable, Sequence
from pathlib import Path

from scrapestack.adapters.storage.series_utils import check_append_order, most_recent
from scrapestack.adapters.storage.sqlite_base import (
    AsyncConnectionManager,
    store_errors,
)
from scrapestack.core.errors import StoreError
from scrapestack.core.models import RetentionPolicy, Sample, SeriesKey, series_key
from scrapestack.core.ports import matches_selector

logger = logging.getLogger(__name__)

DB_FILENAME = "series.db"
DEFAULT_FLUSH_THRESHOLD = 1000

_SERIES_SCHEMA = """
CREATE TABLE IF NOT EXISTS series (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    labels TEXT NOT NULL DEFAULT '{}',
    UNIQUE (name, labels)
);
CREATE TABLE IF NOT EXISTS samples (
    series_id INTEGER NOT NULL REFERENCES series(id),
    timestamp REAL NOT NULL,
    value REAL
);
CREATE INDEX IF NOT EXISTS idx_samples_series_timestamp
    ON samples(series_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_samples_timestamp ON samples(timestamp);
"""

_SELECT_SERIES_HEADS = """
SELECT s.id, s.name, s.labels, MAX(t.timestamp)
FROM series s LEFT JOIN samples t ON t.series_id = s.id
GROUP BY s.id
"""

_INSERT_SERIES = """
INSERT OR IGNORE INTO series (name, labels) VALUES (?, ?)
"""

_SELECT_SERIES_ID = """
SELECT id FROM series WHERE name = ? AND labels = ?
"""

_INSERT_SAMPLE = """
INSERT INTO samples (series_id, timestamp, value) VALUES (?, ?, ?)
"""

_SELECT_RANGE = """
SELECT timestamp, value FROM samples
WHERE series_id = ? AND timestamp >= ? AND timestamp <= ?
ORDER BY timestamp ASC, rowid ASC
"""

_SELECT_LATEST = """
SELECT timestamp, value FROM samples
WHERE series_id = ? AND timestamp <= ?
ORDER BY timestamp DESC, rowid DESC
LIMIT 1
"""

_SELECT_SINCE = """
SELECT s.name, s.labels, t.timestamp, t.value
FROM samples t JOIN series s ON s.id = t.series_id
WHERE t.timestamp > ?
ORDER BY t.timestamp ASC, t.rowid ASC
"""

_COUNT_SAMPLES = """
SELECT COUNT(*) FROM samples
"""


def _encode_labels(labels: dict[str, str]) -> str:
    return json.dumps(labels, sort_keys=True, separators=(",", ":"))


def _decode_value(value: float | None) -> float:
    # SQLite binds NaN as NULL; infinities round-trip as REAL.
    return math.nan if value is None else value


class SQLiteSeriesStore:
    """SQLite implementation of SeriesStorePort.

    Owns a data directory holding ``series.db``. Appends go to an in-memory
    buffer which is written in a single transaction once it holds
    ``flush_threshold`` samples, and on flush() and close(). Reads merge
    flushed rows with the buffer under the same lock as flushes, so queries
    see every appended sample exactly once.

    Durability boundary: samples still buffered when the process dies are
    lost. Everything flushed survives a restart; reopening the directory
    returns the same query results for those samples.
    """

    def __init__(
        self,
        data_dir: str | Path,
        flush_threshold: int = DEFAULT_FLUSH_THRESHOLD,
    ) -> None:
        if flush_threshold < 1:
            raise ValueError("flush_threshold must be at least 1")
        self._data_dir = Path(data_dir)
        self._manager = AsyncConnectionManager(
            str(self._data_dir / DB_FILENAME), _SERIES_SCHEMA
        )
        self._flush_threshold = flush_threshold
        self._buffer: list[Sample] = []
        self._series_ids: dict[SeriesKey, int] = {}
        self._heads: dict[SeriesKey, float] = {}
        self._opened = False
        self._open_lock: asyncio.Lock | None = None
        self._lock: asyncio.Lock | None = None

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    @property
    def buffered(self) -> int:
        """Number of appended samples not yet flushed to disk."""
        return len(self._buffer)

    def _get_lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def open(self) -> None:
        """Create the data directory and schema, and load series heads.

        Safe to call more than once. Every other operation opens the store
        on first use.

        Raises:
            StoreError: If the directory or database cannot be initialized.
        """
        if self._opened:
            return
        if self._open_lock is None:
            self._open_lock = asyncio.Lock()
        async with self._open_lock:
            if self._opened:
                return
            try:
                self._data_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StoreError(
                    f"cannot create data directory {self._data_dir}: {e}"
                ) from e
            with store_errors(f"opening {self._manager.db_path}"):
                async with self._manager.connection() as db:
                    async with db.execute(_SELECT_SERIES_HEADS) as cursor:
                        async for row in cursor:
                            key = series_key(row[1], json.loads(row[2]))
                            self._series_ids[key] = row[0]
                            if row[3] is not None:
                                self._heads[key] = row[3]
            self._opened = True
            logger.debug(
                "Opened series store %s with %d series",
                self._data_dir,
                len(self._series_ids),
            )

    # --- Write path ---

    async def append(self, samples: Sequence[Sample]) -> None:
        """Append a batch of samples, all or nothing.

        Once accepted, samples stay buffered until a flush commits them. A
        failed flush triggered here is logged and retried on the next flush.

        Raises:
            StoreError: If a sample is out of order. The batch is not stored.
        """
        await self.open()
        heads = check_append_order(samples, self._heads.get)
        self._heads.update(heads)
        self._buffer.extend(samples)
        if len(self._buffer) >= self._flush_threshold:
            try:
                await self.flush()
            except StoreError as e:
                logger.error(
                    "Flush failed, %d sample(s) remain buffered: %s",
                    len(self._buffer),
                    e,
                )

    async def flush(self) -> None:
        """Write buffered samples to disk in one transaction.

        Samples leave the buffer only once their transaction has committed.
        """
        await self.open()
        await asyncio.shield(self._flush_locked())

    async def _flush_locked(self) -> None:
        async with self._get_lock():
            if self._buffer:
                await self._write_pending(list(self._buffer))

    async def _write_pending(self, pending: list[Sample]) -> None:
        new_ids: dict[SeriesKey, int] = {}
        with store_errors("flushing samples"):
            async with self._manager.connection() as db:
                rows = []
                for sample in pending:
                    key = sample.series_key
                    series_id = self._series_ids.get(key) or new_ids.get(key)
                    if series_id is None:
                        labels = _encode_labels(sample.labels)
                        await db.execute(_INSERT_SERIES, (sample.name, labels))
                        async with db.execute(
                            _SELECT_SERIES_ID, (sample.name, labels)
                        ) as cursor:
                            row = await cursor.fetchone()
                        if row is None:
                            raise StoreError(f"series for {sample.name} vanished")
                        series_id = new_ids[key] = row[0]
                    value = None if math.isnan(sample.value) else sample.value
                    rows.append((series_id, sample.timestamp, value))
                await db.executemany(_INSERT_SAMPLE, rows)
                await db.commit()
        self._series_ids.update(new_ids)
        del self._buffer[: len(pending)]
        logger.debug("Flushed %d sample(s) to %s", len(pending), self._data_dir)

    # --- Read path ---

    def _buffered_for(self, key: SeriesKey) -> list[Sample]:
        return [s for s in self._buffer if s.series_key == key]

    def _matching(
        self, name: str | None, selector: dict[str, str] | None
    ) -> list[SeriesKey]:
        keys = set(self._series_ids) | {s.series_key for s in self._buffer}
        return sorted(
            key
            for key in keys
            if (name is None or key[0] == name) and matches_selector(key[1], selector)
        )

    async def range(
        self,
        name: str,
        selector: dict[str, str] | None,
        start: float,
        end: float,
    ) -> list[Sample]:
        """Return samples with start <= timestamp <= end from matching series."""
        await self.open()
        result: list[Sample] = []
        with store_errors("range query"):
            async with self._get_lock(), self._manager.connection() as db:
                for key in self._matching(name, selector):
                    labels = dict(key[1])
                    series_id = self._series_ids.get(key)
                    if series_id is not None:
                        async with db.execute(
                            _SELECT_RANGE, (series_id, start, end)
                        ) as cursor:
                            async for row in cursor:
                                result.append(
                                    Sample(
                                        name=key[0],
                                        timestamp=row[0],
                                        value=_decode_value(row[1]),
                                        labels=dict(labels),
                                    )
                                )
                    result.extend(
                        s
                        for s in self._buffered_for(key)
                        if start <= s.timestamp <= end
                    )
        return result

    async def latest(
        self, name: str, selector: dict[str, str] | None, at: float
    ) -> list[Sample]:
        """Return the newest sample at or before ``at`` for each series."""
        await self.open()
        result: list[Sample] = []
        with store_errors("instant query"):
            async with self._get_lock(), self._manager.connection() as db:
                for key in self._matching(name, selector):
                    buffered = [s for s in self._buffered_for(key) if s.timestamp <= at]
                    if buffered:
                        result.append(buffered[-1])
                        continue
                    series_id = self._series_ids.get(key)
                    if series_id is None:
                        continue
                    async with db.execute(_SELECT_LATEST, (series_id, at)) as cursor:
                        row = await cursor.fetchone()
                    if row is not None:
                        result.append(
                            Sample(
                                name=key[0],
                                timestamp=row[0],
                                value=_decode_value(row[1]),
                                labels=dict(key[1]),
                            )
                        )
        return result

    async def instant(
        self, name: str, selector: dict[str, str] | None, at: float
    ) -> Sample | None:
        """Return the newest sample at or before ``at`` across matching series."""
        return most_recent(await self.latest(name, selector, at))

    async def series(
        self, name: str | None = None, selector: dict[str, str] | None = None
    ) -> list[SeriesKey]:
        await self.open()
        return self._matching(name, selector)

    async def names(self) -> list[str]:
        await self.open()
        return sorted({key[0] for key in self._matching(None, None)})

    async def read(self, since: float = 0) -> AsyncIterable[Sample]:
        """Yield samples with timestamp > since, ordered by timestamp ascending."""
        await self.open()
        stored: list[Sample] = []
        # Disk rows and the buffer snapshot are taken under the lock so a
        # concurrent flush cannot move samples between them.
        with store_errors("export query"):
            async with self._get_lock(), self._manager.connection() as db:
                buffered = sorted(
                    (s for s in self._buffer if s.timestamp > since),
                    key=lambda s: s.timestamp,
                )
                async with db.execute(_SELECT_SINCE, (since,)) as cursor:
                    async for row in cursor:
                        stored.append(
                            Sample(
                                name=row[0],
                                timestamp=row[2],
                                value=_decode_value(row[3]),
                                labels=json.loads(row[1]),
                            )
                        )
        for sample in heapq.merge(stored, buffered, key=lambda s: s.timestamp):
            yield sample

    async def count(self) -> int:
        """Return the number of samples, flushed and buffered."""
        await self.open()
        with store_errors("count query"):
            async with self._get_lock(), self._manager.connection() as db:
                async with db.execute(_COUNT_SAMPLES) as cursor:
                    row = await cursor.fetchone()
                buffered = len(self._buffer)
        return (row[0] if row else 0) + buffered

    # --- Lifecycle ---

    async def apply_retention(self, policy: RetentionPolicy, now: float) -> int:
        """Delete whole series whose newest sample is older than the policy allows.

        A policy without max_age_seconds deletes nothing.
        """
        if policy.max_age_seconds is None:
            return 0
        await self.open()
        cutoff = now - policy.max_age_seconds
        async with self._get_lock():
            expired = [key for key, head in self._heads.items() if head < cutoff]
            if not expired:
                return 0
            expired_ids = [
                self._series_ids[key] for key in expired if key in self._series_ids
            ]
            with store_errors("retention"):
                async with self._manager.connection() as db:
                    for series_id in expired_ids:
                        await db.execute(
                            "DELETE FROM samples WHERE series_id = ?", (series_id,)
                        )
                        await db.execute(
                            "DELETE FROM series WHERE id = ?", (series_id,)
                        )
                    await db.commit()
            expired_set = set(expired)
            self._buffer[:] = [
                s for s in self._buffer if s.series_key not in expired_set
            ]
            for key in expired:
                self._heads.pop(key, None)
                self._series_ids.pop(key, None)
        logger.info("Retention removed %d series from %s", len(expired), self._data_dir)
        return len(expired)

    async def close(self) -> None:
        """Flush buffered samples. The store reopens on next use."""
        if not self._opened:
            return
        await self.flush()
        self._opened = False
        self._series_ids.clear()
        self._heads.clear()
