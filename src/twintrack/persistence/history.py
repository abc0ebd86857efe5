"""SQLite-backed history of object summaries and track points."""

from __future__ import annotations

import asyncio
import functools
import logging
import sqlite3
import threading
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from pathlib import Path as FsPath
from typing import Any, TypeVar

from twintrack._scheduling import now_ms
from twintrack.config import TrackerConfig
from twintrack.exceptions import PersistenceError
from twintrack.models.entity import PathPoint
from twintrack.models.records import ObjectRecord, TrackPoint

_logger = logging.getLogger(__name__)

T = TypeVar("T")

DAY_SECONDS = 24 * 60 * 60
DAY_MS = DAY_SECONDS * 1000
# Rough on-disk footprint of one track point, used for storage estimates.
_POINT_SIZE_ESTIMATE = 100

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS objects (
        id TEXT PRIMARY KEY,
        display_name TEXT NOT NULL,
        kind TEXT NOT NULL,
        first_seen_at INTEGER NOT NULL,
        last_seen_at INTEGER NOT NULL,
        source_id TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_objects_kind ON objects(kind)",
    "CREATE INDEX IF NOT EXISTS idx_objects_last_seen ON objects(last_seen_at)",
    """
    CREATE TABLE IF NOT EXISTS track_points (
        entity_id TEXT NOT NULL,
        timestamp INTEGER NOT NULL,
        latitude REAL NOT NULL,
        longitude REAL NOT NULL,
        altitude REAL NOT NULL DEFAULT 0,
        speed REAL,
        direction REAL,
        confidence REAL,
        source_id TEXT,
        detection_count INTEGER,
        PRIMARY KEY (entity_id, timestamp)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_track_points_timestamp ON track_points(timestamp)",
    "CREATE TABLE IF NOT EXISTS store_meta (key TEXT PRIMARY KEY, value TEXT NOT NULL)",
)

_UPSERT_OBJECT = """
    INSERT INTO objects (id, display_name, kind, first_seen_at, last_seen_at, source_id)
    VALUES (:id, :display_name, :kind, :first_seen_at, :last_seen_at, :source_id)
    ON CONFLICT(id) DO UPDATE SET
        display_name = excluded.display_name,
        kind = excluded.kind,
        last_seen_at = MAX(objects.last_seen_at, excluded.last_seen_at),
        source_id = COALESCE(excluded.source_id, objects.source_id)
"""

_INSERT_POINT = """
    INSERT OR REPLACE INTO track_points (
        entity_id, timestamp, latitude, longitude, altitude,
        speed, direction, confidence, source_id, detection_count
    ) VALUES (
        :entity_id, :timestamp, :latitude, :longitude, :altitude,
        :speed, :direction, :confidence, :source_id, :detection_count
    )
"""


@dataclass(frozen=True, slots=True)
class PurgeResult:
    objects_deleted: int
    points_deleted: int


@dataclass(frozen=True, slots=True)
class StorageStats:
    object_count: int
    point_count: int
    estimated_size: int
    """Estimated bytes used by track points."""


def next_local_midnight_delay(now: datetime | None = None) -> float:
    """Seconds from *now* until the next local-day boundary.

    *now* defaults to the current local time; aware datetimes keep their
    own offset.
    """
    if now is None:
        now = datetime.now().astimezone()
    tomorrow = now.date() + timedelta(days=1)
    midnight = datetime.combine(tomorrow, time.min, tzinfo=now.tzinfo)
    return max(0.0, (midnight - now).total_seconds())


class SqliteTrackStore:
    """Synchronous SQLite history store.

    Every public method raises :class:`PersistenceError` on failure. The
    connection is shared across executor threads and guarded by a lock.
    """

    def __init__(
        self,
        path: str | FsPath = ":memory:",
        *,
        name: str = "TrackingDB",
        schema_version: int = 1,
    ) -> None:
        self._path = str(path)
        self._name = name
        self._schema_version = schema_version
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def open(self) -> None:
        """Open the database and create or upgrade the schema."""
        with self._lock:
            if self._conn is not None:
                return
            try:
                conn = sqlite3.connect(self._path, check_same_thread=False)
            except sqlite3.Error as exc:
                raise PersistenceError(f"Cannot open history store {self._path}: {exc}", operation="open") from exc
            conn.row_factory = sqlite3.Row
            try:
                current = conn.execute("PRAGMA user_version").fetchone()[0]
                if current > self._schema_version:
                    conn.close()
                    raise PersistenceError(
                        f"History store {self._path} has schema v{current}, newer than v{self._schema_version}",
                        operation="open",
                    )
                with conn:
                    for statement in _SCHEMA:
                        conn.execute(statement)
                    conn.execute(
                        "INSERT OR REPLACE INTO store_meta (key, value) VALUES ('name', ?)",
                        (self._name,),
                    )
                    conn.execute(f"PRAGMA user_version = {int(self._schema_version)}")
            except sqlite3.Error as exc:
                conn.close()
                raise PersistenceError(f"Cannot open history store {self._path}: {exc}", operation="open") from exc
            self._conn = conn
        _logger.debug("History store open path=%s name=%s schema=v%d", self._path, self._name, self._schema_version)

    def close(self) -> None:
        with self._lock:
            conn = self._conn
            self._conn = None
            if conn is not None:
                conn.close()

    def _require_conn(self, operation: str) -> sqlite3.Connection:
        if self._conn is None:
            raise PersistenceError("History store is not open", operation=operation)
        return self._conn

    def _execute(self, operation: str, fn: Callable[[sqlite3.Connection], T]) -> T:
        with self._lock:
            conn = self._require_conn(operation)
            try:
                return fn(conn)
            except sqlite3.Error as exc:
                raise PersistenceError(f"{operation} failed: {exc}", operation=operation) from exc

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert_object_record(self, record: ObjectRecord) -> int:
        """Write-through upsert that keeps any existing ``first_seen_at``."""
        params = record.model_dump()
        params["kind"] = str(record.kind)

        def _op(conn: sqlite3.Connection) -> int:
            with conn:
                return conn.execute(_UPSERT_OBJECT, params).rowcount

        return self._execute("upsert_object_record", _op)

    def append_track_points(self, points: Sequence[TrackPoint]) -> int:
        """Write *points* in one transaction; duplicates overwrite by key."""
        if not points:
            return 0
        rows = [point.model_dump() for point in points]

        def _op(conn: sqlite3.Connection) -> int:
            with conn:
                conn.executemany(_INSERT_POINT, rows)
            return len(rows)

        return self._execute("append_track_points", _op)

    def purge_older_than(self, cutoff: int) -> PurgeResult:
        """Delete track points and object records with times before *cutoff* (epoch ms)."""

        def _op(conn: sqlite3.Connection) -> PurgeResult:
            with conn:
                points = conn.execute("DELETE FROM track_points WHERE timestamp < ?", (cutoff,)).rowcount
            with conn:
                objects = conn.execute("DELETE FROM objects WHERE last_seen_at < ?", (cutoff,)).rowcount
            return PurgeResult(objects_deleted=max(objects, 0), points_deleted=max(points, 0))

        return self._execute("purge_older_than", _op)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def query_path(self, entity_id: str, start: int | None = None, end: int | None = None) -> list[PathPoint]:
        """Persisted points for *entity_id*, oldest first, within ``[start, end]``."""
        sql = "SELECT latitude, longitude, altitude, timestamp FROM track_points WHERE entity_id = ?"
        params: list[Any] = [entity_id]
        if start is not None:
            sql += " AND timestamp >= ?"
            params.append(start)
        if end is not None:
            sql += " AND timestamp <= ?"
            params.append(end)
        sql += " ORDER BY timestamp ASC"

        def _op(conn: sqlite3.Connection) -> list[PathPoint]:
            return [
                PathPoint(
                    latitude=row["latitude"],
                    longitude=row["longitude"],
                    altitude=row["altitude"],
                    timestamp=row["timestamp"],
                )
                for row in conn.execute(sql, params)
            ]

        return self._execute("query_path", _op)

    def get_object_record(self, entity_id: str) -> ObjectRecord | None:
        def _op(conn: sqlite3.Connection) -> ObjectRecord | None:
            row = conn.execute("SELECT * FROM objects WHERE id = ?", (entity_id,)).fetchone()
            return ObjectRecord.model_validate(dict(row)) if row is not None else None

        return self._execute("get_object_record", _op)

    def stale_object_ids(self, cutoff: int) -> list[str]:
        """Ids of object records last seen at or before *cutoff*."""

        def _op(conn: sqlite3.Connection) -> list[str]:
            rows = conn.execute("SELECT id FROM objects WHERE last_seen_at <= ? ORDER BY last_seen_at", (cutoff,))
            return [row["id"] for row in rows]

        return self._execute("stale_object_ids", _op)

    def storage_stats(self) -> StorageStats:
        def _op(conn: sqlite3.Connection) -> StorageStats:
            objects = conn.execute("SELECT COUNT(*) FROM objects").fetchone()[0]
            points = conn.execute("SELECT COUNT(*) FROM track_points").fetchone()[0]
            return StorageStats(
                object_count=objects,
                point_count=points,
                estimated_size=points * _POINT_SIZE_ESTIMATE,
            )

        return self._execute("storage_stats", _op)


class TrackHistory:
    """Best-effort async facade over :class:`SqliteTrackStore`.

    SQLite work runs in the loop's default executor. Failures are logged
    and swallowed: writes return ``False``, reads return an empty result
    or ``None``.
    """

    def __init__(
        self,
        store: SqliteTrackStore,
        *,
        clock: Callable[[], int] = now_ms,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        local_now: Callable[[], datetime] = lambda: datetime.now().astimezone(),
    ) -> None:
        self._store = store
        self._clock = clock
        self._sleep = sleep
        self._local_now = local_now
        self._retention_task: asyncio.Task[None] | None = None

    @classmethod
    def from_config(cls, config: TrackerConfig, **kwargs: Any) -> TrackHistory:
        store = SqliteTrackStore(config.store_path, name=config.store_name, schema_version=config.schema_version)
        return cls(store, **kwargs)

    @property
    def store(self) -> SqliteTrackStore:
        return self._store

    async def _call(self, operation: str, fn: Callable[..., T], *args: Any) -> T | None:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(fn, *args))
        except PersistenceError:
            _logger.warning("History %s failed", operation, exc_info=True)
            return None

    async def open(self) -> bool:
        await self._call("open", self._store.open)
        return self._store.is_open

    async def close(self) -> None:
        self.cancel_retention_sweep()
        await self._call("close", self._store.close)

    async def upsert_object_record(self, record: ObjectRecord) -> bool:
        return await self._call("upsert_object_record", self._store.upsert_object_record, record) is not None

    async def append_track_points(self, points: Sequence[TrackPoint]) -> bool:
        return await self._call("append_track_points", self._store.append_track_points, list(points)) is not None

    async def query_path(self, entity_id: str, start: int | None = None, end: int | None = None) -> list[PathPoint]:
        result = await self._call("query_path", self._store.query_path, entity_id, start, end)
        return result if result is not None else []

    async def get_object_record(self, entity_id: str) -> ObjectRecord | None:
        return await self._call("get_object_record", self._store.get_object_record, entity_id)

    async def stale_object_ids(self, cutoff: int) -> list[str]:
        result = await self._call("stale_object_ids", self._store.stale_object_ids, cutoff)
        return result if result is not None else []

    async def storage_stats(self) -> StorageStats | None:
        return await self._call("storage_stats", self._store.storage_stats)

    async def purge_older_than(self, cutoff: int) -> PurgeResult | None:
        result = await self._call("purge_older_than", self._store.purge_older_than, cutoff)
        if result is not None:
            _logger.info(
                "Retention purge cutoff=%d removed objects=%d points=%d",
                cutoff,
                result.objects_deleted,
                result.points_deleted,
            )
        return result

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def schedule_retention_sweep(self, retention_days: int) -> asyncio.Task[None]:
        """Purge at the next local midnight, then every 24 hours."""
        if retention_days < 1:
            raise ValueError("retention_days must be >= 1")
        self.cancel_retention_sweep()
        self._retention_task = asyncio.get_running_loop().create_task(
            self._retention_loop(retention_days),
            name="twintrack-retention",
        )
        return self._retention_task

    def cancel_retention_sweep(self) -> None:
        task = self._retention_task
        self._retention_task = None
        if task is not None and not task.done():
            task.cancel()

    async def _retention_loop(self, retention_days: int) -> None:
        await self._sleep(next_local_midnight_delay(self._local_now()))
        while True:
            cutoff = self._clock() - retention_days * DAY_MS
            try:
                await self.purge_older_than(cutoff)
            except Exception:
                _logger.warning("Scheduled retention purge failed", exc_info=True)
            await self._sleep(DAY_SECONDS)
