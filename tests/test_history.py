from __future__ import annotations

import asyncio
import sqlite3
from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from twintrack.exceptions import PersistenceError
from twintrack.models import ObjectRecord, TrackPoint
from twintrack.persistence.history import (
    DAY_MS,
    DAY_SECONDS,
    SqliteTrackStore,
    TrackHistory,
    next_local_midnight_delay,
)


def _record(entity_id: str, first: int, last: int, source_id: str | None = None) -> ObjectRecord:
    return ObjectRecord(
        id=entity_id,
        display_name=entity_id.upper(),
        kind="vehicle",
        first_seen_at=first,
        last_seen_at=last,
        source_id=source_id,
    )


def _point(entity_id: str, ts: int, lat: float = 1.0) -> TrackPoint:
    return TrackPoint(entity_id=entity_id, latitude=lat, longitude=2.0, timestamp=ts)


@pytest.fixture
def store(tmp_path: Path) -> Iterator[SqliteTrackStore]:
    db = SqliteTrackStore(tmp_path / "history.sqlite3")
    db.open()
    yield db
    db.close()


def test_upsert_keeps_first_seen_and_advances_last_seen(store: SqliteTrackStore) -> None:
    store.upsert_object_record(_record("car-1", 1_000, 1_000, source_id="cam-1"))
    store.upsert_object_record(_record("car-1", 5_000, 5_000))
    store.upsert_object_record(_record("car-1", 3_000, 3_000))

    record = store.get_object_record("car-1")
    assert record is not None
    assert record.first_seen_at == 1_000
    assert record.last_seen_at == 5_000
    assert record.source_id == "cam-1"
    assert store.get_object_record("missing") is None


def test_duplicate_point_key_overwrites(store: SqliteTrackStore) -> None:
    store.append_track_points([_point("car-1", 1_000, lat=1.0)])
    store.append_track_points([_point("car-1", 1_000, lat=5.0)])

    path = store.query_path("car-1")
    assert len(path) == 1
    assert path[0].latitude == 5.0
    assert path[0].altitude == 0.0


def test_batch_is_atomic(store: SqliteTrackStore) -> None:
    broken = TrackPoint.model_construct(
        entity_id="car-1",
        latitude=None,
        longitude=2.0,
        altitude=0.0,
        timestamp=2_000,
        speed=None,
        direction=None,
        confidence=None,
        source_id=None,
        detection_count=None,
    )

    with pytest.raises(PersistenceError):
        store.append_track_points([_point("car-1", 1_000), broken])

    assert store.query_path("car-1") == []


def test_query_path_range_is_inclusive_and_ordered(store: SqliteTrackStore) -> None:
    store.append_track_points([_point("car-1", ts) for ts in (3_000, 1_000, 2_000, 4_000)])
    store.append_track_points([_point("car-2", 2_500)])

    assert [p.timestamp for p in store.query_path("car-1")] == [1_000, 2_000, 3_000, 4_000]
    assert [p.timestamp for p in store.query_path("car-1", 2_000, 3_000)] == [2_000, 3_000]
    assert [p.timestamp for p in store.query_path("car-1", start=3_500)] == [4_000]
    assert store.query_path("nobody") == []


def test_purge_deletes_strictly_older_rows(store: SqliteTrackStore) -> None:
    store.upsert_object_record(_record("old", 1_000, 1_000))
    store.upsert_object_record(_record("edge", 5_000, 5_000))
    store.append_track_points([_point("old", 1_000), _point("edge", 5_000), _point("edge", 6_000)])

    result = store.purge_older_than(5_000)

    assert result.objects_deleted == 1
    assert result.points_deleted == 1
    assert store.get_object_record("old") is None
    assert [p.timestamp for p in store.query_path("edge")] == [5_000, 6_000]

    again = store.purge_older_than(5_000)
    assert again.objects_deleted == 0
    assert again.points_deleted == 0


def test_stats_and_stale_ids(store: SqliteTrackStore) -> None:
    store.upsert_object_record(_record("a", 1_000, 1_000))
    store.upsert_object_record(_record("b", 1_000, 9_000))
    store.append_track_points([_point("a", 1_000), _point("b", 9_000)])

    stats = store.storage_stats()
    assert stats.object_count == 2
    assert stats.point_count == 2
    assert stats.estimated_size == 200
    assert store.stale_object_ids(1_000) == ["a"]


def test_newer_schema_is_refused(tmp_path: Path) -> None:
    path = tmp_path / "history.sqlite3"
    newer = SqliteTrackStore(path, schema_version=3)
    newer.open()
    newer.close()

    older = SqliteTrackStore(path, schema_version=1)
    with pytest.raises(PersistenceError):
        older.open()
    assert not older.is_open


class _ClosingConnection(sqlite3.Connection):
    closed = False

    def close(self) -> None:
        self.closed = True
        super().close()


def test_unreadable_file_closes_connection(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "history.sqlite3"
    path.write_bytes(b"this is not an sqlite database, just some bytes" * 4)
    opened: list[_ClosingConnection] = []
    real_connect = sqlite3.connect

    def connect(*args: Any, **kwargs: Any) -> sqlite3.Connection:
        conn = real_connect(*args, factory=_ClosingConnection, **kwargs)
        opened.append(conn)
        return conn

    monkeypatch.setattr(sqlite3, "connect", connect)

    store = SqliteTrackStore(path)
    with pytest.raises(PersistenceError):
        store.open()
    assert not store.is_open
    assert len(opened) == 1
    assert opened[0].closed


def test_closed_store_raises() -> None:
    with pytest.raises(PersistenceError):
        SqliteTrackStore().query_path("x")


def test_next_local_midnight_delay() -> None:
    tz = timezone(timedelta(hours=9))
    assert next_local_midnight_delay(datetime(2024, 3, 1, 23, 0, tzinfo=tz)) == 3600.0
    assert next_local_midnight_delay(datetime(2024, 3, 1, 0, 0, tzinfo=tz)) == DAY_SECONDS


@pytest.mark.asyncio
async def test_history_facade_round_trips(tmp_path: Path) -> None:
    history = TrackHistory(SqliteTrackStore(tmp_path / "h.sqlite3"))
    assert await history.open()

    assert await history.upsert_object_record(_record("car-1", 1_000, 2_000))
    assert await history.append_track_points([_point("car-1", 1_000), _point("car-1", 2_000)])

    path = await history.query_path("car-1")
    assert [p.timestamp for p in path] == [1_000, 2_000]
    record = await history.get_object_record("car-1")
    assert record is not None and record.last_seen_at == 2_000
    stats = await history.storage_stats()
    assert stats is not None and stats.point_count == 2

    await history.close()


@pytest.mark.asyncio
async def test_history_facade_swallows_failures() -> None:
    history = TrackHistory(SqliteTrackStore())

    assert await history.upsert_object_record(_record("car-1", 1, 1)) is False
    assert await history.append_track_points([_point("car-1", 1)]) is False
    assert await history.query_path("car-1") == []
    assert await history.get_object_record("car-1") is None
    assert await history.stale_object_ids(0) == []
    assert await history.storage_stats() is None
    assert await history.purge_older_than(0) is None


@pytest.mark.asyncio
async def test_retention_sweep_waits_for_midnight_then_runs_daily() -> None:
    now = 10 * DAY_MS
    delays: list[float] = []

    async def _fake_sleep(delay: float) -> None:
        delays.append(delay)
        if len(delays) >= 3:
            raise asyncio.CancelledError
        await asyncio.sleep(0)

    store = SqliteTrackStore()
    history = TrackHistory(
        store,
        clock=lambda: now,
        sleep=_fake_sleep,
        local_now=lambda: datetime(2024, 3, 1, 22, 30, tzinfo=timezone.utc),
    )
    assert await history.open()
    await history.upsert_object_record(_record("old", 1_000, 1_000))
    await history.upsert_object_record(_record("recent", now - DAY_MS, now - DAY_MS))

    task = history.schedule_retention_sweep(7)
    with pytest.raises(asyncio.CancelledError):
        await task

    assert delays == [5400.0, DAY_SECONDS, DAY_SECONDS]
    assert await history.get_object_record("old") is None
    assert await history.get_object_record("recent") is not None
    await history.close()


def test_retention_days_must_be_positive() -> None:
    history = TrackHistory(SqliteTrackStore())
    with pytest.raises(ValueError):
        history.schedule_retention_sweep(0)
