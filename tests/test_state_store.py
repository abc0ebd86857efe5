from __future__ import annotations

from types import MappingProxyType

import pytest

from twintrack.models import EntityAttributes, ObjectRecord, Position, TrackedEntity, TrackPoint
from twintrack.state.events import ConnectionStatus, TrackingSnapshot
from twintrack.state.store import TrackingStore


def _entity(entity_id: str, lat: float, lng: float, ts: int, name: str | None = None) -> TrackedEntity:
    return TrackedEntity(
        id=entity_id,
        kind="person",
        position=Position(latitude=lat, longitude=lng),
        last_update_at=ts,
        attributes=EntityAttributes(name=name),
    )


def test_consecutive_updates_build_a_path() -> None:
    store = TrackingStore()

    store.upsert(_entity("obj-1", 10.0, 20.0, 1_000, name="Alice"))
    store.upsert(_entity("obj-1", 10.001, 20.001, 2_000, name="Alice"))

    snapshot = store.snapshot
    assert len(snapshot) == 1
    assert snapshot.entities["obj-1"].position.latitude == 10.001
    assert [(p.latitude, p.longitude) for p in snapshot.paths["obj-1"].points] == [(10.0, 20.0), (10.001, 20.001)]
    assert snapshot.last_updated_id == "obj-1"


def test_path_is_trimmed_oldest_first() -> None:
    store = TrackingStore(max_path_points=3)

    for i in range(1, 5):
        store.upsert(_entity("obj-1", float(i), float(i), i * 1_000))

    path = store.get_path("obj-1")
    assert path is not None
    assert [p.timestamp for p in path.points] == [2_000, 3_000, 4_000]


def test_remove_drops_entity_and_path_together() -> None:
    store = TrackingStore()
    store.upsert(_entity("obj-1", 10.0, 20.0, 1_000))
    store.upsert(_entity("obj-2", 11.0, 21.0, 1_000))

    assert store.remove("obj-2") is True
    assert store.remove("obj-2") is False

    snapshot = store.snapshot
    assert set(snapshot.entities) == set(snapshot.paths) == {"obj-1"}
    assert snapshot.last_updated_id is None


def test_snapshots_are_immutable_and_isolated() -> None:
    store = TrackingStore()
    store.upsert(_entity("obj-1", 10.0, 20.0, 1_000))
    before = store.snapshot

    assert isinstance(before.entities, MappingProxyType)
    with pytest.raises(TypeError):
        before.entities["obj-2"] = _entity("obj-2", 0.0, 0.0, 1)  # type: ignore[index]

    store.upsert(_entity("obj-1", 11.0, 21.0, 2_000))
    assert before.entities["obj-1"].position.latitude == 10.0
    assert len(before.paths["obj-1"].points) == 1
    assert store.snapshot.version == before.version + 1


def test_snapshot_metadata_cannot_be_mutated() -> None:
    store = TrackingStore()
    store.upsert(
        TrackedEntity(
            id="obj-1",
            position=Position(latitude=1.0, longitude=2.0),
            last_update_at=1_000,
            attributes=EntityAttributes(metadata={"zones": ["north"], "alert": {"level": 2}}),
        )
    )
    attributes = store.snapshot.entities["obj-1"].attributes
    items = dict(attributes.extra_items)

    with pytest.raises(AttributeError):
        items["zones"].append("injected")  # type: ignore[attr-defined]
    with pytest.raises(TypeError):
        items["alert"]["level"] = 9  # type: ignore[index]

    copied = attributes.metadata
    copied["zones"].append("injected")
    copied["alert"]["level"] = 9

    current = store.get("obj-1")
    assert current is not None
    assert current.attributes.metadata == {"zones": ["north"], "alert": {"level": 2}}


def test_upsert_many_creates_paths_only_for_new_entities() -> None:
    store = TrackingStore()
    store.upsert(_entity("obj-1", 10.0, 20.0, 1_000))
    store.upsert(_entity("obj-1", 10.5, 20.5, 2_000))

    store.upsert_many([_entity("obj-1", 11.0, 21.0, 3_000), _entity("obj-2", 1.0, 2.0, 3_000)])

    snapshot = store.snapshot
    assert snapshot.entities["obj-1"].position.latitude == 11.0
    assert len(snapshot.paths["obj-1"].points) == 2
    assert len(snapshot.paths["obj-2"].points) == 1
    assert snapshot.last_updated_id == "obj-2"


def test_remove_if_stale_rechecks_current_state() -> None:
    store = TrackingStore()
    store.upsert(_entity("obj-1", 10.0, 20.0, 1_000))

    assert store.remove_if_stale("obj-1", now=20_000, threshold_ms=30_000) is False
    assert store.remove_if_stale("obj-1", now=40_000, threshold_ms=30_000) is True
    assert store.remove_if_stale("obj-1", now=40_000, threshold_ms=30_000) is False


def test_clear_resets_both_maps() -> None:
    store = TrackingStore()
    store.set_connection_status(ConnectionStatus.CONNECTED)
    store.upsert(_entity("obj-1", 10.0, 20.0, 1_000))

    store.clear()

    assert len(store.snapshot.entities) == 0
    assert len(store.snapshot.paths) == 0
    assert store.connection_status is ConnectionStatus.CONNECTED


def test_subscribers_receive_each_snapshot() -> None:
    store = TrackingStore()
    seen: list[TrackingSnapshot] = []

    def _broken(_snapshot: TrackingSnapshot) -> None:
        raise RuntimeError("listener bug")

    store.subscribe(_broken)
    unsubscribe = store.subscribe(seen.append)

    store.upsert(_entity("obj-1", 10.0, 20.0, 1_000))
    store.set_connection_status(ConnectionStatus.CONNECTED)
    store.set_connection_status(ConnectionStatus.CONNECTED)
    unsubscribe()
    store.remove("obj-1")

    assert [s.version for s in seen] == [1, 2]
    assert seen[1].connection_status is ConnectionStatus.CONNECTED


def test_persist_sink_receives_records() -> None:
    written: list[tuple[ObjectRecord, TrackPoint]] = []
    store = TrackingStore(persist=lambda record, point: written.append((record, point)))

    store.upsert(_entity("obj-1", 10.0, 20.0, 1_000, name="Alice"))

    record, point = written[0]
    assert record.display_name == "Alice"
    assert point.key == "obj-1_1000"


def test_failing_persist_sink_does_not_break_upsert() -> None:
    def _fail(_record: ObjectRecord, _point: TrackPoint) -> None:
        raise RuntimeError("disk full")

    store = TrackingStore(persist=_fail)
    store.upsert(_entity("obj-1", 10.0, 20.0, 1_000))

    assert "obj-1" in store.snapshot.entities


def test_max_path_points_must_be_positive() -> None:
    with pytest.raises(ValueError):
        TrackingStore(max_path_points=0)
