"""Authoritative in-memory tracking store.

This is the only component allowed to mutate live entity and path state.
Mutations are synchronous and copy-on-write: each one builds new maps and
publishes them as a single :class:`TrackingSnapshot`, so readers never see
the entity map and path map disagree. Durable writes are handed to a
persistence sink as fire-and-forget follow-up work.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from twintrack.models.entity import Path, TrackedEntity
from twintrack.models.records import ObjectRecord, TrackPoint
from twintrack.state.events import ConnectionStatus, TrackingSnapshot

_logger = logging.getLogger(__name__)

PersistSink = Callable[[ObjectRecord, TrackPoint], None]
SnapshotListener = Callable[[TrackingSnapshot], None]


class TrackingStore:
    """Live entity map plus bounded per-entity paths.

    Parameters
    ----------
    max_path_points
        Upper bound on each entity's path; the oldest points are dropped first.
    persist
        Optional non-blocking sink receiving an :class:`ObjectRecord` and a
        :class:`TrackPoint` for every upserted observation. Failures are
        logged and swallowed.
    """

    def __init__(
        self,
        *,
        max_path_points: int = 100,
        persist: PersistSink | None = None,
    ) -> None:
        if max_path_points < 1:
            raise ValueError("max_path_points must be >= 1")
        self._max_path_points = max_path_points
        self._persist = persist
        self._snapshot = TrackingSnapshot()
        self._listeners: list[SnapshotListener] = []

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> TrackingSnapshot:
        return self._snapshot

    @property
    def max_path_points(self) -> int:
        return self._max_path_points

    @property
    def connection_status(self) -> ConnectionStatus:
        return self._snapshot.connection_status

    def get(self, entity_id: str) -> TrackedEntity | None:
        return self._snapshot.entities.get(entity_id)

    def get_path(self, entity_id: str) -> Path | None:
        return self._snapshot.paths.get(entity_id)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def upsert(self, entity: TrackedEntity) -> TrackingSnapshot:
        """Insert or replace *entity* and append its position to its path."""
        current = self._snapshot
        entities = dict(current.entities)
        paths = dict(current.paths)

        entities[entity.id] = entity
        path = paths.get(entity.id) or Path(entity_id=entity.id)
        paths[entity.id] = path.extended(entity.to_path_point(), max_points=self._max_path_points)

        snapshot = self._publish(entities, paths, last_updated_id=entity.id)
        self._schedule_persist(entity)
        return snapshot

    def upsert_many(self, entities: Iterable[TrackedEntity]) -> TrackingSnapshot:
        """Bulk-load entities as one snapshot.

        Existing paths are left untouched; a one-point path is created only
        for entities seen for the first time.
        """
        current = self._snapshot
        entity_map = dict(current.entities)
        paths = dict(current.paths)
        loaded: list[TrackedEntity] = []

        for entity in entities:
            entity_map[entity.id] = entity
            if entity.id not in paths:
                paths[entity.id] = Path(entity_id=entity.id, points=(entity.to_path_point(),))
            loaded.append(entity)

        if not loaded:
            return current

        snapshot = self._publish(entity_map, paths, last_updated_id=loaded[-1].id)
        for entity in loaded:
            self._schedule_persist(entity)
        return snapshot

    def remove(self, entity_id: str) -> bool:
        """Drop an entity and its path together. Returns False if it was absent."""
        current = self._snapshot
        if entity_id not in current.entities and entity_id not in current.paths:
            return False

        entities = dict(current.entities)
        paths = dict(current.paths)
        entities.pop(entity_id, None)
        paths.pop(entity_id, None)

        last_updated_id = current.last_updated_id if current.last_updated_id != entity_id else None
        self._publish(entities, paths, last_updated_id=last_updated_id)
        return True

    def remove_if_stale(self, entity_id: str, *, now: int, threshold_ms: int) -> bool:
        """Remove *entity_id* only if its *current* state is older than the threshold.

        Staleness is re-evaluated against the live snapshot, so an entity
        refreshed after a sweep collected its id survives.
        """
        entity = self._snapshot.entities.get(entity_id)
        if entity is None:
            return False
        if now - entity.last_update_at <= threshold_ms:
            return False
        return self.remove(entity_id)

    def set_persist_sink(self, persist: PersistSink | None) -> None:
        """Replace the persistence sink; ``None`` stops persisting."""
        self._persist = persist

    def clear(self) -> None:
        """Administrative reset of both maps (connection status is kept)."""
        self._publish({}, {}, last_updated_id=None)

    def set_connection_status(self, status: ConnectionStatus) -> None:
        current = self._snapshot
        if current.connection_status == status:
            return
        self._snapshot = TrackingSnapshot(
            entities=current.entities,
            paths=current.paths,
            connection_status=ConnectionStatus(status),
            last_updated_id=current.last_updated_id,
            version=current.version + 1,
        )
        self._notify(self._snapshot)

    # ------------------------------------------------------------------
    # Change notification
    # ------------------------------------------------------------------

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register a callback receiving every newly published snapshot."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _publish(
        self,
        entities: dict[str, TrackedEntity],
        paths: dict[str, Path],
        *,
        last_updated_id: str | None,
    ) -> TrackingSnapshot:
        current = self._snapshot
        snapshot = TrackingSnapshot.build(
            entities,
            paths,
            connection_status=current.connection_status,
            last_updated_id=last_updated_id,
            version=current.version + 1,
        )
        self._snapshot = snapshot
        self._notify(snapshot)
        return snapshot

    def _notify(self, snapshot: TrackingSnapshot) -> None:
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                _logger.debug("Snapshot listener failed", exc_info=True)

    def _schedule_persist(self, entity: TrackedEntity) -> None:
        if self._persist is None:
            return
        try:
            self._persist(ObjectRecord.from_entity(entity), TrackPoint.from_entity(entity))
        except Exception:
            _logger.warning("Scheduling persistence for %s failed", entity.id, exc_info=True)
