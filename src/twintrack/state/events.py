"""Snapshot and status types published by the tracking store."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType

from twintrack.models.entity import Path, TrackedEntity


class ConnectionStatus(StrEnum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class TrackingSnapshot:
    """An immutable view of the store at one instant.

    Every store mutation publishes a new snapshot; the entity map and the
    path map of one snapshot always describe the same state.
    """

    entities: Mapping[str, TrackedEntity] = field(default_factory=lambda: MappingProxyType({}))
    paths: Mapping[str, Path] = field(default_factory=lambda: MappingProxyType({}))
    connection_status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    last_updated_id: str | None = None
    """Id touched by the most recent upsert, for consumers that react to deltas."""
    version: int = 0

    @classmethod
    def build(
        cls,
        entities: dict[str, TrackedEntity],
        paths: dict[str, Path],
        *,
        connection_status: ConnectionStatus,
        last_updated_id: str | None,
        version: int,
    ) -> TrackingSnapshot:
        return cls(
            entities=MappingProxyType(entities),
            paths=MappingProxyType(paths),
            connection_status=connection_status,
            last_updated_id=last_updated_id,
            version=version,
        )

    def __len__(self) -> int:
        return len(self.entities)
