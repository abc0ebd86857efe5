"""Persisted history records."""

from __future__ import annotations

from typing import Any

from pydantic import field_validator

from twintrack.models._base import ObjectKind, TrackBaseModel, coerce_kind
from twintrack.models.entity import TrackedEntity


class ObjectRecord(TrackBaseModel):
    """Durable per-entity summary.

    ``first_seen_at`` is write-once in the history store; ``last_seen_at``
    always moves to the latest observation.
    """

    id: str
    display_name: str
    kind: ObjectKind = ObjectKind.UNKNOWN
    first_seen_at: int
    last_seen_at: int
    source_id: str | None = None

    @field_validator("kind", mode="before")
    @classmethod
    def _coerce_kind(cls, value: Any) -> ObjectKind:
        return coerce_kind(value)

    @classmethod
    def from_entity(cls, entity: TrackedEntity) -> ObjectRecord:
        return cls(
            id=entity.id,
            display_name=entity.display_name,
            kind=entity.kind,
            first_seen_at=entity.last_update_at,
            last_seen_at=entity.last_update_at,
            source_id=entity.source_id,
        )


class TrackPoint(TrackBaseModel):
    """Durable track sample, unique per ``(entity_id, timestamp)``.

    Attributes are denormalized from the entity at write time.
    """

    entity_id: str
    latitude: float
    longitude: float
    altitude: float = 0.0
    timestamp: int
    speed: float | None = None
    direction: float | None = None
    confidence: float | None = None
    source_id: str | None = None
    detection_count: int | None = None

    @property
    def key(self) -> str:
        return f"{self.entity_id}_{self.timestamp}"

    @classmethod
    def from_entity(cls, entity: TrackedEntity) -> TrackPoint:
        attributes = entity.attributes
        return cls(
            entity_id=entity.id,
            latitude=entity.position.latitude,
            longitude=entity.position.longitude,
            altitude=entity.position.altitude or 0.0,
            timestamp=entity.last_update_at,
            speed=attributes.speed,
            direction=attributes.direction,
            confidence=attributes.confidence,
            source_id=entity.source_id,
            detection_count=attributes.detection_count,
        )
