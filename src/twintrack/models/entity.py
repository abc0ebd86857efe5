"""Live tracking models: entities, positions and bounded paths."""

from __future__ import annotations

import math
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from pydantic import Field, field_validator, model_validator

from twintrack.models._base import ObjectKind, TrackBaseModel, coerce_kind


class Position(TrackBaseModel):
    """A single geolocation sample."""

    latitude: float
    longitude: float
    altitude: float | None = None

    @field_validator("latitude")
    @classmethod
    def _check_latitude(cls, value: float) -> float:
        if not math.isfinite(value) or not -90.0 <= value <= 90.0:
            raise ValueError(f"latitude out of range: {value}")
        return value

    @field_validator("longitude")
    @classmethod
    def _check_longitude(cls, value: float) -> float:
        if not math.isfinite(value) or not -180.0 <= value <= 180.0:
            raise ValueError(f"longitude out of range: {value}")
        return value

    @field_validator("altitude")
    @classmethod
    def _check_altitude(cls, value: float | None) -> float | None:
        if value is not None and not math.isfinite(value):
            return None
        return value


class PathPoint(TrackBaseModel):
    """A timestamped position in an entity's trail."""

    latitude: float
    longitude: float
    altitude: float | None = None
    timestamp: int
    """Epoch milliseconds."""


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [_thaw(item) for item in value]
    return value


class EntityAttributes(TrackBaseModel):
    """Classification-specific fields; every field is optional.

    Free-form feed metadata that has no dedicated field is kept as a
    sorted tuple of pairs whose values are frozen all the way down
    (mappings become read-only proxies, lists become tuples).
    :attr:`metadata` hands out a fresh mutable copy on every access.
    """

    name: str | None = None
    confidence: float | None = None
    speed: float | None = None
    direction: float | None = None
    detection_count: int | None = None
    event_description: str | None = None
    snapshot_url: str | None = None
    extra_items: tuple[tuple[str, Any], ...] = Field(default_factory=tuple)

    @model_validator(mode="before")
    @classmethod
    def _collect_metadata(cls, values: Any) -> Any:
        if not isinstance(values, dict) or "metadata" not in values:
            return values
        working = dict(values)
        metadata = working.pop("metadata")
        if isinstance(metadata, dict):
            working["extra_items"] = tuple(sorted((str(k), v) for k, v in metadata.items()))
        return working

    @field_validator("extra_items")
    @classmethod
    def _freeze_extra_items(cls, value: tuple[tuple[str, Any], ...]) -> tuple[tuple[str, Any], ...]:
        return tuple((key, _freeze(item)) for key, item in value)

    @property
    def metadata(self) -> dict[str, Any]:
        return {key: _thaw(item) for key, item in self.extra_items}


class TrackedEntity(TrackBaseModel):
    """One currently visible object."""

    id: str
    kind: ObjectKind = ObjectKind.UNKNOWN
    position: Position
    last_update_at: int
    """Epoch milliseconds of the most recent observation."""
    source_id: str | None = None
    attributes: EntityAttributes = Field(default_factory=EntityAttributes)

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        entity_id = value.strip()
        if not entity_id:
            raise ValueError("id must be non-empty")
        return entity_id

    @field_validator("kind", mode="before")
    @classmethod
    def _coerce_kind(cls, value: Any) -> ObjectKind:
        return coerce_kind(value)

    @property
    def display_name(self) -> str:
        return self.attributes.name or self.id

    def to_path_point(self) -> PathPoint:
        return PathPoint(
            latitude=self.position.latitude,
            longitude=self.position.longitude,
            altitude=self.position.altitude,
            timestamp=self.last_update_at,
        )


class Path(TrackBaseModel):
    """Bounded, oldest-first trail of recent positions for one entity."""

    entity_id: str
    points: tuple[PathPoint, ...] = ()

    def extended(self, point: PathPoint, *, max_points: int) -> Path:
        """Return a new path with *point* appended, dropping the oldest overflow."""
        if max_points < 1:
            raise ValueError("max_points must be >= 1")
        points = (*self.points, point)
        if len(points) > max_points:
            points = points[-max_points:]
        return Path(entity_id=self.entity_id, points=points)
