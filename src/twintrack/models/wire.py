"""Inbound feed message schema.

One JSON object per websocket frame, discriminated by ``type``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, ConfigDict, Field, field_validator, model_validator

from twintrack.ingestion.normalize import safe_float, safe_int, safe_str
from twintrack.models._base import TrackBaseModel, TrackEnum


class MessageType(TrackEnum):
    CONNECTION = "connection"
    TRACKING_UPDATE = "tracking_update"
    TRACKING_INIT = "tracking_init"
    EVENT = "event"
    UNKNOWN = "unknown"


class WireMetadata(TrackBaseModel):
    """Nested ``object.metadata`` block.

    Keys without a dedicated field (``zone``, ``species``, ``alert`` ...)
    are kept in ``model_extra``.
    """

    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    confidence: float | None = None
    camera_id: str | None = Field(default=None, validation_alias=AliasChoices("camera_id", "cameraId"))
    detection_count: int | None = Field(
        default=None,
        validation_alias=AliasChoices("detection_count", "detectionCount"),
    )

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_float(cls, value: Any) -> float | None:
        return safe_float(value)

    @field_validator("detection_count", mode="before")
    @classmethod
    def _coerce_int(cls, value: Any) -> int | None:
        return safe_int(value)

    @field_validator("camera_id", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> str | None:
        return safe_str(value)


class WireObject(TrackBaseModel):
    """The ``object`` payload of ``tracking_update`` / ``event`` messages."""

    id: str
    kind: str = Field(default="unknown", validation_alias=AliasChoices("type", "kind"))
    name: str | None = None
    latitude: float = Field(validation_alias=AliasChoices("latitude", "lat"))
    longitude: float = Field(validation_alias=AliasChoices("longitude", "lng", "lon"))
    altitude: float | None = Field(default=None, validation_alias=AliasChoices("altitude", "alt"))
    speed: float | None = None
    direction: float | None = Field(default=None, validation_alias=AliasChoices("direction", "heading"))
    timestamp: datetime
    metadata: WireMetadata = Field(default_factory=WireMetadata)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        # Some feeds send numeric track ids.
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("kind", mode="before")
    @classmethod
    def _coerce_kind(cls, value: Any) -> str:
        # Unrecognized classifications fold to "unknown" downstream.
        if value is None:
            return "unknown"
        return value if isinstance(value, str) else str(value)

    @field_validator("name", mode="before")
    @classmethod
    def _coerce_name(cls, value: Any) -> str | None:
        return safe_str(value)

    @field_validator("altitude", "speed", "direction", mode="before")
    @classmethod
    def _coerce_optional_floats(cls, value: Any) -> float | None:
        return safe_float(value)

    @field_validator("metadata", mode="before")
    @classmethod
    def _default_metadata(cls, value: Any) -> Any:
        return {} if value is None else value


class ServerMessage(TrackBaseModel):
    """A decoded feed frame."""

    type: MessageType
    message: str | None = None
    timestamp: str | None = None
    obj: WireObject | None = Field(default=None, validation_alias=AliasChoices("object", "obj"))
    objects: list[WireObject] = Field(default_factory=list)
    server_time: str | None = None
    tracking_count: int | None = None
    event_description: str | None = None
    snapshot_url: str | None = None
    track_ended: bool | None = None
    raw_type: str | None = None
    """The ``type`` value as sent, before folding onto :class:`MessageType`."""

    @model_validator(mode="before")
    @classmethod
    def _keep_raw_type(cls, values: Any) -> Any:
        if isinstance(values, dict) and "type" in values and values.get("raw_type") is None:
            return {**values, "raw_type": str(values["type"])}
        return values

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> MessageType:
        if isinstance(value, MessageType):
            return value
        return MessageType(str(value))
