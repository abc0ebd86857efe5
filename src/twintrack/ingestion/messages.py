"""Feed frame decoding.

Translates raw websocket frames into :data:`FeedUpdate` values that the
stream client dispatches to the tracking store. Malformed frames raise
:class:`~twintrack.exceptions.MessageDecodeError`; nothing in this module
touches live state.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from twintrack.config import DEFAULT_TERMINATION_MARKERS
from twintrack.exceptions import MessageDecodeError
from twintrack.ingestion.normalize import matches_termination, prune_metadata
from twintrack.models._base import datetime_to_ms
from twintrack.models.entity import EntityAttributes, Position, TrackedEntity
from twintrack.models.wire import MessageType, ServerMessage, WireObject


@dataclass(frozen=True, slots=True)
class Greeting:
    """Informational ``connection`` message."""

    message: str | None
    server_time: str | None = None
    tracking_count: int | None = None


@dataclass(frozen=True, slots=True)
class EntityUpsert:
    entity: TrackedEntity
    from_event: bool = False


@dataclass(frozen=True, slots=True)
class EntityRemoval:
    entity_id: str
    display_name: str | None = None
    event_description: str | None = None
    snapshot_url: str | None = None


@dataclass(frozen=True, slots=True)
class BulkLoad:
    entities: tuple[TrackedEntity, ...]


@dataclass(frozen=True, slots=True)
class Ignored:
    """A well-formed frame with a type this client does not handle."""

    raw_type: str


FeedUpdate = Greeting | EntityUpsert | EntityRemoval | BulkLoad | Ignored


def parse_frame(data: str | bytes) -> ServerMessage:
    """Parse one frame into a :class:`ServerMessage`."""
    if isinstance(data, bytes):
        try:
            data = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MessageDecodeError("Frame is not valid UTF-8") from exc

    try:
        decoded = json.loads(data)
    except json.JSONDecodeError as exc:
        raise MessageDecodeError(f"Frame is not JSON: {exc.msg}", frame=data) from exc

    if not isinstance(decoded, dict):
        raise MessageDecodeError("Frame is not a JSON object", frame=data)
    if "type" not in decoded:
        raise MessageDecodeError("Frame has no 'type' field", frame=data)

    try:
        return ServerMessage.model_validate(decoded)
    except ValidationError as exc:
        raise MessageDecodeError(f"Frame violates message schema: {exc.error_count()} error(s)", frame=data) from exc


def wire_object_to_entity(
    obj: WireObject,
    *,
    event_description: str | None = None,
    snapshot_url: str | None = None,
) -> TrackedEntity:
    """Map a wire ``object`` payload into the internal entity shape."""
    metadata = obj.metadata
    extra: dict[str, Any] = prune_metadata(dict(metadata.model_extra or {}))
    try:
        return TrackedEntity(
            id=obj.id,
            kind=obj.kind,
            position=Position(latitude=obj.latitude, longitude=obj.longitude, altitude=obj.altitude),
            last_update_at=datetime_to_ms(obj.timestamp),
            source_id=metadata.camera_id,
            attributes=EntityAttributes(
                name=obj.name,
                confidence=metadata.confidence,
                speed=obj.speed,
                direction=obj.direction,
                detection_count=metadata.detection_count,
                event_description=event_description,
                snapshot_url=snapshot_url,
                metadata=extra,
            ),
        )
    except ValidationError as exc:
        raise MessageDecodeError(f"Object {obj.id!r} cannot be normalized: {exc.error_count()} error(s)") from exc


def is_termination(message: ServerMessage, markers: Iterable[str] = DEFAULT_TERMINATION_MARKERS) -> bool:
    """Decide whether an ``event`` message ends its track.

    An explicit ``track_ended`` flag is authoritative; otherwise the
    description is matched against *markers*.
    """
    if message.type != MessageType.EVENT:
        return False
    if message.track_ended is not None:
        return message.track_ended
    return matches_termination(message.event_description, markers)


def to_update(
    message: ServerMessage,
    *,
    termination_markers: Iterable[str] = DEFAULT_TERMINATION_MARKERS,
) -> FeedUpdate:
    """Turn a parsed message into the update the store should apply."""
    if message.type == MessageType.CONNECTION:
        return Greeting(
            message=message.message,
            server_time=message.server_time,
            tracking_count=message.tracking_count,
        )

    if message.type == MessageType.TRACKING_INIT:
        return BulkLoad(entities=tuple(wire_object_to_entity(obj) for obj in message.objects))

    if message.type in (MessageType.TRACKING_UPDATE, MessageType.EVENT):
        obj = message.obj
        if obj is None:
            raise MessageDecodeError(f"'{message.type}' message without 'object' payload")

        if is_termination(message, termination_markers):
            return EntityRemoval(
                entity_id=obj.id.strip(),
                display_name=obj.name,
                event_description=message.event_description,
                snapshot_url=message.snapshot_url,
            )

        from_event = message.type == MessageType.EVENT
        entity = wire_object_to_entity(
            obj,
            event_description=message.event_description if from_event else None,
            snapshot_url=message.snapshot_url if from_event else None,
        )
        return EntityUpsert(entity=entity, from_event=from_event)

    return Ignored(raw_type=message.raw_type or str(message.type))


def decode_update(
    data: str | bytes,
    *,
    termination_markers: Iterable[str] = DEFAULT_TERMINATION_MARKERS,
) -> FeedUpdate:
    """Parse and normalize one frame. Raises :class:`MessageDecodeError`."""
    return to_update(parse_frame(data), termination_markers=termination_markers)
