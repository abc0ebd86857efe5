"""Typed models for live state, persisted history and the feed wire format."""

from twintrack.models._base import ObjectKind, TrackBaseModel, TrackEnum
from twintrack.models.entity import EntityAttributes, Path, PathPoint, Position, TrackedEntity
from twintrack.models.records import ObjectRecord, TrackPoint
from twintrack.models.wire import MessageType, ServerMessage, WireMetadata, WireObject

__all__ = [
    "EntityAttributes",
    "MessageType",
    "ObjectKind",
    "ObjectRecord",
    "Path",
    "PathPoint",
    "Position",
    "ServerMessage",
    "TrackBaseModel",
    "TrackEnum",
    "TrackPoint",
    "TrackedEntity",
    "WireMetadata",
    "WireObject",
]
