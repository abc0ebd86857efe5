"""Base model and enum for twintrack models.

Every model inherits from :class:`TrackBaseModel`, which is frozen and
ignores unknown keys so feed schema additions never break decoding.

Classification enums inherit from :class:`TrackEnum`, which adds a
lenient ``_missing_`` hook: values are matched case-insensitively,
known aliases are folded onto their canonical member and anything else
resolves to ``UNKNOWN`` instead of raising ``ValueError``.
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class TrackEnum(enum.StrEnum):
    """Base for classification enums.

    Every subclass **must** define ``UNKNOWN``.
    """

    @classmethod
    def _missing_(cls, value: object) -> TrackEnum:
        if isinstance(value, str):
            normalized = value.strip().lower()
            normalized = _ENUM_ALIASES.get(cls.__name__, {}).get(normalized, normalized)
            for member in cls:
                if member.value == normalized:
                    return member
        # noinspection PyUnresolvedReferences
        unknown: TrackEnum = cls.UNKNOWN  # type: ignore[attr-defined]
        return unknown


# Enum bodies turn every attribute into a member, so aliases live here.
_ENUM_ALIASES: dict[str, dict[str, str]] = {
    "ObjectKind": {
        "car": "vehicle",
        "truck": "vehicle",
        "animal": "wildlife",
        "pedestrian": "person",
    },
}


class ObjectKind(TrackEnum):
    """Classification of a tracked object."""

    PERSON = "person"
    VEHICLE = "vehicle"
    WILDLIFE = "wildlife"
    UNKNOWN = "unknown"


def datetime_to_ms(value: datetime) -> int:
    """Convert a datetime to epoch milliseconds (naive values are UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return round(value.timestamp() * 1000)


def coerce_kind(value: Any) -> ObjectKind:
    if isinstance(value, ObjectKind):
        return value
    if value is None:
        return ObjectKind.UNKNOWN
    return ObjectKind(str(value))


class TrackBaseModel(BaseModel):
    """Base for all twintrack models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )
