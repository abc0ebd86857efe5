"""Normalization helpers.

Centralizes defensive parsing and placeholder handling for feed payloads.
Sensor feeds send ``""`` or ``"--"`` for unknown readings; these helpers turn
them into ``None`` so models never see a placeholder.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from typing import Any

_PLACEHOLDERS: tuple[str, ...] = ("", "--")


def safe_float(value: Any) -> float | None:
    """Parse a finite float; placeholders, booleans and NaN/inf become ``None``."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str) and value.strip() in _PLACEHOLDERS:
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if math.isfinite(result) else None


def safe_int(value: Any) -> int | None:
    parsed = safe_float(value)
    return None if parsed is None else int(parsed)


def safe_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def is_meaningful(value: Any) -> bool:
    """Return False for ``None``, placeholder strings and empty containers."""
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() not in _PLACEHOLDERS
    if isinstance(value, (dict, list, tuple)):
        return len(value) > 0
    return True


def prune_metadata(data: Any) -> Any:
    """Recursively drop non-meaningful values from free-form metadata."""
    if isinstance(data, dict):
        cleaned = {str(key): prune_metadata(value) for key, value in data.items()}
        return {key: value for key, value in cleaned.items() if is_meaningful(value)}
    if isinstance(data, (list, tuple)):
        return [item for item in map(prune_metadata, data) if is_meaningful(item)]
    return data


def matches_termination(description: str | None, markers: Iterable[str]) -> bool:
    """Return True when *description* contains one of the termination *markers*.

    Matching is case-insensitive. An empty description never matches.
    """
    if not description:
        return False
    lowered = description.casefold()
    return any(marker and marker.casefold() in lowered for marker in markers)
