"""Operator-facing diagnostic log.

A bounded, newest-first ring buffer of connection transitions and handled
messages. It is a side channel: :meth:`DiagnosticLog.add` never raises
and never blocks the dispatch path.
"""

from __future__ import annotations

import copy
import itertools
import logging
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from twintrack._redact import redact_for_log
from twintrack._scheduling import now_ms

_logger = logging.getLogger(__name__)


class LogCategory(StrEnum):
    CONNECTION = "connection"
    TRACKING_UPDATE = "tracking_update"
    EVENT = "event"
    ERROR = "error"
    INFO = "info"


@dataclass(frozen=True, slots=True)
class DiagnosticEntry:
    id: str
    timestamp: int
    category: LogCategory
    message: str
    data: Mapping[str, Any] | None = None


class DiagnosticLog:
    """Bounded diagnostic ring buffer (newest entry first)."""

    def __init__(self, *, max_entries: int = 100, clock: Callable[[], int] = now_ms) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._entries: deque[DiagnosticEntry] = deque(maxlen=max_entries)
        self._clock = clock
        self._ids = itertools.count(1)
        self._listeners: list[Callable[[DiagnosticEntry], None]] = []

    @property
    def max_entries(self) -> int:
        return self._entries.maxlen or 0

    def add(
        self,
        category: LogCategory,
        message: str,
        data: Mapping[str, Any] | None = None,
    ) -> DiagnosticEntry | None:
        """Record an entry. Returns ``None`` if the entry could not be built."""
        try:
            payload = None
            if data is not None:
                payload = MappingProxyType(copy.deepcopy(redact_for_log(dict(data))))
            entry = DiagnosticEntry(
                id=f"log-{next(self._ids)}",
                timestamp=self._clock(),
                category=LogCategory(category),
                message=message,
                data=payload,
            )
            self._entries.appendleft(entry)
        except Exception:
            _logger.debug("Dropping diagnostic entry %r", message, exc_info=True)
            return None

        for listener in list(self._listeners):
            try:
                listener(entry)
            except Exception:
                _logger.debug("Diagnostic listener failed", exc_info=True)
        return entry

    def entries(self) -> tuple[DiagnosticEntry, ...]:
        return tuple(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def subscribe(self, listener: Callable[[DiagnosticEntry], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def __len__(self) -> int:
        return len(self._entries)
