"""Durable positional history.

:class:`~twintrack.persistence.history.SqliteTrackStore` is the synchronous
SQLite store; :class:`~twintrack.persistence.history.TrackHistory` wraps it
for the event loop with best-effort semantics, and
:class:`~twintrack.persistence.writer.PersistenceWriter` batches live
observations into it.
"""

from twintrack.persistence.history import (
    PurgeResult,
    SqliteTrackStore,
    StorageStats,
    TrackHistory,
    next_local_midnight_delay,
)
from twintrack.persistence.writer import PersistenceWriter

__all__ = [
    "PersistenceWriter",
    "PurgeResult",
    "SqliteTrackStore",
    "StorageStats",
    "TrackHistory",
    "next_local_midnight_delay",
]
