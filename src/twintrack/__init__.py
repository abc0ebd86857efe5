"""twintrack - Async live object tracking core for digital twin maps."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("twintrack")
except PackageNotFoundError:
    __version__ = "0+local"
from twintrack.config import TrackerConfig
from twintrack.exceptions import (
    FeedTransportError,
    MessageDecodeError,
    PersistenceError,
    SessionStateError,
    TrackerConfigError,
    TwinTrackError,
)
from twintrack.models import (
    EntityAttributes,
    ObjectKind,
    ObjectRecord,
    Path,
    PathPoint,
    Position,
    TrackedEntity,
    TrackPoint,
)
from twintrack.persistence import PersistenceWriter, TrackHistory
from twintrack.session import TrackingSession
from twintrack.state.diagnostics import DiagnosticEntry, DiagnosticLog, LogCategory
from twintrack.state.events import ConnectionStatus, TrackingSnapshot
from twintrack.state.store import TrackingStore
from twintrack.state.timeout import ObjectTimeoutMonitor
from twintrack.stream import ConnectionState, StreamClient

__all__ = [
    "__version__",
    "ConnectionState",
    "ConnectionStatus",
    "DiagnosticEntry",
    "DiagnosticLog",
    "EntityAttributes",
    "FeedTransportError",
    "LogCategory",
    "MessageDecodeError",
    "ObjectKind",
    "ObjectRecord",
    "ObjectTimeoutMonitor",
    "Path",
    "PathPoint",
    "PersistenceError",
    "PersistenceWriter",
    "Position",
    "SessionStateError",
    "StreamClient",
    "TrackHistory",
    "TrackPoint",
    "TrackedEntity",
    "TrackerConfig",
    "TrackerConfigError",
    "TrackingSession",
    "TrackingSnapshot",
    "TrackingStore",
    "TwinTrackError",
]
