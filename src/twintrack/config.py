"""Tracker configuration for twintrack."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from twintrack.exceptions import TrackerConfigError

DEFAULT_TERMINATION_MARKERS: tuple[str, ...] = ("track ended", "종료", "사라짐")


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class TrackerConfig:
    """Tracking core configuration.

    Parameters
    ----------
    feed_url : str
        Websocket endpoint of the position update feed.
    reconnect_delay : float
        Seconds to wait before each reconnect attempt.
    max_reconnect_attempts : int
        Consecutive failed reconnect attempts allowed before the client
        gives up and reports ``error``.
    stale_after : float
        Seconds without an update after which a live entity is evicted.
    sweep_interval : float
        Seconds between two timeout sweeps.
    max_path_points : int
        Upper bound on the number of points kept in an entity's live path.
    retention_days : int
        Age (in days) after which persisted records are purged.
    store_path : str
        SQLite database file for the history store. ``":memory:"`` keeps
        history in memory only.
    store_name : str
        Logical name recorded in the history store metadata.
    schema_version : int
        History store schema version.
    diagnostic_log_size : int
        Number of entries kept in the operator diagnostic log.
    persistence_enabled : bool
        Disable to run the live store without durable history.
    persistence_batch_size : int
        Maximum number of track points written in one transaction.
    persistence_queue_size : int
        Maximum number of pending writes. Writes beyond this are dropped.
    termination_markers : tuple of str
        Description fragments that mark an ``event`` message as a track
        termination when the message carries no explicit ``track_ended`` flag.
    """

    feed_url: str = "ws://localhost:3000"
    reconnect_delay: float = 3.0
    max_reconnect_attempts: int = 5
    stale_after: float = 30.0
    sweep_interval: float = 10.0
    max_path_points: int = 100
    retention_days: int = 7
    store_path: str = "twintrack.sqlite3"
    store_name: str = "TrackingDB"
    schema_version: int = 1
    diagnostic_log_size: int = 100
    persistence_enabled: bool = True
    persistence_batch_size: int = 50
    persistence_queue_size: int = 10_000
    termination_markers: tuple[str, ...] = DEFAULT_TERMINATION_MARKERS

    def validate(self) -> None:
        """Raise :class:`TrackerConfigError` when a value is out of range."""
        if not self.feed_url.strip():
            raise TrackerConfigError("feed_url must be non-empty")
        if self.reconnect_delay < 0:
            raise TrackerConfigError("reconnect_delay must be >= 0")
        if self.max_reconnect_attempts < 0:
            raise TrackerConfigError("max_reconnect_attempts must be >= 0")
        for name in ("stale_after", "sweep_interval"):
            if getattr(self, name) <= 0:
                raise TrackerConfigError(f"{name} must be > 0")
        for name in (
            "max_path_points",
            "retention_days",
            "schema_version",
            "diagnostic_log_size",
            "persistence_batch_size",
            "persistence_queue_size",
        ):
            if getattr(self, name) < 1:
                raise TrackerConfigError(f"{name} must be >= 1")

    @classmethod
    def from_env(cls, **overrides: Any) -> TrackerConfig:
        """Create configuration from ``TWINTRACK_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ

        _ENV_CONFIG_MAP: dict[str, tuple[str, type]] = {
            "TWINTRACK_FEED_URL": ("feed_url", str),
            "TWINTRACK_RECONNECT_DELAY": ("reconnect_delay", float),
            "TWINTRACK_MAX_RECONNECT_ATTEMPTS": ("max_reconnect_attempts", int),
            "TWINTRACK_STALE_AFTER": ("stale_after", float),
            "TWINTRACK_SWEEP_INTERVAL": ("sweep_interval", float),
            "TWINTRACK_MAX_PATH_POINTS": ("max_path_points", int),
            "TWINTRACK_RETENTION_DAYS": ("retention_days", int),
            "TWINTRACK_STORE_PATH": ("store_path", str),
            "TWINTRACK_STORE_NAME": ("store_name", str),
            "TWINTRACK_DIAGNOSTIC_LOG_SIZE": ("diagnostic_log_size", int),
            "TWINTRACK_PERSISTENCE_BATCH_SIZE": ("persistence_batch_size", int),
            "TWINTRACK_PERSISTENCE_QUEUE_SIZE": ("persistence_queue_size", int),
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, (field_name, caster) in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = caster(val)
            except ValueError as exc:
                raise TrackerConfigError(f"Invalid value for {env_key}: {val!r}") from exc

        if "persistence_enabled" not in overrides:
            config_kwargs["persistence_enabled"] = _env_bool(env.get("TWINTRACK_PERSISTENCE_ENABLED"), True)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
