"""Tracking session: explicit owner of the core components.

A :class:`TrackingSession` builds the store, diagnostic log, persistence
pipeline, timeout monitor and stream client for one run, and tears them
down together. Nothing in twintrack is a process-wide singleton.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import aiohttp

from twintrack._scheduling import Scheduler, now_ms
from twintrack.config import TrackerConfig
from twintrack.exceptions import SessionStateError
from twintrack.persistence.history import TrackHistory
from twintrack.persistence.writer import PersistenceWriter
from twintrack.state.diagnostics import DiagnosticLog
from twintrack.state.events import TrackingSnapshot
from twintrack.state.store import TrackingStore
from twintrack.state.timeout import ObjectTimeoutMonitor
from twintrack.stream.client import ConnectFn, StreamClient

_logger = logging.getLogger(__name__)


class TrackingSession:
    """Wire the tracking core together for one session.

    Usage::

        async with TrackingSession(TrackerConfig.from_env()) as session:
            await session.connect()
            snapshot = session.snapshot
    """

    def __init__(
        self,
        config: TrackerConfig,
        *,
        http_session: aiohttp.ClientSession | None = None,
        history: TrackHistory | None = None,
        scheduler: Scheduler | None = None,
        connect: ConnectFn | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        config.validate()
        self._config = config
        self._clock = clock
        self._started = False

        self._diagnostics = DiagnosticLog(max_entries=config.diagnostic_log_size, clock=clock)

        self._history: TrackHistory | None = None
        self._writer: PersistenceWriter | None = None
        if config.persistence_enabled:
            self._history = history if history is not None else TrackHistory.from_config(config, clock=clock)
            self._writer = PersistenceWriter(
                self._history,
                batch_size=config.persistence_batch_size,
                max_pending=config.persistence_queue_size,
            )

        self._store = TrackingStore(
            max_path_points=config.max_path_points,
            persist=self._writer.enqueue if self._writer is not None else None,
        )
        self._monitor = ObjectTimeoutMonitor(
            self._store,
            stale_after=config.stale_after,
            interval=config.sweep_interval,
            clock=clock,
        )
        self._client = StreamClient(
            config,
            self._store,
            diagnostics=self._diagnostics,
            http_session=http_session,
            scheduler=scheduler,
            connect=connect,
        )

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> TrackingSession:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    async def start(self) -> None:
        """Open history and start background work (does not connect)."""
        if self._started:
            return
        if self._history is not None and self._writer is not None:
            if await self._history.open():
                self._writer.start()
                self._history.schedule_retention_sweep(self._config.retention_days)
            else:
                _logger.warning("History store unavailable; continuing without persistence")
                self._store.set_persist_sink(None)
        self._monitor.start()
        self._started = True

    async def stop(self, *, flush: bool = False) -> None:
        """Disconnect and stop background work.

        In-flight persistence writes are abandoned unless *flush* is set.
        """
        if not self._started:
            return
        self._started = False
        await self._client.close()
        await self._monitor.stop()
        if self._writer is not None:
            await self._writer.stop(drain=flush)
        if self._history is not None:
            await self._history.close()

    # ------------------------------------------------------------------
    # Feed
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        self._require_started()
        await self._client.connect()

    async def disconnect(self) -> None:
        await self._client.disconnect()

    def _require_started(self) -> None:
        if not self._started:
            raise SessionStateError("Session not started. Use 'async with TrackingSession(...) as session:'")

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def config(self) -> TrackerConfig:
        return self._config

    @property
    def store(self) -> TrackingStore:
        return self._store

    @property
    def snapshot(self) -> TrackingSnapshot:
        return self._store.snapshot

    @property
    def diagnostics(self) -> DiagnosticLog:
        return self._diagnostics

    @property
    def client(self) -> StreamClient:
        return self._client

    @property
    def monitor(self) -> ObjectTimeoutMonitor:
        return self._monitor

    @property
    def history(self) -> TrackHistory | None:
        return self._history

    @property
    def writer(self) -> PersistenceWriter | None:
        return self._writer
