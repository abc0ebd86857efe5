"""Periodic eviction of entities that stopped reporting."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable

from twintrack._scheduling import now_ms
from twintrack.state.store import TrackingStore

_logger = logging.getLogger(__name__)


class ObjectTimeoutMonitor:
    """Evict entities whose last update is older than ``stale_after`` seconds.

    :meth:`sweep` is synchronous and may be called directly; :meth:`start`
    runs it every ``interval`` seconds on the event loop.
    """

    def __init__(
        self,
        store: TrackingStore,
        *,
        stale_after: float = 30.0,
        interval: float = 10.0,
        clock: Callable[[], int] = now_ms,
        on_evicted: Callable[[list[str]], None] | None = None,
    ) -> None:
        if stale_after <= 0 or interval <= 0:
            raise ValueError("stale_after and interval must be > 0")
        self._store = store
        self._threshold_ms = int(stale_after * 1000)
        self._interval = interval
        self._clock = clock
        self._on_evicted = on_evicted
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def threshold_ms(self) -> int:
        return self._threshold_ms

    def sweep(self) -> list[str]:
        """Run one eviction pass and return the removed ids."""
        now = self._clock()
        candidates = [
            entity_id
            for entity_id, entity in self._store.snapshot.entities.items()
            if now - entity.last_update_at > self._threshold_ms
        ]

        removed: list[str] = []
        for entity_id in candidates:
            if self._store.remove_if_stale(entity_id, now=now, threshold_ms=self._threshold_ms):
                removed.append(entity_id)

        if removed:
            _logger.debug("Evicted %d stale entities: %s", len(removed), removed)
            if self._on_evicted is not None:
                try:
                    self._on_evicted(removed)
                except Exception:
                    _logger.debug("on_evicted callback failed", exc_info=True)
        return removed

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="twintrack-timeout-monitor")

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                self.sweep()
            except Exception:
                _logger.warning("Timeout sweep failed", exc_info=True)
