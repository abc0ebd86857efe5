"""Fire-and-forget persistence queue.

The tracking store calls :meth:`PersistenceWriter.enqueue` synchronously on
every upsert; a single drain task batches queued observations into the
history store, so live update latency never depends on storage latency.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from twintrack.models.records import ObjectRecord, TrackPoint
from twintrack.persistence.history import TrackHistory

_logger = logging.getLogger(__name__)

_Item = tuple[ObjectRecord, TrackPoint]


def _merge_records(batch: list[_Item]) -> list[ObjectRecord]:
    """Collapse a batch to one record per id, keeping the earliest first-seen time."""
    merged: dict[str, ObjectRecord] = {}
    for record, _point in batch:
        previous = merged.get(record.id)
        if previous is not None:
            record = record.model_copy(update={"first_seen_at": min(previous.first_seen_at, record.first_seen_at)})
        merged[record.id] = record
    return list(merged.values())


class PersistenceWriter:
    """Queue of pending history writes drained by one background task."""

    def __init__(
        self,
        history: TrackHistory,
        *,
        batch_size: int = 50,
        max_pending: int = 10_000,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._history = history
        self._batch_size = batch_size
        self._queue: asyncio.Queue[_Item] = asyncio.Queue(maxsize=max_pending)
        self._task: asyncio.Task[None] | None = None
        self._dropped = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def dropped(self) -> int:
        return self._dropped

    def enqueue(self, record: ObjectRecord, point: TrackPoint) -> bool:
        """Queue one observation without blocking. Returns False if it was dropped."""
        try:
            self._queue.put_nowait((record, point))
        except asyncio.QueueFull:
            self._dropped += 1
            if self._dropped == 1 or self._dropped % 1000 == 0:
                _logger.warning("Persistence queue full; dropped %d observation(s) so far", self._dropped)
            return False
        return True

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="twintrack-persistence")

    async def stop(self, *, drain: bool = False) -> None:
        """Stop the drain task. Pending writes are abandoned unless *drain* is set."""
        if drain:
            await self.flush()
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def flush(self) -> None:
        """Wait until every queued observation has been written (or failed)."""
        if self.is_running:
            await self._queue.join()
            return
        while not self._queue.empty():
            await self._process(self._take_batch([]))

    async def _run(self) -> None:
        while True:
            first = await self._queue.get()
            await self._process(self._take_batch([first]))

    def _take_batch(self, batch: list[_Item]) -> list[_Item]:
        while len(batch) < self._batch_size:
            try:
                batch.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                break
        return batch

    async def _process(self, batch: list[_Item]) -> None:
        try:
            for record in _merge_records(batch):
                await self._history.upsert_object_record(record)
            await self._history.append_track_points([point for _record, point in batch])
        except asyncio.CancelledError:
            raise
        except Exception:
            _logger.warning("Persisting %d observation(s) failed", len(batch), exc_info=True)
        finally:
            for _ in batch:
                self._queue.task_done()
