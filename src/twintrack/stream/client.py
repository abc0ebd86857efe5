"""Websocket client for the position update feed.

Owns exactly one connection at a time, decodes inbound frames and applies
them to the :class:`~twintrack.state.store.TrackingStore`. Connection
lifecycle decisions are delegated to :func:`twintrack.stream.machine.transition`;
this module only performs the side effects it asks for.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Protocol

import aiohttp

from twintrack._redact import redact_url
from twintrack._scheduling import LoopScheduler, Scheduler, TimerHandle
from twintrack.config import TrackerConfig
from twintrack.exceptions import FeedTransportError, MessageDecodeError
from twintrack.ingestion.messages import (
    BulkLoad,
    EntityRemoval,
    EntityUpsert,
    FeedUpdate,
    Greeting,
    Ignored,
    decode_update,
)
from twintrack.state.diagnostics import DiagnosticLog, LogCategory
from twintrack.state.events import ConnectionStatus
from twintrack.state.store import TrackingStore
from twintrack.stream.machine import Action, ConnectionState, MachineState, Transition, Trigger, transition

_logger = logging.getLogger(__name__)

_NORMAL_CLOSE_CODES = frozenset({1000})
_TRANSPORT_ERRORS = (aiohttp.ClientError, OSError, TimeoutError, FeedTransportError)


class FeedSocket(Protocol):
    """The subset of :class:`aiohttp.ClientWebSocketResponse` the client uses."""

    @property
    def closed(self) -> bool: ...

    @property
    def close_code(self) -> int | None: ...

    def __aiter__(self) -> AsyncIterator[aiohttp.WSMessage]: ...

    def exception(self) -> BaseException | None: ...

    async def send_str(self, data: str) -> None: ...

    async def close(self) -> Any: ...


ConnectFn = Callable[[str], Awaitable[FeedSocket]]


class StreamClient:
    """Resilient feed client.

    Usage::

        store = TrackingStore()
        async with StreamClient(config, store) as client:
            ...

    Parameters
    ----------
    config
        Supplies the feed URL, reconnect delay and reconnect budget.
    store
        Sink for decoded updates; also receives the connection status.
    diagnostics
        Operator-facing log of transitions and handled messages.
    http_session
        Optional externally owned :class:`aiohttp.ClientSession`.
    scheduler
        Timer seam used for reconnect delays.
    connect
        Optional socket factory replacing ``http_session.ws_connect``.
    on_status
        Called with the new status whenever it changes.
    """

    def __init__(
        self,
        config: TrackerConfig,
        store: TrackingStore,
        *,
        diagnostics: DiagnosticLog | None = None,
        http_session: aiohttp.ClientSession | None = None,
        scheduler: Scheduler | None = None,
        connect: ConnectFn | None = None,
        on_status: Callable[[ConnectionStatus], None] | None = None,
    ) -> None:
        self._config = config
        self._store = store
        if diagnostics is None:
            diagnostics = DiagnosticLog(max_entries=config.diagnostic_log_size)
        self._diagnostics = diagnostics
        self._external_session = http_session is not None
        self._http_session = http_session
        self._scheduler = scheduler if scheduler is not None else LoopScheduler()
        self._connect_fn = connect
        self._on_status = on_status

        self._machine = MachineState()
        self._generation = 0
        self._task: asyncio.Task[None] | None = None
        self._retry_handle: TimerHandle | None = None
        self._ws: FeedSocket | None = None
        self._messages_handled = 0

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> StreamClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._machine.state

    @property
    def attempts(self) -> int:
        return self._machine.attempts

    @property
    def status(self) -> ConnectionStatus:
        return self._machine.status

    @property
    def diagnostics(self) -> DiagnosticLog:
        return self._diagnostics

    @property
    def connection_task(self) -> asyncio.Task[None] | None:
        """Task running the current connection, if any."""
        return self._task

    @property
    def messages_handled(self) -> int:
        return self._messages_handled

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Start connecting. A no-op while connecting, connected or waiting to retry."""
        self._fire(Trigger.CONNECT)

    async def reconnect(self) -> None:
        """Reconnect now with a fresh retry budget (also recovers from ``FAILED``)."""
        if self._machine.state == ConnectionState.CONNECTED:
            return
        await self._cancel_task()
        self._fire(Trigger.RESET)

    async def disconnect(self) -> None:
        """Clean shutdown: cancel any pending retry and close the socket."""
        self._fire(Trigger.DISCONNECT)
        await self._cancel_task()

    async def close(self) -> None:
        """Disconnect and release an internally created HTTP session."""
        await self.disconnect()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    async def send_json(self, payload: dict[str, Any]) -> None:
        ws = self._ws
        if ws is None or self._machine.state != ConnectionState.CONNECTED:
            raise FeedTransportError("Feed is not connected", url=redact_url(self._config.feed_url))
        try:
            await ws.send_str(json.dumps(payload, separators=(",", ":")))
        except (aiohttp.ClientError, ConnectionResetError) as exc:
            raise FeedTransportError(f"Send failed: {exc}", url=redact_url(self._config.feed_url)) from exc

    # ------------------------------------------------------------------
    # State machine plumbing
    # ------------------------------------------------------------------

    def _fire(self, trigger: Trigger, *, detail: str | None = None) -> Transition:
        result = transition(self._machine, trigger, max_attempts=self._config.max_reconnect_attempts)
        self._machine = result.current
        if result.changed:
            self._record_transition(result, trigger, detail)
        self._perform(result.action)
        return result

    def _record_transition(self, result: Transition, trigger: Trigger, detail: str | None) -> None:
        previous, current = result.previous, result.current
        _logger.debug(
            "Feed %s -> %s trigger=%s attempts=%d detail=%s",
            previous.state,
            current.state,
            trigger,
            current.attempts,
            detail,
        )
        if current.state == ConnectionState.FAILED:
            _logger.warning(
                "Feed %s unreachable after %d reconnect attempt(s); giving up",
                redact_url(self._config.feed_url),
                current.attempts,
            )
        elif current.state == ConnectionState.CONNECTED:
            _logger.info("Feed connected url=%s", redact_url(self._config.feed_url))

        category = LogCategory.ERROR if current.state == ConnectionState.FAILED else LogCategory.CONNECTION
        data: dict[str, Any] = {"trigger": str(trigger), "attempts": current.attempts}
        if detail:
            data["reason"] = detail
        self._diagnostics.add(category, f"{previous.state} -> {current.state}", data)

        if previous.status != current.status:
            self._store.set_connection_status(current.status)
            if self._on_status is not None:
                try:
                    self._on_status(current.status)
                except Exception:
                    _logger.debug("on_status callback failed", exc_info=True)

    def _perform(self, action: Action) -> None:
        if action == Action.OPEN:
            self._cancel_retry()
            self._generation += 1
            self._task = asyncio.get_running_loop().create_task(
                self._run_connection(self._generation),
                name="twintrack-feed",
            )
        elif action == Action.SCHEDULE_RETRY:
            self._cancel_retry()
            self._retry_handle = self._scheduler.call_later(self._config.reconnect_delay, self._on_retry_due)
        elif action == Action.CLOSE:
            self._cancel_retry()
            self._generation += 1
            task = self._task
            if task is not None and not task.done() and task is not asyncio.current_task():
                task.cancel()

    def _on_retry_due(self) -> None:
        self._retry_handle = None
        self._fire(Trigger.RETRY_DUE)

    def _cancel_retry(self) -> None:
        handle = self._retry_handle
        self._retry_handle = None
        if handle is not None:
            handle.cancel()

    async def _cancel_task(self) -> None:
        task = self._task
        self._task = None
        if task is None or task is asyncio.current_task():
            return
        if not task.done():
            task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def _open_socket(self, url: str) -> FeedSocket:
        if self._connect_fn is not None:
            return await self._connect_fn(url)
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        return await self._http_session.ws_connect(url)

    async def _run_connection(self, generation: int) -> None:
        try:
            ws = await self._open_socket(self._config.feed_url)
        except _TRANSPORT_ERRORS as exc:
            if generation == self._generation:
                self._fire(Trigger.TRANSPORT_ERROR, detail=f"{type(exc).__name__}: {exc}")
            return

        if generation != self._generation:
            await ws.close()
            return

        self._ws = ws
        self._fire(Trigger.OPENED)
        if generation != self._generation:
            self._ws = None
            await ws.close()
            return

        failure: BaseException | None = None
        try:
            async for msg in ws:
                # A disconnect issued from within this task cannot cancel it.
                if generation != self._generation:
                    break
                if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    self._dispatch(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    failure = ws.exception() or FeedTransportError("Websocket error frame")
                    break
        except _TRANSPORT_ERRORS as exc:
            failure = exc
        finally:
            if self._ws is ws:
                self._ws = None
            if not ws.closed:
                await ws.close()

        if generation != self._generation:
            return

        code = ws.close_code
        if failure is None and code in _NORMAL_CLOSE_CODES:
            self._fire(Trigger.CLOSED_CLEAN, detail=f"code={code}")
        elif failure is not None:
            self._fire(Trigger.CLOSED_ABNORMAL, detail=f"{type(failure).__name__}: {failure}")
        else:
            self._fire(Trigger.CLOSED_ABNORMAL, detail=f"code={code}")

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _dispatch(self, data: str | bytes) -> None:
        try:
            update = decode_update(data, termination_markers=self._config.termination_markers)
        except MessageDecodeError as exc:
            _logger.debug("Dropping feed frame: %s", exc)
            self._diagnostics.add(LogCategory.ERROR, f"Dropped malformed message: {exc}", {"frame": exc.frame})
            return

        try:
            self._apply(update)
        except Exception:
            _logger.warning("Applying feed update %s failed", type(update).__name__, exc_info=True)
            self._diagnostics.add(LogCategory.ERROR, f"Failed to apply {type(update).__name__}")
            return
        self._messages_handled += 1

    def _apply(self, update: FeedUpdate) -> None:
        if isinstance(update, EntityUpsert):
            entity = update.entity
            self._store.upsert(entity)
            data: dict[str, Any] = {
                "object_id": entity.id,
                "name": entity.attributes.name,
                "object_type": str(entity.kind),
                "camera": entity.source_id,
            }
            if update.from_event:
                data["event_description"] = entity.attributes.event_description
                data["snapshot"] = entity.attributes.snapshot_url
                self._diagnostics.add(
                    LogCategory.EVENT,
                    entity.attributes.event_description or f"Event for {entity.display_name}",
                    data,
                )
            else:
                self._diagnostics.add(LogCategory.TRACKING_UPDATE, f"Position update for {entity.display_name}", data)
            return

        if isinstance(update, EntityRemoval):
            removed = self._store.remove(update.entity_id)
            _logger.debug("Track ended id=%s removed=%s", update.entity_id, removed)
            self._diagnostics.add(
                LogCategory.EVENT,
                update.event_description or f"Track ended for {update.display_name or update.entity_id}",
                {
                    "object_id": update.entity_id,
                    "name": update.display_name,
                    "event_description": update.event_description,
                    "snapshot": update.snapshot_url,
                    "removed": removed,
                },
            )
            return

        if isinstance(update, BulkLoad):
            self._store.upsert_many(update.entities)
            self._diagnostics.add(LogCategory.INFO, f"Initial load of {len(update.entities)} object(s)")
            return

        if isinstance(update, Greeting):
            self._diagnostics.add(
                LogCategory.CONNECTION,
                update.message or "Connected to feed",
                {"server_time": update.server_time, "tracking_count": update.tracking_count},
            )
            return

        if isinstance(update, Ignored):
            self._diagnostics.add(LogCategory.INFO, f"Ignored message of type {update.raw_type!r}")
