"""Connection lifecycle as a pure state machine.

:func:`transition` maps ``(state, trigger)`` to the next state plus the
side effect the client must perform. It owns all retry counting and
terminal-state logic, so it can be tested without sockets or timers.

States::

    DISCONNECTED -> CONNECTING -> CONNECTED -> RECONNECTING -> CONNECTING -> ... -> FAILED

``FAILED`` is entered only when the reconnect budget is exhausted. A
manual disconnect goes straight to ``DISCONNECTED`` from any state and
does not count against the budget.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum

from twintrack.state.events import ConnectionStatus


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


class Trigger(StrEnum):
    CONNECT = "connect"
    """Caller asked to connect."""
    OPENED = "opened"
    """Socket handshake completed."""
    CLOSED_CLEAN = "closed_clean"
    """Server closed with a normal close code."""
    CLOSED_ABNORMAL = "closed_abnormal"
    """Connection dropped or closed with a non-normal code."""
    TRANSPORT_ERROR = "transport_error"
    """Connect refused, timed out or the socket errored."""
    RETRY_DUE = "retry_due"
    """The reconnect timer fired."""
    DISCONNECT = "disconnect"
    """Caller asked to disconnect."""
    RESET = "reset"
    """Caller asked to reconnect now with a fresh budget."""


class Action(StrEnum):
    NONE = "none"
    OPEN = "open"
    """Cancel any pending retry timer and open a new socket."""
    SCHEDULE_RETRY = "schedule_retry"
    """Arm the reconnect timer."""
    CLOSE = "close"
    """Cancel any pending retry timer and close the current socket."""


@dataclass(frozen=True, slots=True)
class MachineState:
    state: ConnectionState = ConnectionState.DISCONNECTED
    attempts: int = 0
    """Reconnect attempts since the last successful connection."""

    @property
    def status(self) -> ConnectionStatus:
        return status_for(self.state)


@dataclass(frozen=True, slots=True)
class Transition:
    previous: MachineState
    current: MachineState
    action: Action = Action.NONE

    @property
    def changed(self) -> bool:
        return self.previous != self.current


def status_for(state: ConnectionState) -> ConnectionStatus:
    """Tri-state status shown to observers."""
    if state == ConnectionState.CONNECTED:
        return ConnectionStatus.CONNECTED
    if state == ConnectionState.FAILED:
        return ConnectionStatus.ERROR
    return ConnectionStatus.DISCONNECTED


_FAILURES = frozenset({Trigger.CLOSED_ABNORMAL, Trigger.TRANSPORT_ERROR})
_LIVE = frozenset({ConnectionState.CONNECTING, ConnectionState.CONNECTED})


def transition(current: MachineState, trigger: Trigger, *, max_attempts: int) -> Transition:
    """Compute the next state for *trigger*. Unlisted combinations are no-ops."""
    state = current.state

    def _to(next_state: MachineState, action: Action = Action.NONE) -> Transition:
        return Transition(previous=current, current=next_state, action=action)

    noop = _to(current)

    if trigger == Trigger.CONNECT:
        if state == ConnectionState.DISCONNECTED:
            return _to(MachineState(ConnectionState.CONNECTING, attempts=0), Action.OPEN)
        # Already live, waiting for a retry, or terminally failed.
        return noop

    if trigger == Trigger.RESET:
        if state == ConnectionState.CONNECTED:
            return noop
        return _to(MachineState(ConnectionState.CONNECTING, attempts=0), Action.OPEN)

    if trigger == Trigger.DISCONNECT:
        if state == ConnectionState.DISCONNECTED:
            return noop
        return _to(MachineState(ConnectionState.DISCONNECTED, attempts=0), Action.CLOSE)

    if trigger == Trigger.OPENED:
        if state == ConnectionState.CONNECTING:
            return _to(MachineState(ConnectionState.CONNECTED, attempts=0))
        if state == ConnectionState.CONNECTED:
            return noop
        # A socket that finished opening after we stopped wanting it.
        return _to(current, Action.CLOSE)

    if trigger == Trigger.CLOSED_CLEAN:
        if state in _LIVE:
            return _to(MachineState(ConnectionState.DISCONNECTED, attempts=0))
        return noop

    if trigger in _FAILURES:
        if state not in _LIVE:
            return noop
        if current.attempts >= max_attempts:
            return _to(replace(current, state=ConnectionState.FAILED))
        return _to(
            MachineState(ConnectionState.RECONNECTING, attempts=current.attempts + 1),
            Action.SCHEDULE_RETRY,
        )

    if trigger == Trigger.RETRY_DUE:
        if state == ConnectionState.RECONNECTING:
            return _to(replace(current, state=ConnectionState.CONNECTING), Action.OPEN)
        return noop

    return noop
