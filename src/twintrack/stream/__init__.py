"""Streaming feed client and its connection state machine."""

from twintrack.stream.client import StreamClient
from twintrack.stream.machine import Action, ConnectionState, MachineState, Transition, Trigger, transition

__all__ = [
    "Action",
    "ConnectionState",
    "MachineState",
    "StreamClient",
    "Transition",
    "Trigger",
    "transition",
]
