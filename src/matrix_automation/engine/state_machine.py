from __future__ import annotations

from enum import Enum


class EngineState(str, Enum):
    CREATED = "created"
    STORAGE_CONNECTED = "storage_connected"
    DATA_LOADED = "data_loaded"
    CLIENTS_READY = "clients_ready"
    RUNNING = "running"
    SHUT_DOWN = "shut_down"


# Single-shot: nothing leads back to CREATED, and SHUT_DOWN is terminal.
# DATA_LOADED -> RUNNING is the path taken when chat integration is disabled.
ALLOWED_TRANSITIONS: dict[EngineState, set[EngineState]] = {
    EngineState.CREATED: {EngineState.STORAGE_CONNECTED, EngineState.SHUT_DOWN},
    EngineState.STORAGE_CONNECTED: {EngineState.DATA_LOADED, EngineState.SHUT_DOWN},
    EngineState.DATA_LOADED: {
        EngineState.CLIENTS_READY,
        EngineState.RUNNING,
        EngineState.SHUT_DOWN,
    },
    EngineState.CLIENTS_READY: {EngineState.RUNNING, EngineState.SHUT_DOWN},
    EngineState.RUNNING: {EngineState.SHUT_DOWN},
    EngineState.SHUT_DOWN: set(),
}


class IllegalTransitionError(ValueError):
    pass


def transition(*, current: EngineState, to: EngineState) -> EngineState:
    allowed = ALLOWED_TRANSITIONS.get(current, set())
    if to not in allowed:
        raise IllegalTransitionError(f"Illegal transition: {current.value} -> {to.value}")
    return to
