"""
Runner state machine as a pure transition function.

    idle -> loading -> ready -> presenting -> awaitingInput -> presenting ...
                                           -> advancing     -> presenting ...
                                           -> completed

FAIL moves any state to error; RESET moves any state to idle.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict

from compass.core.errors import InvalidTransition


class RunnerState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    PRESENTING = "presenting"
    AWAITING_INPUT = "awaitingInput"
    ADVANCING = "advancing"
    COMPLETED = "completed"
    ERROR = "error"


class Signal(str, Enum):
    LOAD = "load"
    LOADED = "loaded"
    ENTER = "enter"
    AWAIT_INPUT = "awaitInput"
    ADVANCE = "advance"
    COMPLETE = "complete"
    FAIL = "fail"
    RESET = "reset"


_TABLE: Dict[RunnerState, Dict[Signal, RunnerState]] = {
    RunnerState.IDLE: {Signal.LOAD: RunnerState.LOADING},
    RunnerState.LOADING: {Signal.LOADED: RunnerState.READY},
    RunnerState.READY: {Signal.ENTER: RunnerState.PRESENTING, Signal.LOAD: RunnerState.LOADING},
    RunnerState.PRESENTING: {
        Signal.AWAIT_INPUT: RunnerState.AWAITING_INPUT,
        Signal.ADVANCE: RunnerState.ADVANCING,
        Signal.COMPLETE: RunnerState.COMPLETED,
    },
    RunnerState.AWAITING_INPUT: {Signal.ENTER: RunnerState.PRESENTING},
    RunnerState.ADVANCING: {Signal.ENTER: RunnerState.PRESENTING},
    RunnerState.COMPLETED: {Signal.LOAD: RunnerState.LOADING},
    RunnerState.ERROR: {Signal.LOAD: RunnerState.LOADING},
}


def next_state(state: RunnerState, signal: Signal) -> RunnerState:
    if signal is Signal.FAIL:
        return RunnerState.ERROR
    if signal is Signal.RESET:
        return RunnerState.IDLE
    try:
        return _TABLE[state][signal]
    except KeyError:
        raise InvalidTransition(state, signal) from None


def can_apply(state: RunnerState, signal: Signal) -> bool:
    return signal in (Signal.FAIL, Signal.RESET) or signal in _TABLE.get(state, {})
