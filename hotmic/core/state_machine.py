from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class SessionState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    FINALIZING = "finalizing"
    UPLOADING = "uploading"
    TRANSCRIBING = "transcribing"
    POST_PROCESSING = "post_processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({SessionState.COMPLETED, SessionState.FAILED, SessionState.CANCELLED})

_VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    # IDLE -> UPLOADING is the re-transcription path, IDLE -> FAILED the missing-key fast fail.
    SessionState.IDLE: {SessionState.RECORDING, SessionState.UPLOADING, SessionState.FAILED},
    SessionState.RECORDING: {SessionState.FINALIZING, SessionState.FAILED, SessionState.CANCELLED},
    SessionState.FINALIZING: {SessionState.UPLOADING, SessionState.FAILED, SessionState.CANCELLED},
    SessionState.UPLOADING: {SessionState.TRANSCRIBING, SessionState.FAILED, SessionState.CANCELLED},
    SessionState.TRANSCRIBING: {
        SessionState.POST_PROCESSING,
        SessionState.COMPLETED,
        SessionState.FAILED,
        SessionState.CANCELLED,
    },
    SessionState.POST_PROCESSING: {SessionState.COMPLETED, SessionState.FAILED, SessionState.CANCELLED},
    SessionState.COMPLETED: {SessionState.IDLE},
    SessionState.FAILED: {SessionState.IDLE},
    SessionState.CANCELLED: {SessionState.IDLE},
}


@dataclass(frozen=True)
class TransitionEvent:
    source: SessionState
    target: SessionState


class InvalidTransitionError(RuntimeError):
    def __init__(self, source: SessionState, target: SessionState):
        super().__init__(f"Invalid session state transition: {source.value} -> {target.value}")
        self.source = source
        self.target = target


class SessionStateMachine:
    """Small deterministic state machine for one recording/transcription session."""

    def __init__(self, initial_state: SessionState = SessionState.IDLE):
        self._state = initial_state
        self._history: list[TransitionEvent] = []

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def history(self) -> tuple[TransitionEvent, ...]:
        return tuple(self._history)

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    def transition(self, target: SessionState) -> TransitionEvent | None:
        if target == self._state:
            return None
        if target not in _VALID_TRANSITIONS.get(self._state, set()):
            raise InvalidTransitionError(self._state, target)
        event = TransitionEvent(source=self._state, target=target)
        self._state = target
        self._history.append(event)
        return event
