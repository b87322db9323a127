"""
Encoder lifecycle tracking and cooperative cancellation
"""

import logging
import threading
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional

from .exceptions import CompressionCancelled

logger = logging.getLogger(__name__)


class EncoderState(Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    RUNNING = "running"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (EncoderState.COMPLETE, EncoderState.FAILED, EncoderState.CANCELLED)


_TRANSITIONS: Dict[EncoderState, FrozenSet[EncoderState]] = {
    EncoderState.IDLE: frozenset({EncoderState.INITIALIZING}),
    EncoderState.INITIALIZING: frozenset({EncoderState.RUNNING, EncoderState.FAILED, EncoderState.CANCELLED}),
    EncoderState.RUNNING: frozenset({EncoderState.FINALIZING, EncoderState.FAILED, EncoderState.CANCELLED}),
    EncoderState.FINALIZING: frozenset({EncoderState.COMPLETE, EncoderState.FAILED}),
    EncoderState.COMPLETE: frozenset(),
    EncoderState.FAILED: frozenset(),
    EncoderState.CANCELLED: frozenset(),
}


class IllegalStateTransition(RuntimeError):
    pass


class EncoderStateTracker:
    """Validated state machine for one encode operation"""

    def __init__(self, name: str):
        self.name = name
        self.state = EncoderState.IDLE
        self.history: List[EncoderState] = [EncoderState.IDLE]

    def transition(self, new_state: EncoderState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise IllegalStateTransition(f"{self.name}: illegal transition {self.state.value} -> {new_state.value}")
        logger.debug(f"{self.name}: {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)

    def fail(self) -> None:
        """Move to FAILED from any non-terminal state that allows it"""
        if not self.state.is_terminal and EncoderState.FAILED in _TRANSITIONS[self.state]:
            self.transition(EncoderState.FAILED)

    def cancel(self) -> None:
        if not self.state.is_terminal and EncoderState.CANCELLED in _TRANSITIONS[self.state]:
            self.transition(EncoderState.CANCELLED)


class CancellationToken:
    """Shared cooperative cancellation flag checked at frame and batch boundaries"""

    def __init__(self):
        self._event = threading.Event()
        self._callbacks: List[Callable[[], None]] = []
        self._lock = threading.Lock()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
        logger.info("Cancellation requested")
        for callback in callbacks:
            callback()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def on_cancel(self, callback: Callable[[], None]) -> None:
        with self._lock:
            self._callbacks.append(callback)

    def raise_if_cancelled(self, where: Optional[str] = None) -> None:
        if self._event.is_set():
            raise CompressionCancelled("Operation cancelled" + (f" during {where}" if where else ""))
