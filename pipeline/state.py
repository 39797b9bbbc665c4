"""
Process State Tracker — Stage, progress and status of the current run.

Pure bookkeeping: the pipeline drives the transitions, observers read
snapshots or subscribe to changes without blocking the run.
"""

import logging
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, List, Optional

from .errors import PipelineBusy

logger = logging.getLogger(__name__)

# Type alias for progress callbacks: (message: str, percent: int) -> None
ProgressCallback = Optional[Callable[[str, int], None]]


class PipelineStage(str, Enum):
    IDLE = "Idle"
    SAMPLING = "Sampling"
    RECOGNIZING = "Recognizing"
    RECONCILING = "Reconciling"
    DONE = "Done"
    FAILED = "Failed"
    CANCELLED = "Cancelled"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STAGES

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STAGES


ACTIVE_STAGES = frozenset({
    PipelineStage.SAMPLING,
    PipelineStage.RECOGNIZING,
    PipelineStage.RECONCILING,
})

TERMINAL_STAGES = frozenset({
    PipelineStage.DONE,
    PipelineStage.FAILED,
    PipelineStage.CANCELLED,
})

_TRANSITIONS = {
    PipelineStage.IDLE: {PipelineStage.SAMPLING, PipelineStage.FAILED},
    PipelineStage.SAMPLING: {
        PipelineStage.RECOGNIZING, PipelineStage.FAILED, PipelineStage.CANCELLED
    },
    PipelineStage.RECOGNIZING: {
        PipelineStage.RECONCILING, PipelineStage.FAILED, PipelineStage.CANCELLED
    },
    PipelineStage.RECONCILING: {
        PipelineStage.DONE, PipelineStage.FAILED, PipelineStage.CANCELLED
    },
    PipelineStage.DONE: set(),
    PipelineStage.FAILED: set(),
    PipelineStage.CANCELLED: set(),
}


@dataclass(frozen=True)
class PipelineState:
    """Immutable snapshot of a run."""
    stage: PipelineStage = PipelineStage.IDLE
    progress: int = 0
    status: str = ""

    @property
    def is_active(self) -> bool:
        return self.stage.is_active


StateListener = Callable[[PipelineState], None]


class ProcessStateTracker:
    """
    Holds the PipelineState of one run at a time.

    Stages only move forward (Idle → Sampling → Recognizing → Reconciling
    → Done, or any active stage → Failed/Cancelled). Terminal stages stay
    put until reset() starts over at Idle. Progress never decreases
    within a run.
    """

    def __init__(self):
        self._state = PipelineState()
        self._lock = threading.Lock()
        self._listeners: List[StateListener] = []

    @property
    def state(self) -> PipelineState:
        with self._lock:
            return self._state

    @property
    def is_active(self) -> bool:
        return self.state.is_active

    def subscribe(self, listener: StateListener):
        """Call ``listener`` with every new state snapshot."""
        self._listeners.append(listener)

    def reset(self):
        """Return to Idle before a new run."""
        with self._lock:
            if self._state.is_active:
                raise PipelineBusy(
                    f"Cannot reset while a run is {self._state.stage.value}"
                )
            self._state = PipelineState()
            snapshot = self._state
        self._notify(snapshot)

    def transition(self, stage: PipelineStage, status: Optional[str] = None,
                   progress: Optional[int] = None):
        """
        Move to ``stage``.

        Raises:
            ValueError: If the transition would go backwards or leave a
                terminal stage.
        """
        with self._lock:
            current = self._state.stage
            if stage not in _TRANSITIONS[current]:
                raise ValueError(
                    f"Invalid stage transition {current.value} -> {stage.value}"
                )
            self._state = replace(
                self._state,
                stage=stage,
                status=self._state.status if status is None else status,
                progress=self._clamp(progress),
            )
            snapshot = self._state
        logger.debug(f"Stage {current.value} -> {stage.value}")
        self._notify(snapshot)

    def report(self, status: str, progress: int):
        """Update progress and status within the current stage."""
        with self._lock:
            self._state = replace(
                self._state, status=status, progress=self._clamp(progress)
            )
            snapshot = self._state
        self._notify(snapshot)

    def fail(self, reason: str):
        self.transition(PipelineStage.FAILED, status=f"Failed: {reason}")

    def cancel(self):
        self.transition(PipelineStage.CANCELLED, status="Cancelled.")

    def complete(self):
        self.transition(PipelineStage.DONE, status="Process complete.", progress=100)

    def _clamp(self, progress: Optional[int]) -> int:
        # Caller holds the lock
        if progress is None:
            return self._state.progress
        return max(self._state.progress, min(100, max(0, int(progress))))

    def _notify(self, snapshot: PipelineState):
        for listener in self._listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.exception("State listener raised; ignoring")
