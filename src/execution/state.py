"""In-memory execution state: cancellation flags and progress counters."""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import structlog

from core.errors import PilotError

logger = structlog.get_logger()


class ExecutionStatus(Enum):
    """Replay lifecycle."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class ExecutionState:
    """Per-run state. Lives only while the run is in flight."""
    execution_id: str
    pattern_type: str
    total_steps: int
    current_step: int = 0
    cancelled: bool = False
    tab_id: Optional[str] = None
    started_at: float = field(default_factory=time.time)


@dataclass
class ExecutionResult:
    """Outcome of a replay run."""
    execution_id: str
    status: ExecutionStatus
    steps_executed: int = 0
    total_steps: int = 0
    iterations_completed: int = 0
    duration_ms: float = 0
    error: Optional[PilotError] = None

    @property
    def success(self) -> bool:
        return self.status == ExecutionStatus.COMPLETED

    def to_dict(self) -> dict:
        return {
            "execution_id": self.execution_id,
            "status": self.status.value,
            "steps_executed": self.steps_executed,
            "total_steps": self.total_steps,
            "iterations_completed": self.iterations_completed,
            "duration_ms": round(self.duration_ms, 1),
            "error": self.error.message if self.error else None,
        }


class ExecutionCancelled(Exception):
    """Raised at a checkpoint once the run's cancel flag is seen."""


class ExecutionRegistry:
    """
    Tracks in-flight executions.

    Cancellation is cooperative: ``cancel`` only sets the flag and engines
    re-read it at every step or iteration boundary.
    """

    def __init__(self):
        self._states: dict[str, ExecutionState] = {}

    @staticmethod
    def new_execution_id() -> str:
        return f"execution-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"

    def create(
        self,
        pattern_type: str,
        total_steps: int,
        execution_id: Optional[str] = None,
    ) -> ExecutionState:
        state = ExecutionState(
            execution_id=execution_id or self.new_execution_id(),
            pattern_type=pattern_type,
            total_steps=total_steps,
        )
        self._states[state.execution_id] = state
        return state

    def get(self, execution_id: str) -> Optional[ExecutionState]:
        return self._states.get(execution_id)

    def is_cancelled(self, execution_id: str) -> bool:
        state = self._states.get(execution_id)
        return state is not None and state.cancelled

    def cancel(self, execution_id: str) -> Optional[ExecutionState]:
        """Flag a run for cancellation; returns None for unknown ids."""
        state = self._states.get(execution_id)
        if state is None:
            logger.warning("cancel_unknown_execution", execution_id=execution_id)
            return None
        state.cancelled = True
        logger.info("execution_cancel_requested", execution_id=execution_id, step=state.current_step)
        return state

    def advance(self, execution_id: str, step: int) -> None:
        state = self._states.get(execution_id)
        if state is not None:
            state.current_step = step

    def remove(self, execution_id: str) -> None:
        self._states.pop(execution_id, None)

    def tab_in_use(self, tab_id: str) -> bool:
        return any(s.tab_id == tab_id for s in self._states.values())

    def active(self) -> list[ExecutionState]:
        return list(self._states.values())
