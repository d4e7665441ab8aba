"""Deterministic and adaptive replay engines."""

from .state import (
    ExecutionCancelled,
    ExecutionRegistry,
    ExecutionResult,
    ExecutionState,
    ExecutionStatus,
)
from .deterministic import DeterministicReplayEngine
from .adaptive import AdaptiveReplayEngine
from .service import AutomationService

__all__ = [
    "ExecutionCancelled",
    "ExecutionRegistry",
    "ExecutionResult",
    "ExecutionState",
    "ExecutionStatus",
    "DeterministicReplayEngine",
    "AdaptiveReplayEngine",
    "AutomationService",
]
