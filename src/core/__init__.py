"""Core components: configuration, errors, data model, events and storage."""

from .config import ConfigLoader, PilotConfig
from .events import Event, EventBus, EventType
from .store import PatternStore
from .errors import (
    PilotError,
    ConfigError,
    ValidationError,
    OracleUnavailableError,
    NavigationError,
    TargetNotFoundError,
    ExecutionError,
    ResourceLimitError,
    PatternNotFoundError,
)

__all__ = [
    "ConfigLoader",
    "PilotConfig",
    "Event",
    "EventBus",
    "EventType",
    "PatternStore",
    "PilotError",
    "ConfigError",
    "ValidationError",
    "OracleUnavailableError",
    "NavigationError",
    "TargetNotFoundError",
    "ExecutionError",
    "ResourceLimitError",
    "PatternNotFoundError",
]
