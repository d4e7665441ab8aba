"""
Event channel for progress, detection and recording notifications.

Producers emit and move on; nothing waits for acknowledgment.
"""

import asyncio
import inspect
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

import structlog

logger = structlog.get_logger()


class EventType(str, Enum):
    """Events produced by the recognition and execution engines."""
    PATTERN_DETECTED = "pattern.detected"
    PATTERN_SUGGESTION = "pattern.suggestion"
    EXECUTION_STARTED = "execution.started"
    EXECUTION_PROGRESS = "execution.progress"
    EXECUTION_COMPLETED = "execution.completed"
    EXECUTION_CANCELLED = "execution.cancelled"
    EXECUTION_ERROR = "execution.error"
    RECORDING_STATUS_CHANGED = "recording.status_changed"
    RECORDING_ACTION_CAPTURED = "recording.action_captured"
    RECORDING_TIMEOUT_PREVIEW = "recording.timeout_preview"


@dataclass
class Event:
    """A single emitted event."""
    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "timestamp": self.timestamp,
            "data": self.data,
        }


EventHandler = Callable[[Event], Union[None, Awaitable[None]]]


class EventBus:
    """
    In-process publish/subscribe channel.

    Handlers may be plain callables or coroutine functions. Plain handlers
    run inline during ``emit``; coroutine handlers are scheduled on the
    running loop. Handler failures are logged and never reach the emitter.

    Example:
        bus = EventBus()
        bus.subscribe(lambda e: print(e.data), types={EventType.EXECUTION_PROGRESS})
        bus.emit(EventType.EXECUTION_PROGRESS, execution_id="execution-1", current=1)
    """

    def __init__(self):
        self._subscribers: list[tuple[EventHandler, Optional[frozenset[EventType]]]] = []
        self._pending: set[asyncio.Task] = set()

    def subscribe(
        self,
        handler: EventHandler,
        types: Optional[set[EventType]] = None,
    ) -> None:
        """
        Register a handler.

        Args:
            handler: Callable receiving each Event
            types: Restrict delivery to these event types (all when None)
        """
        self._subscribers.append((handler, frozenset(types) if types else None))

    def unsubscribe(self, handler: EventHandler) -> None:
        self._subscribers = [(h, t) for h, t in self._subscribers if h is not handler]

    def emit(self, event_type: EventType, **data: Any) -> Event:
        """Deliver an event to every matching subscriber."""
        event = Event(type=event_type, data=data)
        logger.debug("event_emitted", event_type=event_type.value)

        for handler, types in list(self._subscribers):
            if types is not None and event_type not in types:
                continue
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    self._schedule(result, event_type)
            except Exception as e:
                logger.exception(
                    "event_handler_error",
                    event_type=event_type.value,
                    error=str(e),
                )
        return event

    async def drain(self) -> None:
        """Wait for scheduled async handlers to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _schedule(self, awaitable: Awaitable[None], event_type: EventType) -> None:
        async def _run():
            try:
                await awaitable
            except Exception as e:
                logger.exception(
                    "event_handler_error",
                    event_type=event_type.value,
                    error=str(e),
                )

        task = asyncio.get_running_loop().create_task(_run())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
