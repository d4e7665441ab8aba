"""Manual recording sessions with caps and focus-driven pause/resume."""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

import structlog

from browser.host import TabHost
from core.config import RecordingConfig
from core.errors import ResourceLimitError
from core.events import EventBus, EventType
from core.models import (
    ClickAction,
    FormAction,
    NavigationAction,
    WorkflowPayload,
    WorkflowStep,
    hostname,
)

logger = structlog.get_logger()

RecordedAction = Union[NavigationAction, FormAction, ClickAction]


class RecordingStatus:
    ACTIVE = "active"
    PAUSED = "paused"
    STOPPED = "stopped"


@dataclass
class RecordingSession:
    """One capture session bound to a tab."""
    tab_id: str
    start_time: float
    actions: list[RecordedAction] = field(default_factory=list)
    status: str = RecordingStatus.ACTIVE
    timeout_handle: Optional[asyncio.TimerHandle] = None

    @property
    def is_open(self) -> bool:
        return self.status in (RecordingStatus.ACTIVE, RecordingStatus.PAUSED)


@dataclass
class RecordingPreview:
    """Captured session handed back when a recording stops."""
    actions: list[RecordedAction]
    tab_id: str
    duration: float
    is_timeout: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "actions": [a.model_dump(mode="json") for a in self.actions],
            "tab_id": self.tab_id,
            "duration": round(self.duration, 1),
            "is_timeout": self.is_timeout,
        }

    def to_workflow(self) -> WorkflowPayload:
        """
        Convert captured actions into an authored step list.

        The steps are a reference for adaptive replay; form values are the
        sanitized ones, so nothing sensitive is carried over.
        """
        steps: list[WorkflowStep] = []
        start_url: Optional[str] = None
        for action in self.actions:
            if isinstance(action, NavigationAction):
                start_url = start_url or action.url
                steps.append(WorkflowStep(
                    action="navigate",
                    target=action.url,
                    description=action.title or f"Open {hostname(action.url)}",
                ))
            elif isinstance(action, FormAction):
                start_url = start_url or f"https://{action.domain}"
                for f in action.fields:
                    steps.append(WorkflowStep(
                        action="type",
                        target=f'{action.form_selector} [name="{f.name}"]',
                        value=f.sanitized_value,
                        description=f"Fill {f.label or f.name}",
                    ))
                steps.append(WorkflowStep(
                    action="click",
                    target=f'{action.form_selector} [type="submit"]',
                    description=f"Submit form on {action.domain}",
                ))
            else:
                start_url = start_url or action.url
                steps.append(WorkflowStep(
                    action="click",
                    target=action.selector,
                    description=f'Click "{action.text}"' if action.text else f"Click {action.selector}",
                ))
        return WorkflowPayload(steps=steps, start_url=start_url)


class RecordingManager:
    """
    Manages manual recording sessions.

    Features:
    - At most one active or paused session process-wide
    - Hard caps on duration and action count; hitting either force-stops
      the session and flags the preview as a timeout
    - Consecutive duplicate navigations collapsed
    - Pause/resume driven by tab focus changes
    """

    def __init__(
        self,
        host: TabHost,
        events: EventBus,
        config: Optional[RecordingConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.host = host
        self.events = events
        self.config = config or RecordingConfig()
        self._clock = clock
        self._sessions: dict[str, RecordingSession] = {}

    # ==================== Lifecycle ====================

    def start_recording(self, tab_id: str) -> RecordingSession:
        """
        Open a session on ``tab_id``.

        Raises:
            ResourceLimitError: RECORDING_ACTIVE when another session is open
                (its tab id is in the error context), TAB_NOT_FOUND when the
                tab does not exist
        """
        existing = self.open_session()
        if existing is not None:
            raise ResourceLimitError(
                f"Recording already in progress on tab {existing.tab_id}",
                code="RECORDING_ACTIVE",
                context={"tab_id": existing.tab_id},
            )

        if self.host.get_tab(tab_id) is None:
            raise ResourceLimitError(
                f"Tab {tab_id} not found",
                code="TAB_NOT_FOUND",
                context={"tab_id": tab_id},
            )

        session = RecordingSession(tab_id=tab_id, start_time=self._clock())
        session.timeout_handle = asyncio.get_running_loop().call_later(
            self.config.max_duration_seconds, self.handle_timeout, tab_id
        )
        self._sessions[tab_id] = session

        logger.info("recording_started", tab_id=tab_id)
        self.events.emit(EventType.RECORDING_STATUS_CHANGED, status="started", tab_id=tab_id)
        return session

    def stop_recording(self, tab_id: str, is_timeout: bool = False) -> RecordingPreview:
        """
        Close the session on ``tab_id`` and return what it captured.

        Raises:
            ResourceLimitError: NO_RECORDING when the tab has no session
        """
        session = self._sessions.pop(tab_id, None)
        if session is None:
            raise ResourceLimitError(
                "No active recording found",
                code="NO_RECORDING",
                context={"tab_id": tab_id},
            )

        self._cancel_timer(session)
        session.status = RecordingStatus.STOPPED
        duration = self._clock() - session.start_time

        logger.info(
            "recording_stopped",
            tab_id=tab_id,
            actions=len(session.actions),
            duration_seconds=round(duration, 1),
            is_timeout=is_timeout,
        )
        if not is_timeout:
            self.events.emit(EventType.RECORDING_STATUS_CHANGED, status="stopped", tab_id=tab_id)

        return RecordingPreview(
            actions=list(session.actions),
            tab_id=tab_id,
            duration=duration,
            is_timeout=is_timeout,
        )

    def handle_timeout(self, tab_id: str) -> Optional[RecordingPreview]:
        """Force-stop after a cap is hit; emits the timeout preview."""
        if tab_id not in self._sessions:
            return None

        logger.warning("recording_timeout", tab_id=tab_id)
        preview = self.stop_recording(tab_id, is_timeout=True)
        minutes = self.config.max_duration_seconds / 60
        self.events.emit(
            EventType.RECORDING_STATUS_CHANGED,
            status="timeout",
            tab_id=tab_id,
            message=f"Recording stopped due to timeout ({minutes:g} min limit)",
        )
        self.events.emit(EventType.RECORDING_TIMEOUT_PREVIEW, **preview.to_dict())
        return preview

    def handle_tab_destroyed(self, tab_id: str) -> None:
        session = self._sessions.pop(tab_id, None)
        if session is None:
            return

        self._cancel_timer(session)
        session.status = RecordingStatus.STOPPED
        logger.error("recording_tab_destroyed", tab_id=tab_id, actions=len(session.actions))
        self.events.emit(
            EventType.RECORDING_STATUS_CHANGED,
            status="error",
            tab_id=tab_id,
            message="Recording stopped. Tab closed unexpectedly.",
        )

    def clear_stale(self, max_age_seconds: Optional[float] = None) -> int:
        """Drop sessions older than ``max_age_seconds`` (all when None)."""
        now = self._clock()
        stale = [
            tab_id for tab_id, s in self._sessions.items()
            if max_age_seconds is None or now - s.start_time > max_age_seconds
        ]
        for tab_id in stale:
            self._cancel_timer(self._sessions.pop(tab_id))

        if stale:
            logger.info("stale_recordings_cleared", count=len(stale))
        return len(stale)

    # ==================== Capture ====================

    def capture_action(self, tab_id: str, action: RecordedAction) -> bool:
        """Append ``action`` if the tab's session is active. Returns whether it was kept."""
        session = self._sessions.get(tab_id)
        if session is None or session.status != RecordingStatus.ACTIVE:
            return False

        if len(session.actions) >= self.config.max_actions:
            logger.warning("recording_action_cap_reached", tab_id=tab_id, max_actions=self.config.max_actions)
            self.handle_timeout(tab_id)
            return False

        if isinstance(action, NavigationAction) and session.actions:
            last = session.actions[-1]
            if isinstance(last, NavigationAction) and last.url == action.url:
                logger.debug("recording_duplicate_navigation_skipped", tab_id=tab_id, url=action.url)
                return False

        session.actions.append(action)
        self.events.emit(
            EventType.RECORDING_ACTION_CAPTURED,
            tab_id=tab_id,
            action_count=len(session.actions),
            action_type=action.kind,
        )
        return True

    # ==================== Focus ====================

    def pause_recording(self, tab_id: str) -> None:
        session = self._sessions.get(tab_id)
        if session is None or session.status != RecordingStatus.ACTIVE:
            return
        session.status = RecordingStatus.PAUSED
        logger.info("recording_paused", tab_id=tab_id)
        self.events.emit(
            EventType.RECORDING_STATUS_CHANGED,
            status="paused",
            tab_id=tab_id,
            message="Recording paused - switch back to the recorded tab to continue",
        )

    def resume_recording(self, tab_id: str) -> None:
        session = self._sessions.get(tab_id)
        if session is None or session.status != RecordingStatus.PAUSED:
            return
        session.status = RecordingStatus.ACTIVE
        logger.info("recording_resumed", tab_id=tab_id)
        self.events.emit(
            EventType.RECORDING_STATUS_CHANGED,
            status="resumed",
            tab_id=tab_id,
            message="Recording resumed",
        )

    def handle_focus_change(self, focused_tab_id: Optional[str]) -> None:
        """Pause the open session when its tab loses focus; resume when it regains it."""
        session = self.open_session()
        if session is None:
            return
        if session.tab_id == focused_tab_id:
            self.resume_recording(session.tab_id)
        else:
            self.pause_recording(session.tab_id)

    # ==================== Queries ====================

    def open_session(self) -> Optional[RecordingSession]:
        return next((s for s in self._sessions.values() if s.is_open), None)

    def get_session(self, tab_id: str) -> Optional[RecordingSession]:
        return self._sessions.get(tab_id)

    def is_recording(self, tab_id: str) -> bool:
        session = self._sessions.get(tab_id)
        return session is not None and session.is_open

    def action_count(self, tab_id: str) -> int:
        session = self._sessions.get(tab_id)
        return len(session.actions) if session else 0

    @staticmethod
    def _cancel_timer(session: RecordingSession) -> None:
        if session.timeout_handle is not None:
            session.timeout_handle.cancel()
            session.timeout_handle = None
