"""Mid-workflow detection: notice a live session repeating a known pattern."""

import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from core.config import DetectorConfig
from core.events import EventBus, EventType
from core.models import (
    CopyPasteAction,
    CopyPastePayload,
    FormAction,
    FormPayload,
    NavigationAction,
    NavigationPayload,
    Pattern,
    SessionAction,
    hostname,
)
from core.store import PatternStore
from recognition.iteration import extract_iteration, template_summary

logger = structlog.get_logger()


@dataclass
class Suggestion:
    """Proactive offer to continue a pattern the user is mid-way through."""
    pattern_id: str
    intent_summary: str
    estimated_items: int
    match_count: int
    sequence_length: int

    def to_dict(self) -> dict:
        return {
            "pattern_id": self.pattern_id,
            "intent_summary": self.intent_summary,
            "estimated_items": self.estimated_items,
            "match_count": self.match_count,
        }


class MidWorkflowDetector:
    """
    Rolling session buffer matched against stored patterns.

    Features:
    - Bounded buffer of recent actions (oldest dropped first)
    - One-iteration matching for navigation patterns
    - Ranking by (iteration length, match count), both descending
    - Shared cooldown across all patterns between suggestions
    """

    def __init__(
        self,
        store: PatternStore,
        events: EventBus,
        config: Optional[DetectorConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.events = events
        self.config = config or DetectorConfig()
        self._clock = clock
        self._actions: deque = deque(maxlen=self.config.buffer_size)
        self._last_suggestion_at: Optional[float] = None

    @property
    def actions(self) -> list[SessionAction]:
        return list(self._actions)

    def cooldown_remaining(self) -> float:
        if self._last_suggestion_at is None:
            return 0.0
        elapsed = self._clock() - self._last_suggestion_at
        return max(0.0, self.config.cooldown_seconds - elapsed)

    async def track(self, action: SessionAction) -> Optional[Suggestion]:
        """Buffer an action and check for a mid-workflow repetition."""
        self._actions.append(action)
        try:
            return await self.detect()
        except Exception as e:
            logger.exception("mid_workflow_detection_error", error=str(e))
            return None

    async def detect(self) -> Optional[Suggestion]:
        """Rank candidates and emit a suggestion for the best one."""
        remaining = self.cooldown_remaining()
        if remaining > 0:
            logger.debug("mid_workflow_cooldown_active", remaining_seconds=round(remaining, 1))
            return None

        patterns = await self.store.list_patterns(limit=self.config.candidate_limit)
        if not patterns:
            return None

        candidates: list[tuple[int, int, Pattern]] = []
        for pattern in patterns:
            matches = self.count_matches(pattern)
            if matches >= self.config.min_matches:
                candidates.append((self.sequence_length(pattern), matches, pattern))

        if not candidates:
            return None

        candidates.sort(key=lambda c: (c[0], c[1]), reverse=True)
        length, matches, best = candidates[0]

        suggestion = Suggestion(
            pattern_id=best.id,
            intent_summary=best.intent_summary or template_summary(best),
            estimated_items=self.estimate_remaining(best),
            match_count=matches,
            sequence_length=length,
        )
        self.events.emit(EventType.PATTERN_SUGGESTION, **suggestion.to_dict())
        self._last_suggestion_at = self._clock()

        logger.info(
            "mid_workflow_suggestion",
            pattern_id=best.id,
            match_count=matches,
            sequence_length=length,
        )
        return suggestion

    def count_matches(self, pattern: Pattern) -> int:
        """Matching windows or actions in the recent buffer."""
        payload = pattern.payload
        if isinstance(payload, NavigationPayload):
            return self._count_navigation(payload)
        if isinstance(payload, FormPayload):
            return self._count_form(payload)
        if isinstance(payload, CopyPastePayload):
            return self._count_copy_paste(payload)
        return 0

    def sequence_length(self, pattern: Pattern) -> int:
        payload = pattern.payload
        if isinstance(payload, NavigationPayload):
            return len(extract_iteration(payload.urls()))
        if isinstance(payload, FormPayload):
            return len(payload.fields) or 1
        if isinstance(payload, CopyPastePayload):
            return len(payload.pairs) or 1
        return 1

    def estimate_remaining(self, pattern: Pattern) -> int:
        return self.config.estimated_items.get(pattern.type.value, 5)

    def _recent(self, kind: type, window: int) -> list:
        return [a for a in self._actions if isinstance(a, kind)][-window:]

    def _count_navigation(self, payload: NavigationPayload) -> int:
        iteration_hosts = [hostname(u) for u in extract_iteration(payload.urls())]
        size = len(iteration_hosts)
        if size == 0:
            return 0

        recent_hosts = [
            hostname(a.url)
            for a in self._recent(NavigationAction, self.config.navigation_window)
        ]
        return sum(
            1
            for i in range(len(recent_hosts) - size + 1)
            if recent_hosts[i:i + size] == iteration_hosts
        )

    def _count_form(self, payload: FormPayload) -> int:
        return sum(
            1
            for a in self._recent(FormAction, self.config.form_window)
            if a.domain == payload.domain and a.form_selector == payload.form_selector
        )

    def _count_copy_paste(self, payload: CopyPastePayload) -> int:
        if not payload.pairs:
            return 0
        signature = payload.pairs[0].signature()
        return sum(
            1
            for a in self._recent(CopyPasteAction, self.config.copy_paste_window)
            if a.pair.signature() == signature
        )
