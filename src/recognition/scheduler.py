"""Periodic and on-demand pattern recognition sweeps."""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Optional

import structlog

from core.config import RecognitionConfig
from core.errors import PilotError
from core.models import PatternType
from core.store import PatternStore
from recognition.confidence import ConfidenceEngine, ScoredPattern
from recognition.notifications import NotificationCenter
from recognition.summarizer import IntentSummarizer

logger = structlog.get_logger()


@dataclass
class SweepResult:
    """Outcome of one recognition sweep."""
    scored: list[ScoredPattern] = field(default_factory=list)
    summarized: list[str] = field(default_factory=list)
    notified: list[str] = field(default_factory=list)
    duration_ms: float = 0

    @property
    def ready(self) -> list[ScoredPattern]:
        return [s for s in self.scored if s.ready_for_notification]


class PatternRecognitionScheduler:
    """
    Runs recognition sweeps on an interval and on demand.

    Single-flight: a trigger that arrives while a sweep is in progress is
    dropped, not queued. Summary and notification failures are logged and
    never fail the sweep.
    """

    def __init__(
        self,
        store: PatternStore,
        engine: ConfidenceEngine,
        notifications: NotificationCenter,
        summarizer: Optional[IntentSummarizer] = None,
        config: Optional[RecognitionConfig] = None,
    ):
        self.store = store
        self.engine = engine
        self.notifications = notifications
        self.summarizer = summarizer
        self.config = config or RecognitionConfig()

        self._sweeping = False
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_sweeping(self) -> bool:
        return self._sweeping

    async def start(self) -> None:
        """Start the background interval loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._interval_loop())
        logger.info("recognition_scheduler_started", interval_seconds=self.config.sweep_interval_seconds)

    async def stop(self) -> None:
        """Stop the background loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("recognition_scheduler_stopped")

    async def trigger(self) -> Optional[SweepResult]:
        """
        Run a sweep now.

        Returns:
            SweepResult, or None when a sweep was already running
        """
        if self._sweeping:
            logger.info("sweep_skipped", reason="already_running")
            return None

        self._sweeping = True
        try:
            return await self._sweep()
        finally:
            self._sweeping = False

    async def _interval_loop(self) -> None:
        while self._running:
            try:
                await self.trigger()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("sweep_error")
            await asyncio.sleep(self.config.sweep_interval_seconds)

    async def _sweep(self) -> SweepResult:
        start_time = time.monotonic()
        start_cpu = time.process_time()
        result = SweepResult()

        patterns = await self.store.list_patterns()
        logger.info("sweep_started", patterns=len(patterns))

        partitions: dict[PatternType, list] = {t: [] for t in PatternType}
        for pattern in patterns:
            partitions[pattern.type].append(pattern)

        for members in partitions.values():
            if members:
                result.scored.extend(self.engine.score(members))

        await self.store.update_confidence(
            {s.pattern.id: s.confidence for s in result.scored}
        )

        for scored in result.scored:
            if scored.confidence > self.config.summary_min_confidence and self.summarizer:
                if await self._summarize(scored):
                    result.summarized.append(scored.pattern.id)

        for scored in result.ready:
            if await self._notify(scored):
                result.notified.append(scored.pattern.id)

        result.duration_ms = (time.monotonic() - start_time) * 1000
        cpu_ms = (time.process_time() - start_cpu) * 1000
        log = logger.warning if result.duration_ms > self.config.slow_sweep_seconds * 1000 else logger.info
        log(
            "sweep_completed",
            scored=len(result.scored),
            ready=len(result.ready),
            summarized=len(result.summarized),
            notified=len(result.notified),
            duration_ms=round(result.duration_ms, 1),
            cpu_ms=round(cpu_ms, 1),
        )
        return result

    async def _summarize(self, scored: ScoredPattern) -> bool:
        try:
            summaries = await self.summarizer.summarize(scored.pattern)
        except PilotError as e:
            logger.warning("intent_summary_failed", pattern_id=scored.pattern.id, error=e.message)
            return False
        except Exception as e:
            logger.exception("intent_summary_error", pattern_id=scored.pattern.id, error=str(e))
            return False

        scored.pattern.intent_summary = summaries.short
        scored.pattern.intent_summary_detailed = summaries.detailed
        return True

    async def _notify(self, scored: ScoredPattern) -> bool:
        try:
            return await self.notifications.notify_pattern(scored.pattern, scored.confidence) is not None
        except Exception as e:
            logger.exception("pattern_notification_error", pattern_id=scored.pattern.id, error=str(e))
            return False
