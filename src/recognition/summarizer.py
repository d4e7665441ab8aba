"""Cached natural-language intent summaries."""

import asyncio
import time
from typing import Awaitable, Callable, Optional

import structlog

from core.config import SummaryConfig
from core.models import Pattern
from core.store import PatternStore
from oracle.base import DecisionOracle, IntentSummaries, call_with_retries

logger = structlog.get_logger()

UNAVAILABLE_MESSAGE = "Pattern analysis temporarily unavailable. Will retry automatically."


class IntentSummarizer:
    """
    Produces short and detailed intent summaries for patterns.

    Summaries are cached on the pattern record; a cached value younger
    than the TTL is returned without consulting the oracle.
    """

    def __init__(
        self,
        store: PatternStore,
        oracle: DecisionOracle,
        config: Optional[SummaryConfig] = None,
        oracle_timeout: float = 10.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.oracle = oracle
        self.config = config or SummaryConfig()
        self.oracle_timeout = oracle_timeout
        self._sleep = sleep
        self._clock = clock

    def cached(self, pattern: Pattern) -> Optional[IntentSummaries]:
        """Cached summaries if still fresh."""
        if not (pattern.intent_summary and pattern.summary_generated_at):
            return None
        if self._clock() - pattern.summary_generated_at >= self.config.cache_ttl_seconds:
            return None
        return IntentSummaries(
            short=pattern.intent_summary,
            detailed=pattern.intent_summary_detailed or pattern.intent_summary,
        )

    async def summarize(self, pattern: Pattern) -> IntentSummaries:
        """
        Return fresh or cached summaries for ``pattern``.

        Raises:
            OracleUnavailableError: after the retry schedule is exhausted
            ValidationError: when the oracle answers with unusable text
        """
        cached = self.cached(pattern)
        if cached is not None:
            logger.debug("intent_summary_cache_hit", pattern_id=pattern.id)
            return cached

        summaries = await call_with_retries(
            lambda: self.oracle.summarize_pattern(pattern),
            delays=self.config.retry_delays_seconds,
            timeout=self.oracle_timeout,
            call="summarize_pattern",
            unavailable_message=UNAVAILABLE_MESSAGE,
            sleep=self._sleep,
        )

        await self.store.set_summaries(
            pattern.id,
            short=summaries.short,
            detailed=summaries.detailed,
            generated_at=self._clock(),
        )
        logger.info("intent_summary_generated", pattern_id=pattern.id)
        return summaries
