"""Tests for recognition sweeps, summaries and notifications."""

import asyncio
import os
import time
import pytest

# Add src to path
import sys
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from conftest import FakeOracle, SleepRecorder
from core.errors import OracleUnavailableError
from core.events import EventType
from core.models import FieldDescriptor, FormPayload, Pattern, PatternType
from oracle.base import IntentSummaries
from recognition.confidence import ConfidenceEngine
from recognition.notifications import NotificationCenter
from recognition.scheduler import PatternRecognitionScheduler
from recognition.summarizer import UNAVAILABLE_MESSAGE, IntentSummarizer


def form_pattern(pattern_id, occurrences, domain="shop.example.com"):
    return Pattern(
        id=pattern_id,
        type=PatternType.FORM,
        payload=FormPayload(
            domain=domain,
            form_selector="#order",
            fields=[FieldDescriptor(name="email", value_pattern="email")],
        ),
        occurrence_count=occurrences,
    )


def make_scheduler(store, events, summarizer=None):
    return PatternRecognitionScheduler(
        store,
        ConfidenceEngine(),
        NotificationCenter(store, events),
        summarizer=summarizer,
    )


class TestPatternRecognitionScheduler:
    """Test sweep behaviour."""

    async def test_concurrent_triggers_run_one_sweep(self, store, events):
        """A trigger during an in-flight sweep is dropped."""
        await store.put_pattern(form_pattern("f1", 3))
        scheduler = make_scheduler(store, events)

        first, second = await asyncio.gather(scheduler.trigger(), scheduler.trigger())

        results = [r for r in (first, second) if r is not None]
        assert len(results) == 1
        assert not scheduler.is_sweeping

    async def test_sweep_persists_confidence(self, store, events):
        await store.put_pattern(form_pattern("f1", 3))
        scheduler = make_scheduler(store, events)

        result = await scheduler.trigger()

        assert result.scored[0].confidence == 60.0
        assert (await store.get_pattern("f1")).confidence == 60.0

    async def test_notification_deduplicated(self, store, events, recorded):
        """A pattern with an active notification is not notified again."""
        await store.put_pattern(form_pattern("f1", 3))
        scheduler = make_scheduler(store, events)

        first = await scheduler.trigger()
        second = await scheduler.trigger()

        assert first.notified == ["f1"]
        assert second.notified == []
        detected = [e for e in recorded if e.type == EventType.PATTERN_DETECTED]
        assert len(detected) == 1
        assert detected[0].data["message"] == "Form pattern detected with 60% confidence"
        assert len(await store.list_notifications()) == 1

    async def test_single_occurrence_never_notified(self, store, events):
        await store.put_pattern(form_pattern("f1", 1))
        scheduler = make_scheduler(store, events)

        result = await scheduler.trigger()

        assert result.notified == []

    async def test_summary_failure_does_not_fail_sweep(self, store, events):
        """Oracle outage is logged; the notification still goes out."""
        await store.put_pattern(form_pattern("f1", 4))
        oracle = FakeOracle(summaries=[OracleUnavailableError("down")])
        sleep = SleepRecorder()
        summarizer = IntentSummarizer(store, oracle, sleep=sleep)
        scheduler = make_scheduler(store, events, summarizer)

        result = await scheduler.trigger()

        assert result.summarized == []
        assert result.notified == ["f1"]
        assert oracle.summary_calls == 4
        assert sleep.calls == [2.0, 4.0, 8.0]

    async def test_summary_used_in_notification(self, store, events, recorded):
        """Fresh summaries are stored and shown in the notification."""
        await store.put_pattern(form_pattern("f1", 4))
        oracle = FakeOracle(summaries=[IntentSummaries(
            short="Ordering supplies from the shop",
            detailed="You submit the same order form every week.",
        )])
        scheduler = make_scheduler(store, events, IntentSummarizer(store, oracle))

        result = await scheduler.trigger()

        assert result.summarized == ["f1"]
        stored = await store.get_pattern("f1")
        assert stored.intent_summary == "Ordering supplies from the shop"
        detected = [e for e in recorded if e.type == EventType.PATTERN_DETECTED]
        assert detected[0].data["message"] == "Ordering supplies from the shop"

    async def test_start_and_stop(self, store, events):
        scheduler = make_scheduler(store, events)
        await scheduler.start()
        await asyncio.sleep(0)
        await scheduler.stop()
        assert scheduler._task is None


class TestIntentSummarizer:
    """Test summary caching and retries."""

    async def test_cache_hit_skips_oracle(self, store):
        oracle = FakeOracle(summaries=[IntentSummaries(short="s", detailed="d")])
        summarizer = IntentSummarizer(store, oracle)
        pattern = form_pattern("f1", 2)
        pattern.intent_summary = "Cached"
        pattern.summary_generated_at = time.time()

        summaries = await summarizer.summarize(pattern)

        assert summaries.short == "Cached"
        assert oracle.summary_calls == 0

    async def test_expired_cache_refreshes(self, store):
        oracle = FakeOracle(summaries=[IntentSummaries(short="Fresh", detailed="d")])
        summarizer = IntentSummarizer(store, oracle)
        await store.put_pattern(form_pattern("f1", 2))
        pattern = await store.get_pattern("f1")
        pattern.intent_summary = "Old"
        pattern.summary_generated_at = time.time() - 7200

        summaries = await summarizer.summarize(pattern)

        assert summaries.short == "Fresh"
        assert oracle.summary_calls == 1

    async def test_exhausted_retries_raise_unavailable(self, store):
        """No fabricated summary after retries run out."""
        oracle = FakeOracle(summaries=[OracleUnavailableError("down")])
        summarizer = IntentSummarizer(store, oracle, sleep=SleepRecorder())

        with pytest.raises(OracleUnavailableError) as exc_info:
            await summarizer.summarize(form_pattern("f1", 2))

        assert exc_info.value.message == UNAVAILABLE_MESSAGE


class TestNotificationCenter:
    """Test notification de-duplication and dismissal."""

    async def test_dismiss_allows_new_notification(self, store, events):
        center = NotificationCenter(store, events)
        pattern = form_pattern("f1", 3)

        first = await center.notify_pattern(pattern, 60)
        assert await center.notify_pattern(pattern, 60) is None

        await center.dismiss(first.id)
        assert await center.has_active_for_pattern("f1") is False
        assert await center.notify_pattern(pattern, 60) is not None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
