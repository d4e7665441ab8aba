"""Tests for oracle-guided replay."""

import asyncio
import itertools
import os
import pytest

# Add src to path
import sys
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from conftest import FakeHost, FakeOracle, SleepRecorder
from core.config import AdaptiveConfig
from core.errors import OracleUnavailableError, ResourceLimitError, ValidationError
from core.events import EventType
from execution.adaptive import GUIDANCE_UNAVAILABLE, AdaptiveReplayEngine, HistoryEntry, is_repeating
from execution.page import (
    CLICK_SCRIPT,
    EXTRACT_SCRIPT,
    INTERACTIVE_ELEMENTS_SCRIPT,
    PRESS_SCRIPT,
    READY_STATE_SCRIPT,
    TYPE_SCRIPT,
)
from execution.state import ExecutionRegistry, ExecutionStatus
from oracle.base import NextStep

CLICKABLE = {"#go", "#next", "#a", "#b", "#c", "#ok"}


def page_scripts(script, arg):
    if script == INTERACTIVE_ELEMENTS_SCRIPT:
        return [
            {"index": 0, "tag": "button", "id": "go", "text": "Go", "classes": []},
            {"index": 1, "tag": "a", "id": "", "text": "", "classes": []},
        ]
    if script == CLICK_SCRIPT:
        if arg in CLICKABLE:
            return {"found": True}
        return {"found": False, "buttons": 2, "links": 5}
    if script == TYPE_SCRIPT:
        return {"found": True}
    if script == PRESS_SCRIPT:
        return {"ok": True}
    if script == READY_STATE_SCRIPT:
        return "complete"
    if script == EXTRACT_SCRIPT:
        return "Quarterly results announced"
    return None


def step(action, target=None, value=None, **kwargs):
    return NextStep(nextAction=action, target=target, value=value, **kwargs)


COMPLETE = step("complete", isComplete=True, reasoning="Done")


@pytest.fixture
def host():
    return FakeHost(script_handler=page_scripts)


@pytest.fixture
def tab(host):
    return host.add_tab("tab-user", url="https://start.example.com")


@pytest.fixture
def registry():
    return ExecutionRegistry()


@pytest.fixture
def sleep():
    return SleepRecorder()


def make_engine(oracle, events, registry, sleep, **config):
    return AdaptiveReplayEngine(oracle, events, registry, AdaptiveConfig(**config), sleep=sleep)


class TestLoopDetection:
    """Test the repeating-halves check."""

    def test_identical_halves(self):
        history = [HistoryEntry(action="click", description="", target=t) for t in "abcabc"]
        assert is_repeating(history, 6) is True

    def test_different_halves(self):
        history = [HistoryEntry(action="click", description="", target=t) for t in "abcabd"]
        assert is_repeating(history, 6) is False

    def test_short_history(self):
        history = [HistoryEntry(action="click", description="", target="a")] * 5
        assert is_repeating(history, 6) is False


class TestAdaptiveReplay:
    """Test the adaptive step loop."""

    async def test_completes_when_oracle_says_done(self, tab, events, registry, sleep, recorded):
        oracle = FakeOracle(steps=[step("click", "#go", reasoning="Open it"), COMPLETE])
        engine = make_engine(oracle, events, registry, sleep)

        result = await engine.run(tab, "Checking the news")

        assert result.status == ExecutionStatus.COMPLETED
        assert result.steps_executed == 1
        assert tab.mode_changes == [True, False]

        second = oracle.step_requests[1]
        assert second.intent == "Checking the news"
        assert second.history[0]["action"] == "click"
        assert second.history[0]["target"] == "#go"
        assert second.elements == [{"tag": "button", "selector": "#go", "label": "Go", "text": "Go"}]

        progress = [e for e in recorded if e.type == EventType.EXECUTION_PROGRESS]
        assert progress[0].data["screenshot"].startswith("data:image/jpeg;base64,")
        assert progress[-1].data["action"] == "complete"
        assert any(e.type == EventType.EXECUTION_COMPLETED for e in recorded)

    async def test_repeating_actions_force_complete(self, tab, events, registry, sleep):
        """A repeating action cycle force-completes instead of reaching the cap."""
        cycle = itertools.cycle(["#a", "#b", "#c"])

        async def next_click():
            return step("click", next(cycle))

        oracle = FakeOracle(steps=[next_click])
        engine = make_engine(oracle, events, registry, sleep)

        result = await engine.run(tab, "Clicking around")

        assert result.status == ExecutionStatus.COMPLETED
        assert result.steps_executed == 11
        assert len(oracle.step_requests) == 11

    async def test_three_consecutive_failures_abort(self, tab, events, registry, sleep, recorded):
        oracle = FakeOracle(steps=[step("click", "#missing")])
        engine = make_engine(oracle, events, registry, sleep)

        result = await engine.run(tab, "Clicking a ghost")

        assert result.status == ExecutionStatus.FAILED
        assert result.error.message == (
            "Action failed after 3 attempts: Element not found: #missing. Page has 2 buttons, 5 links."
        )
        assert len(oracle.step_requests) == 3
        assert oracle.step_requests[1].last_error.startswith("Element not found: #missing")
        assert oracle.step_requests[1].attempt == 1
        assert tab.automation_mode is False
        assert registry.active() == []
        assert any(e.type == EventType.EXECUTION_ERROR for e in recorded)

    async def test_success_resets_failure_count(self, tab, events, registry, sleep):
        oracle = FakeOracle(steps=[
            step("click", "#bad"),
            step("click", "#bad"),
            step("click", "#ok"),
            step("click", "#bad"),
            step("click", "#bad"),
            COMPLETE,
        ])
        engine = make_engine(oracle, events, registry, sleep)

        result = await engine.run(tab, "Recovering")

        assert result.status == ExecutionStatus.COMPLETED
        assert result.steps_executed == 3
        assert oracle.step_requests[3].last_error is None

    async def test_oracle_unavailable(self, tab, events, registry, sleep):
        """One automatic retry, then a guidance-unavailable failure."""
        oracle = FakeOracle(steps=[OracleUnavailableError("connection refused")])
        engine = make_engine(oracle, events, registry, sleep)

        result = await engine.run(tab, "Anything")

        assert result.status == ExecutionStatus.FAILED
        assert result.error.message == GUIDANCE_UNAVAILABLE
        assert len(oracle.step_requests) == 2
        # settle grace before the first decision, then the single retry delay
        assert sleep.calls == [0.5, 2.0]
        assert tab.automation_mode is False

    async def test_oracle_timeout(self, tab, events, registry, sleep):
        async def slow():
            await asyncio.sleep(0.2)
            return COMPLETE

        oracle = FakeOracle(steps=[slow])
        engine = make_engine(oracle, events, registry, sleep, oracle_timeout_seconds=0.01)

        result = await engine.run(tab, "Waiting forever")

        assert result.status == ExecutionStatus.FAILED
        assert result.error.message == GUIDANCE_UNAVAILABLE
        await asyncio.sleep(0.25)

    async def test_malformed_decision_aborts(self, tab, events, registry, sleep):
        """Schema failures are not retried."""
        oracle = FakeOracle(steps=[ValidationError("Oracle response failed validation", field="NextStep")])
        engine = make_engine(oracle, events, registry, sleep)

        result = await engine.run(tab, "Anything")

        assert result.status == ExecutionStatus.FAILED
        assert len(oracle.step_requests) == 1

    async def test_step_cap(self, tab, events, registry, sleep):
        oracle = FakeOracle(steps=[step("wait", value="10")])
        engine = make_engine(oracle, events, registry, sleep, max_steps=3)

        result = await engine.run(tab, "Waiting")

        assert result.status == ExecutionStatus.FAILED
        assert result.error.message == "Maximum steps (3) reached without completion"

    async def test_tab_in_use_rejected(self, tab, events, registry, sleep):
        await tab.set_automation_mode(True)
        engine = make_engine(FakeOracle(steps=[COMPLETE]), events, registry, sleep)

        with pytest.raises(ResourceLimitError) as exc_info:
            await engine.run(tab, "Anything")

        assert exc_info.value.code == "TAB_IN_USE"

    async def test_cancel_mid_run(self, tab, events, registry, sleep, recorded):
        oracle = FakeOracle(steps=[step("click", "#go")])
        engine = make_engine(oracle, events, registry, sleep)

        def cancel_after_two(event):
            if event.data.get("current") == 2:
                registry.cancel("execution-adaptive")

        events.subscribe(cancel_after_two, types={EventType.EXECUTION_PROGRESS})

        result = await engine.run(tab, "Clicking", execution_id="execution-adaptive")

        assert result.status == ExecutionStatus.CANCELLED
        assert result.error.message == "Cancelled at step 2"
        assert registry.get("execution-adaptive") is None
        assert tab.automation_mode is False
        cancelled = [e for e in recorded if e.type == EventType.EXECUTION_CANCELLED]
        assert cancelled[0].data["stopped_at"] == 2


class TestStartPage:
    """Test the page the run starts from."""

    async def test_opens_start_url_and_settles_first(self, host, events, registry, sleep):
        """The start page loads and settles before the oracle is asked anything."""
        tab = host.add_tab("tab-fresh")
        oracle = FakeOracle(steps=[COMPLETE])
        engine = make_engine(oracle, events, registry, sleep)

        result = await engine.run(tab, "Reading", start_url="https://news.example.com")

        assert result.status == ExecutionStatus.COMPLETED
        assert tab.navigations == ["https://news.example.com"]
        assert tab.scripts[0][0] == READY_STATE_SCRIPT
        assert sleep.calls[0] == 0.5

    async def test_decision_request_carries_screenshot(self, tab, events, registry, sleep):
        oracle = FakeOracle(steps=[COMPLETE])
        engine = make_engine(oracle, events, registry, sleep)

        await engine.run(tab, "Reading")

        assert oracle.step_requests[0].screenshot.startswith("data:image/jpeg;base64,")

    async def test_unreachable_start_url_fails_run(self, events, registry, sleep, recorded):
        host = FakeHost(script_handler=page_scripts, nav_errors={"https://gone.example.com": "ERR_NAME_NOT_RESOLVED"})
        tab = host.add_tab("tab-fresh")
        oracle = FakeOracle(steps=[COMPLETE])
        engine = make_engine(oracle, events, registry, sleep)

        result = await engine.run(tab, "Reading", start_url="https://gone.example.com")

        assert result.status == ExecutionStatus.FAILED
        assert result.error.message.startswith("Failed to navigate to https://gone.example.com")
        assert oracle.step_requests == []
        assert tab.automation_mode is False
        assert any(e.type == EventType.EXECUTION_ERROR for e in recorded)


class TestActions:
    """Test individual action handling."""

    async def test_type_strips_script_tags(self, tab, events, registry, sleep):
        oracle = FakeOracle(steps=[step("type", "#q", "<script>alert(1)</script>weather"), COMPLETE])
        engine = make_engine(oracle, events, registry, sleep)

        await engine.run(tab, "Searching")

        typed = [arg for script, arg in tab.scripts if script == TYPE_SCRIPT]
        assert typed == [{"selector": "#q", "value": "weather"}]

    async def test_navigate_and_press(self, tab, events, registry, sleep):
        oracle = FakeOracle(steps=[
            step("navigate", "https://news.example.com"),
            step("press"),
            COMPLETE,
        ])
        engine = make_engine(oracle, events, registry, sleep)

        result = await engine.run(tab, "Reading")

        assert result.steps_executed == 2
        assert tab.navigations == ["https://news.example.com"]
        pressed = [arg for script, arg in tab.scripts if script == PRESS_SCRIPT]
        assert pressed == [{"key": "Enter"}]

    async def test_wait_uses_milliseconds(self, tab, events, registry, sleep):
        oracle = FakeOracle(steps=[step("wait", value=1500), COMPLETE])
        engine = make_engine(oracle, events, registry, sleep)

        await engine.run(tab, "Waiting")

        assert 1.5 in sleep.calls

    async def test_copy_workflow_auto_extracts(self, tab, events, registry, sleep):
        """Copy workflows carry extracted headings into later oracle requests."""
        oracle = FakeOracle(steps=[step("click", "#next"), COMPLETE])
        engine = make_engine(oracle, events, registry, sleep)

        await engine.run(tab, "Copying headlines", workflow={"kind": "copy-paste", "pairs": []})

        assert oracle.step_requests[1].extracted_contents == ["Quarterly results announced"]

    async def test_click_without_target_counts_as_failure(self, tab, events, registry, sleep):
        oracle = FakeOracle(steps=[step("click"), COMPLETE])
        engine = make_engine(oracle, events, registry, sleep)

        result = await engine.run(tab, "Clicking")

        assert result.status == ExecutionStatus.COMPLETED
        assert oracle.step_requests[1].last_error == "click requires a target"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
