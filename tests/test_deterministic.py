"""Tests for deterministic replay."""

import os
import time
import pytest

# Add src to path
import sys
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from conftest import FakeHost, SleepRecorder
from core.errors import ResourceLimitError, ValidationError
from core.events import EventType
from core.models import (
    CopyPastePayload,
    FieldDescriptor,
    FormPayload,
    NavigationPayload,
    NavigationStep,
)
from execution.deterministic import FORM_CHANGED_MESSAGE, DeterministicReplayEngine
from execution.page import FILL_FIELD_SCRIPT, SUBMIT_FORM_SCRIPT
from execution.state import ExecutionRegistry, ExecutionStatus

URLS = ["https://mail.example.com/inbox", "https://news.example.org/today", "https://cal.example.net/week"]


def navigation(urls):
    return NavigationPayload(sequence=[
        NavigationStep(url=u, timestamp=time.time(), tab_id="tab-user") for u in urls
    ])


def order_form(*names):
    return FormPayload(
        domain="shop.example.com",
        form_selector="#order",
        fields=[FieldDescriptor(name=n, value_pattern="email" if n == "email" else "text") for n in names],
    )


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def registry():
    return ExecutionRegistry()


@pytest.fixture
def sleep(host):
    return SleepRecorder(log=host.log)


@pytest.fixture
def engine(host, events, registry, sleep):
    return DeterministicReplayEngine(host, events, registry, sleep=sleep)


class TestNavigationReplay:
    """Test navigation replay."""

    async def test_three_urls_three_navigations(self, engine, host, recorded):
        """Exactly one navigate per URL, each followed by a settle of at least 1s."""
        result = await engine.run(navigation(URLS))

        assert result.status == ExecutionStatus.COMPLETED
        assert result.steps_executed == 3
        tab = host.created[0]
        assert tab.navigations == URLS

        navigate_positions = [i for i, entry in enumerate(host.log) if entry[0] == "navigate"]
        assert len(navigate_positions) == 3
        for start, end in zip(navigate_positions, navigate_positions[1:]):
            between = [e for e in host.log[start:end] if e[0] == "sleep"]
            assert sum(e[1] for e in between) >= 1.0

        progress = [e.data["current"] for e in recorded if e.type == EventType.EXECUTION_PROGRESS]
        assert progress == [1, 2, 3]

    async def test_automation_mode_off_before_and_after(self, engine, host):
        """Automation mode wraps exactly the replayed steps."""
        await engine.run(navigation(URLS))

        tab = host.created[0]
        modes = [e for e in host.log if e[0] == "automation_mode"]
        assert tab.mode_changes == [True, False]
        assert host.log.index(modes[0]) < host.log.index(("navigate", tab.tab_id, URLS[0]))
        assert host.log.index(modes[-1]) > host.log.index(("navigate", tab.tab_id, URLS[-1]))
        assert tab.automation_mode is False

    async def test_replays_one_iteration(self, engine, host):
        """A recorded history of two passes replays a single pass per iteration."""
        result = await engine.run(navigation(URLS * 2), item_count=2, iterate=True)

        assert result.iterations_completed == 2
        assert result.total_steps == 6
        assert host.created[0].navigations == URLS * 2
        assert len(host.created) == 1

    async def test_single_run_replays_full_sequence(self, engine, host):
        """A sequence that returns to its first host is replayed in full."""
        urls = ["https://a.example.com/1", "https://b.example.com/x", "https://a.example.com/2"]

        result = await engine.run(navigation(urls))

        assert result.total_steps == 3
        assert host.created[0].navigations == urls

    async def test_reuses_supplied_tab(self, engine, host):
        tab = host.add_tab("tab-user")

        await engine.run(navigation(URLS), tab=tab)

        assert host.created == []
        assert tab.navigations == URLS
        assert tab.automation_mode is False

    async def test_tab_in_use_rejected(self, engine, host):
        """A tab already in automation mode cannot be targeted again."""
        tab = host.add_tab("tab-busy")
        await tab.set_automation_mode(True)

        with pytest.raises(ResourceLimitError) as exc_info:
            await engine.run(navigation(URLS), tab=tab)

        assert exc_info.value.code == "TAB_IN_USE"

    @pytest.mark.parametrize("code,message", [
        ("ERR_NAME_NOT_RESOLVED", "Page not found. Check if URL changed."),
        ("ERR_CONNECTION_TIMED_OUT", "Page took too long to load. Try again later."),
    ])
    async def test_navigation_errors_mapped(self, events, registry, sleep, recorded, code, message):
        host = FakeHost(nav_errors={URLS[1]: code})
        engine = DeterministicReplayEngine(host, events, registry, sleep=sleep)

        result = await engine.run(navigation(URLS))

        assert result.status == ExecutionStatus.FAILED
        assert result.error.message == message
        assert result.steps_executed == 1
        assert host.created[0].automation_mode is False
        errors = [e for e in recorded if e.type == EventType.EXECUTION_ERROR]
        assert errors[0].data["error"] == message

    async def test_other_navigation_error(self, events, registry, sleep):
        host = FakeHost(nav_errors={URLS[0]: "ERR_ABORTED"})
        engine = DeterministicReplayEngine(host, events, registry, sleep=sleep)

        result = await engine.run(navigation(URLS))

        assert result.error.message.startswith(f"Failed to navigate to {URLS[0]}")


class TestCancellation:
    """Test cooperative cancellation."""

    async def test_cancel_between_iterations(self, engine, host, events, registry, recorded):
        """Cancelling during iteration 2 of 5 halts before iteration 3 starts."""
        urls = URLS[:2]

        def cancel_at_end_of_second(event):
            if event.data.get("iteration") == 2 and event.data.get("current") == 4:
                registry.cancel("execution-test")

        events.subscribe(cancel_at_end_of_second, types={EventType.EXECUTION_PROGRESS})

        result = await engine.run(navigation(urls), item_count=5, execution_id="execution-test")

        assert result.status == ExecutionStatus.CANCELLED
        assert result.iterations_completed == 2
        assert host.created[0].navigations == urls * 2
        assert registry.get("execution-test") is None
        assert host.created[0].automation_mode is False

        iterations = {e.data["iteration"] for e in recorded if e.type == EventType.EXECUTION_PROGRESS}
        assert 3 not in iterations
        cancelled = [e for e in recorded if e.type == EventType.EXECUTION_CANCELLED]
        assert cancelled[0].data["stopped_at"] == 4

    async def test_registry_cleared_after_completion(self, engine, registry):
        await engine.run(navigation(URLS), execution_id="execution-done")
        assert registry.get("execution-done") is None
        assert registry.active() == []


class TestFormReplay:
    """Test form replay."""

    async def test_password_field_never_filled(self, engine, host):
        """Password-like fields are skipped even if present in the payload."""
        result = await engine.run(order_form("email", "password"))

        assert result.status == ExecutionStatus.COMPLETED
        assert result.total_steps == 3
        tab = host.created[0]
        fills = [arg for script, arg in tab.scripts if script == FILL_FIELD_SCRIPT]
        assert [f["name"] for f in fills] == ["email"]
        assert fills[0]["value"] == "user@example.com"
        assert any(script == SUBMIT_FORM_SCRIPT for script, _ in tab.scripts)
        assert tab.navigations == ["https://shop.example.com"]

    async def test_fresh_tab_per_iteration(self, engine, host):
        result = await engine.run(order_form("email", "name"), item_count=2)

        assert result.iterations_completed == 2
        assert len(host.created) == 2
        assert all(not tab.automation_mode for tab in host.created)

    async def test_sanitized_value_preferred(self, engine, host):
        payload = FormPayload(
            domain="shop.example.com",
            form_selector="#order",
            fields=[FieldDescriptor(name="qty", value_pattern="number", sanitized_value="3")],
        )

        await engine.run(payload)

        fills = [arg for script, arg in host.created[0].scripts if script == FILL_FIELD_SCRIPT]
        assert fills[0]["value"] == "3"

    async def test_missing_form_fails(self, events, registry, sleep):
        host = FakeHost(script_handler=lambda script, arg: {"ok": False, "error": "Field not found: email"})
        engine = DeterministicReplayEngine(host, events, registry, sleep=sleep)

        result = await engine.run(order_form("email"))

        assert result.status == ExecutionStatus.FAILED
        assert result.error.message == FORM_CHANGED_MESSAGE
        assert host.created[0].automation_mode is False


class TestValidation:
    """Test up-front rejection."""

    @pytest.mark.parametrize("count", [0, 101])
    async def test_item_count_bounds(self, engine, count):
        with pytest.raises(ValidationError):
            await engine.run(navigation(URLS), item_count=count)

    async def test_copy_paste_not_literal(self, engine):
        with pytest.raises(ValidationError):
            await engine.run(CopyPastePayload())


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
