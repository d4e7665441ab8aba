"""Tests for manual recording sessions."""

import os
import pytest

# Add src to path
import sys
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from conftest import FakeHost
from core.config import RecordingConfig
from core.errors import ResourceLimitError
from core.events import EventType
from core.models import ClickAction, FieldDescriptor, FormAction, NavigationAction
from recording.manager import RecordingManager, RecordingStatus


class FakeClock:
    def __init__(self):
        self.now = 5000.0

    def __call__(self):
        return self.now


@pytest.fixture
def host():
    host = FakeHost()
    host.add_tab("tab-1")
    host.add_tab("tab-2")
    return host


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def manager(host, events, clock):
    return RecordingManager(host, events, RecordingConfig(max_actions=3), clock=clock)


def statuses(recorded):
    return [e.data["status"] for e in recorded if e.type == EventType.RECORDING_STATUS_CHANGED]


class TestRecordingSessions:
    """Test session lifecycle."""

    async def test_single_session_enforced(self, manager):
        """A second start is rejected and names the recording tab."""
        manager.start_recording("tab-1")

        with pytest.raises(ResourceLimitError) as exc_info:
            manager.start_recording("tab-2")

        assert exc_info.value.code == "RECORDING_ACTIVE"
        assert exc_info.value.context["tab_id"] == "tab-1"

    async def test_paused_session_still_blocks(self, manager):
        manager.start_recording("tab-1")
        manager.pause_recording("tab-1")

        with pytest.raises(ResourceLimitError):
            manager.start_recording("tab-2")

    async def test_unknown_tab(self, manager):
        with pytest.raises(ResourceLimitError) as exc_info:
            manager.start_recording("tab-404")
        assert exc_info.value.code == "TAB_NOT_FOUND"

    async def test_stop_returns_preview(self, manager, clock):
        session = manager.start_recording("tab-1")
        manager.capture_action("tab-1", NavigationAction(url="https://a.com"))
        clock.now += 42

        preview = manager.stop_recording("tab-1")

        assert preview.duration == 42
        assert preview.is_timeout is False
        assert preview.to_dict()["actions"][0]["url"] == "https://a.com"
        assert session.timeout_handle is None
        assert manager.is_recording("tab-1") is False

    async def test_preview_converts_to_workflow(self, manager):
        manager.start_recording("tab-1")
        manager.capture_action("tab-1", NavigationAction(url="https://shop.example.com/cart"))
        manager.capture_action("tab-1", FormAction(
            domain="shop.example.com",
            form_selector="#order",
            fields=[FieldDescriptor(name="qty", sanitized_value="2")],
        ))
        manager.capture_action("tab-1", ClickAction(selector="#confirm", text="Confirm"))

        workflow = manager.stop_recording("tab-1").to_workflow()

        assert workflow.start_url == "https://shop.example.com/cart"
        assert [s.action for s in workflow.steps] == ["navigate", "type", "click", "click"]
        assert workflow.steps[1].target == '#order [name="qty"]'
        assert workflow.steps[1].value == "2"
        assert workflow.steps[3].description == 'Click "Confirm"'

    async def test_stop_without_session(self, manager):
        with pytest.raises(ResourceLimitError) as exc_info:
            manager.stop_recording("tab-1")
        assert exc_info.value.code == "NO_RECORDING"

    async def test_new_session_after_stop(self, manager):
        manager.start_recording("tab-1")
        manager.stop_recording("tab-1")
        assert manager.start_recording("tab-2").tab_id == "tab-2"


class TestCapture:
    """Test action capture rules."""

    async def test_consecutive_duplicate_navigation_skipped(self, manager, recorded):
        manager.start_recording("tab-1")

        assert manager.capture_action("tab-1", NavigationAction(url="https://a.com")) is True
        assert manager.capture_action("tab-1", NavigationAction(url="https://a.com")) is False
        assert manager.capture_action("tab-1", ClickAction(selector="#go")) is True
        assert manager.capture_action("tab-1", NavigationAction(url="https://a.com")) is True

        captured = [e for e in recorded if e.type == EventType.RECORDING_ACTION_CAPTURED]
        assert [e.data["action_count"] for e in captured] == [1, 2, 3]
        assert captured[1].data["action_type"] == "click"

    async def test_paused_session_ignores_actions(self, manager):
        manager.start_recording("tab-1")
        manager.pause_recording("tab-1")

        assert manager.capture_action("tab-1", ClickAction(selector="#go")) is False

        manager.resume_recording("tab-1")
        assert manager.capture_action("tab-1", ClickAction(selector="#go")) is True

    async def test_action_cap_stops_as_timeout(self, manager, recorded):
        """Hitting the action cap force-stops and flags a timeout."""
        manager.start_recording("tab-1")
        for i in range(3):
            manager.capture_action("tab-1", NavigationAction(url=f"https://a.com/{i}"))

        kept = manager.capture_action("tab-1", FormAction(
            domain="a.com", form_selector="#f", fields=[FieldDescriptor(name="q")]
        ))

        assert kept is False
        assert manager.get_session("tab-1") is None
        assert "timeout" in statuses(recorded)
        previews = [e for e in recorded if e.type == EventType.RECORDING_TIMEOUT_PREVIEW]
        assert previews[0].data["is_timeout"] is True
        assert len(previews[0].data["actions"]) == 3

    async def test_timer_scheduled_on_start(self, manager):
        session = manager.start_recording("tab-1")
        assert session.timeout_handle is not None
        manager.handle_timeout("tab-1")
        assert session.timeout_handle is None
        assert session.status == RecordingStatus.STOPPED


class TestFocusAndCleanup:
    """Test focus-driven pause/resume and cleanup paths."""

    async def test_focus_changes(self, manager, recorded):
        manager.start_recording("tab-1")

        manager.handle_focus_change("tab-2")
        assert manager.get_session("tab-1").status == RecordingStatus.PAUSED

        manager.handle_focus_change("tab-1")
        assert manager.get_session("tab-1").status == RecordingStatus.ACTIVE
        assert statuses(recorded) == ["started", "paused", "resumed"]

    async def test_tab_destroyed(self, manager, recorded):
        manager.start_recording("tab-1")

        manager.handle_tab_destroyed("tab-1")

        assert manager.open_session() is None
        assert statuses(recorded)[-1] == "error"

    async def test_clear_stale(self, manager, clock):
        manager.start_recording("tab-1")
        clock.now += 100

        assert manager.clear_stale(max_age_seconds=600) == 0
        assert manager.clear_stale(max_age_seconds=60) == 1
        assert manager.open_session() is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
