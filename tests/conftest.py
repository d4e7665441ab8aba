"""Shared fakes and fixtures."""

import asyncio
import os
import sys
from typing import Any, Callable, Optional

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from browser.host import BrowserTab, TabHost
from core.errors import NavigationError
from core.events import EventBus
from core.store import PatternStore
from oracle.base import (
    DecisionOracle,
    IntentSummaries,
    JudgmentRequest,
    NextStep,
    NextStepRequest,
    PatternJudgment,
)


class FakeTab(BrowserTab):
    """Scriptable in-memory tab."""

    def __init__(
        self,
        tab_id: str,
        url: str = "about:blank",
        script_handler: Optional[Callable[[str, Any], Any]] = None,
        nav_errors: Optional[dict[str, str]] = None,
        log: Optional[list] = None,
    ):
        self.tab_id = tab_id
        self._url = url
        self._automation_mode = False
        self.script_handler = script_handler
        self.nav_errors = nav_errors or {}
        self.log = log if log is not None else []
        self.navigations: list[str] = []
        self.scripts: list[tuple[str, Any]] = []
        self.mode_changes: list[bool] = []
        self.page_title = "Example"

    @property
    def url(self) -> str:
        return self._url

    @property
    def automation_mode(self) -> bool:
        return self._automation_mode

    async def navigate(self, url: str) -> None:
        self.log.append(("navigate", self.tab_id, url))
        if url in self.nav_errors:
            code = self.nav_errors[url]
            raise NavigationError(f"net::{code}", url=url, code=code)
        self.navigations.append(url)
        self._url = url

    async def set_automation_mode(self, enabled: bool) -> None:
        self.log.append(("automation_mode", self.tab_id, enabled))
        self.mode_changes.append(enabled)
        self._automation_mode = enabled

    async def run_script(self, script: str, arg: Any = None) -> Any:
        self.scripts.append((script, arg))
        if self.script_handler is None:
            return {"ok": True, "found": True}
        return self.script_handler(script, arg)

    async def screenshot(self) -> bytes:
        return b"\xff\xd8fake"

    async def title(self) -> str:
        return self.page_title


class FakeHost(TabHost):
    """Tab host handing out FakeTabs."""

    def __init__(self, script_handler=None, nav_errors=None):
        self.script_handler = script_handler
        self.nav_errors = nav_errors or {}
        self.tabs: dict[str, FakeTab] = {}
        self.created: list[FakeTab] = []
        self.log: list = []

    def add_tab(self, tab_id: str = "tab-user", url: str = "about:blank") -> FakeTab:
        tab = FakeTab(tab_id, url, self.script_handler, self.nav_errors, self.log)
        self.tabs[tab_id] = tab
        return tab

    async def create_tab(self, url: Optional[str] = None) -> FakeTab:
        tab = self.add_tab(f"tab-{len(self.created) + 1}")
        self.created.append(tab)
        if url:
            await tab.navigate(url)
        return tab

    def get_tab(self, tab_id: str) -> Optional[FakeTab]:
        return self.tabs.get(tab_id)


class FakeOracle(DecisionOracle):
    """
    Oracle returning queued answers.

    A queued item may be a response object, an exception instance (raised)
    or a coroutine function (awaited).
    """

    def __init__(self, steps=None, summaries=None, judgments=None):
        self.steps = list(steps or [])
        self.summaries = list(summaries or [])
        self.judgments = list(judgments or [])
        self.step_requests: list[NextStepRequest] = []
        self.summary_calls = 0
        self.judgment_calls = 0

    async def _answer(self, queue):
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return await item()
        return item

    async def judge_pattern(self, request: JudgmentRequest) -> PatternJudgment:
        self.judgment_calls += 1
        return await self._answer(self.judgments)

    async def summarize_pattern(self, pattern) -> IntentSummaries:
        self.summary_calls += 1
        return await self._answer(self.summaries)

    async def decide_next_step(self, request: NextStepRequest) -> NextStep:
        self.step_requests.append(request)
        return await self._answer(self.steps)


class SleepRecorder:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self, log: Optional[list] = None):
        self.calls: list[float] = []
        self.log = log

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.log is not None:
            self.log.append(("sleep", seconds))
        await asyncio.sleep(0)


@pytest.fixture
async def store(tmp_path):
    """Initialized store in a temp directory."""
    pattern_store = PatternStore(str(tmp_path / "patterns.db"))
    await pattern_store.initialize()
    yield pattern_store
    await pattern_store.close()


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def recorded(events):
    """Every emitted event, in order."""
    seen = []
    events.subscribe(seen.append)
    return seen
