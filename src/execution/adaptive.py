"""Oracle-guided replay: decide each next action from the live page."""

import asyncio
import base64
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import structlog

from browser.host import BrowserTab
from core.config import AdaptiveConfig
from core.errors import (
    ErrorSeverity,
    ExecutionError,
    NavigationError,
    PilotError,
    ResourceLimitError,
    TargetNotFoundError,
    ValidationError,
)
from core.events import EventBus, EventType
from execution.page import (
    CLICK_SCRIPT,
    EXTRACT_SCRIPT,
    PRESS_SCRIPT,
    READY_STATE_SCRIPT,
    TYPE_SCRIPT,
    capture_page_state,
    sanitize_input,
)
from execution.state import (
    ExecutionCancelled,
    ExecutionRegistry,
    ExecutionResult,
    ExecutionState,
    ExecutionStatus,
)
from oracle.base import DecisionOracle, NextStep, NextStepRequest, call_with_retries

logger = structlog.get_logger()

GUIDANCE_UNAVAILABLE = "Automation paused - AI guidance unavailable. Please retry."
COPY_ACTIONS = {"copy", "extract", "copy-paste"}


@dataclass
class HistoryEntry:
    """One executed adaptive step."""
    action: str
    description: str
    target: Optional[str] = None
    extracted_content: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    def signature(self) -> tuple[str, Optional[str]]:
        return (self.action, self.target)

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "target": self.target,
            "description": self.description,
            "extracted_content": self.extracted_content,
            "timestamp": self.timestamp,
        }


def is_repeating(history: list[HistoryEntry], window: int) -> bool:
    """True when the last ``window`` actions split into two identical halves."""
    if len(history) < window:
        return False
    recent = [entry.signature() for entry in history[-window:]]
    half = window // 2
    return recent[:half] == recent[half:]


def implies_copy(workflow: dict[str, Any]) -> bool:
    """Whether the workflow reference includes a copy or extract step."""
    if workflow.get("kind") == "copy-paste":
        return True
    return any(
        str(step.get("action", "")).lower() in COPY_ACTIONS
        for step in workflow.get("steps") or []
        if isinstance(step, dict)
    )


class AdaptiveReplayEngine:
    """
    Step loop driven by the decision oracle.

    Features:
    - Page snapshot (title, URL, ranked interactive elements) each step
    - Oracle calls timeout-guarded with one automatic retry
    - Failed actions fed back to the oracle for self-correction, bounded
      by consecutive failures
    - Loop defense once a minimum number of steps has run
    - Hard step cap
    """

    def __init__(
        self,
        oracle: DecisionOracle,
        events: EventBus,
        registry: ExecutionRegistry,
        config: Optional[AdaptiveConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.oracle = oracle
        self.events = events
        self.registry = registry
        self.config = config or AdaptiveConfig()
        self._sleep = sleep

    async def run(
        self,
        tab: BrowserTab,
        intent: str,
        workflow: Optional[dict[str, Any]] = None,
        execution_id: Optional[str] = None,
        start_url: Optional[str] = None,
    ) -> ExecutionResult:
        """
        Drive ``tab`` toward ``intent``.

        Args:
            tab: Tab to control; must not already be automation-controlled
            intent: Natural-language summary of the goal
            workflow: Illustrative reference steps (not replayed literally)
            execution_id: Caller-chosen id (generated when omitted)
            start_url: Page to open before the first decision

        Raises:
            ResourceLimitError: ``tab`` is already automation-controlled
        """
        if tab.automation_mode or self.registry.tab_in_use(tab.tab_id):
            raise ResourceLimitError(
                "Tab is already under automation control",
                code="TAB_IN_USE",
                context={"tab_id": tab.tab_id},
            )

        workflow = workflow or {}
        state = self.registry.create("adaptive", self.config.max_steps, execution_id=execution_id)
        state.tab_id = tab.tab_id
        start_time = time.monotonic()
        history: list[HistoryEntry] = []

        self.events.emit(
            EventType.EXECUTION_STARTED,
            execution_id=state.execution_id,
            pattern_type="adaptive",
            total_steps=state.total_steps,
        )
        logger.info("adaptive_replay_started", execution_id=state.execution_id, intent=intent)

        try:
            await tab.set_automation_mode(True)
            if start_url:
                await self._open(tab, start_url)
            await self._wait_for_settle(tab)
            reason = await self._loop(tab, state, intent, workflow, history)
            await self._release(tab)
            self.events.emit(
                EventType.EXECUTION_COMPLETED,
                execution_id=state.execution_id,
                steps_executed=state.current_step,
                reason=reason,
            )
            logger.info(
                "adaptive_replay_completed",
                execution_id=state.execution_id,
                steps=state.current_step,
                reason=reason,
            )
            return self._result(state, ExecutionStatus.COMPLETED, start_time)

        except ExecutionCancelled:
            await self._release(tab)
            message = f"Cancelled at step {state.current_step}"
            self.events.emit(
                EventType.EXECUTION_CANCELLED,
                execution_id=state.execution_id,
                stopped_at=state.current_step,
                total_steps=state.total_steps,
                message=message,
            )
            logger.info("adaptive_replay_cancelled", execution_id=state.execution_id, step=state.current_step)
            return self._result(
                state,
                ExecutionStatus.CANCELLED,
                start_time,
                ExecutionError(message, execution_id=state.execution_id, step=state.current_step,
                               severity=ErrorSeverity.LOW, retryable=False),
            )

        except Exception as e:
            error = e if isinstance(e, PilotError) else ExecutionError(str(e), execution_id=state.execution_id)
            error.context.setdefault("execution_id", state.execution_id)
            await self._release(tab)
            self.events.emit(
                EventType.EXECUTION_ERROR,
                execution_id=state.execution_id,
                step=state.current_step,
                error=error.message,
            )
            logger.warning("adaptive_replay_failed", execution_id=state.execution_id, error=error.message)
            return self._result(state, ExecutionStatus.FAILED, start_time, error)

        finally:
            self.registry.remove(state.execution_id)

    async def _loop(
        self,
        tab: BrowserTab,
        state: ExecutionState,
        intent: str,
        workflow: dict[str, Any],
        history: list[HistoryEntry],
    ) -> str:
        """Run steps until completion; returns the completion reason."""
        consecutive_errors = 0
        last_error: Optional[str] = None
        step = 0

        while step < self.config.max_steps:
            self._checkpoint(state)

            if step > self.config.loop_check_after_steps and is_repeating(history, self.config.loop_window):
                logger.warning(
                    "adaptive_loop_detected",
                    execution_id=state.execution_id,
                    actions=[e.action for e in history[-self.config.loop_window:]],
                )
                self._progress(state, step, "complete",
                               "Auto-completed: detected repeating action pattern")
                return "loop_detected"

            step += 1
            page = await capture_page_state(tab, self.config.max_elements)
            request = NextStepRequest(
                intent=intent,
                workflow_reference=workflow,
                page_title=page.title,
                page_url=page.url,
                elements=[el.to_dict() for el in page.elements],
                history=[e.to_dict() for e in history[-self.config.history_window:]],
                extracted_contents=[e.extracted_content for e in history if e.extracted_content],
                last_error=last_error,
                attempt=consecutive_errors,
                max_attempts=self.config.max_consecutive_errors,
                screenshot=await self._thumbnail(tab),
            )
            decision = await self._decide(request)
            self._checkpoint(state)

            if decision.finishes:
                self._progress(state, step, "complete", decision.reasoning or "Workflow complete")
                return "oracle_complete"

            try:
                description, extracted = await self._perform(tab, decision)
            except ExecutionCancelled:
                raise
            except Exception as e:
                consecutive_errors += 1
                last_error = e.message if isinstance(e, PilotError) else str(e)
                logger.warning(
                    "adaptive_action_failed",
                    execution_id=state.execution_id,
                    step=step,
                    action=decision.next_action,
                    attempt=consecutive_errors,
                    error=last_error,
                )
                if consecutive_errors >= self.config.max_consecutive_errors:
                    raise ExecutionError(
                        f"Action failed after {consecutive_errors} attempts: {last_error}",
                        execution_id=state.execution_id,
                        step=step,
                        retryable=False,
                    )
                continue

            consecutive_errors = 0
            last_error = None
            await self._wait_for_settle(tab)

            if extracted is None and implies_copy(workflow):
                extracted = await self._extract(tab)

            history.append(HistoryEntry(
                action=decision.next_action,
                description=description,
                target=decision.target,
                extracted_content=extracted,
            ))
            self.registry.advance(state.execution_id, step)
            self._progress(
                state,
                step,
                decision.next_action,
                description,
                reasoning=decision.reasoning,
                estimated_remaining=decision.estimated_steps_remaining,
                screenshot=await self._thumbnail(tab),
            )

        raise ExecutionError(
            f"Maximum steps ({self.config.max_steps}) reached without completion",
            execution_id=state.execution_id,
            step=step,
            retryable=False,
        )

    async def _decide(self, request: NextStepRequest) -> NextStep:
        return await call_with_retries(
            lambda: self.oracle.decide_next_step(request),
            delays=[self.config.oracle_retry_delay_seconds],
            timeout=self.config.oracle_timeout_seconds,
            call="decide_next_step",
            unavailable_message=GUIDANCE_UNAVAILABLE,
            sleep=self._sleep,
        )

    async def _perform(self, tab: BrowserTab, decision: NextStep) -> tuple[str, Optional[str]]:
        """Execute one action; returns (description, extracted content)."""
        action = decision.next_action
        target = decision.target

        if action == "click":
            selector = self._require(target, "click")
            outcome = await tab.run_script(CLICK_SCRIPT, selector) or {}
            if not outcome.get("found"):
                raise TargetNotFoundError(
                    f"Element not found: {selector}. Page has "
                    f"{outcome.get('buttons', 0)} buttons, {outcome.get('links', 0)} links.",
                    selector=selector,
                )
            return f"Clicked {selector}", None

        if action == "type":
            selector = self._require(target, "type")
            value = sanitize_input(decision.value)
            outcome = await tab.run_script(TYPE_SCRIPT, {"selector": selector, "value": value}) or {}
            if not outcome.get("found"):
                raise TargetNotFoundError(f"Element not found: {selector}", selector=selector)
            return f'Typed "{value}" into {selector}', None

        if action == "navigate":
            url = self._require(target, "navigate")
            await self._open(tab, url)
            return f"Navigated to {url}", None

        if action == "wait":
            try:
                millis = int(decision.value or 1000)
            except ValueError:
                millis = 1000
            await self._sleep(max(0, millis) / 1000)
            return f"Waited {millis}ms", None

        if action == "press":
            key = decision.value or "Enter"
            await tab.run_script(PRESS_SCRIPT, {"key": key})
            return f"Pressed {key}", None

        if action == "extract":
            content = await self._extract(tab)
            return "Extracted page content", content

        raise ValidationError(f"Unsupported action: {action}", field="nextAction")

    async def _wait_for_settle(self, tab: BrowserTab) -> None:
        """Poll document.readyState up to the bound, then a short grace wait."""
        poll = self.config.settle_poll_seconds
        checks = max(1, int(self.config.settle_timeout_seconds / poll)) if poll else 1
        for _ in range(checks):
            try:
                if await tab.run_script(READY_STATE_SCRIPT) == "complete":
                    break
            except Exception as e:
                logger.debug("ready_state_poll_failed", tab_id=tab.tab_id, error=str(e))
            await self._sleep(poll)
        await self._sleep(self.config.settle_grace_seconds)

    async def _open(self, tab: BrowserTab, url: str) -> None:
        try:
            await tab.navigate(url)
        except NavigationError as e:
            raise NavigationError(f"Failed to navigate to {url}: {e.message}", url=url, code=e.code)

    async def _extract(self, tab: BrowserTab) -> Optional[str]:
        try:
            content = await tab.run_script(EXTRACT_SCRIPT)
        except Exception as e:
            logger.debug("content_extraction_failed", tab_id=tab.tab_id, error=str(e))
            return None
        return content or None

    async def _thumbnail(self, tab: BrowserTab) -> Optional[str]:
        try:
            image = await tab.screenshot()
        except Exception as e:
            logger.debug("screenshot_failed", tab_id=tab.tab_id, error=str(e))
            return None
        return "data:image/jpeg;base64," + base64.b64encode(image).decode("ascii")

    def _checkpoint(self, state: ExecutionState) -> None:
        if self.registry.is_cancelled(state.execution_id):
            raise ExecutionCancelled()

    def _progress(
        self,
        state: ExecutionState,
        step: int,
        action: str,
        description: str,
        **extra: Any,
    ) -> None:
        self.events.emit(
            EventType.EXECUTION_PROGRESS,
            execution_id=state.execution_id,
            current=step,
            total=state.total_steps,
            action=action,
            description=description,
            **extra,
        )

    @staticmethod
    def _require(target: Optional[str], action: str) -> str:
        if not target:
            raise ValidationError(f"{action} requires a target", field="target")
        return target

    async def _release(self, tab: BrowserTab) -> None:
        if not tab.automation_mode:
            return
        try:
            await tab.set_automation_mode(False)
        except Exception as e:
            logger.warning("automation_mode_release_failed", tab_id=tab.tab_id, error=str(e))

    @staticmethod
    def _result(
        state: ExecutionState,
        status: ExecutionStatus,
        start_time: float,
        error: Optional[PilotError] = None,
    ) -> ExecutionResult:
        return ExecutionResult(
            execution_id=state.execution_id,
            status=status,
            steps_executed=state.current_step,
            total_steps=state.total_steps,
            duration_ms=(time.monotonic() - start_time) * 1000,
            error=error,
        )
