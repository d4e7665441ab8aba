"""Literal step-by-step replay of navigation and form patterns."""

import asyncio
import time
from typing import Awaitable, Callable, Optional

import structlog

from browser.host import BrowserTab, TabHost
from core.config import ReplayConfig
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
from core.models import (
    FieldDescriptor,
    FormPayload,
    NavigationPayload,
    describe_payload,
    hostname,
    is_sensitive_field,
)
from execution.page import FILL_FIELD_SCRIPT, SUBMIT_FORM_SCRIPT
from execution.state import (
    ExecutionCancelled,
    ExecutionRegistry,
    ExecutionResult,
    ExecutionState,
    ExecutionStatus,
)
from recognition.iteration import extract_iteration

logger = structlog.get_logger()

SAMPLE_VALUES = {
    "email": "user@example.com",
    "name": "John Doe",
    "phone": "555-1234",
    "number": "12345",
}
DEFAULT_SAMPLE = "Sample text"

FORM_CHANGED_MESSAGE = "Form not found on page. Website may have changed."


def sample_value(field: FieldDescriptor) -> str:
    """Sanitized sample if recorded, else a placeholder keyed by value type."""
    if field.sanitized_value:
        return field.sanitized_value
    return SAMPLE_VALUES.get(field.value_pattern, DEFAULT_SAMPLE)


def replayable_fields(payload: FormPayload) -> list[FieldDescriptor]:
    """Fields safe to fill; password-like names are always excluded."""
    return [f for f in payload.fields if not is_sensitive_field(f.name)]


def navigation_failure_message(url: str, code: Optional[str], detail: str) -> str:
    code = code or ""
    if "ERR_NAME_NOT_RESOLVED" in code:
        return "Page not found. Check if URL changed."
    if "TIMED_OUT" in code:
        return "Page took too long to load. Try again later."
    return f"Failed to navigate to {url}: {detail}"


class DeterministicReplayEngine:
    """
    Replays stored patterns literally.

    States: idle -> running(step i) -> running(i+1) | failed | cancelled |
    completed. Navigation iterations share one tab; each form iteration
    gets a fresh tab. The tab is held in automation mode for the whole
    run and released on every exit path.
    """

    def __init__(
        self,
        host: TabHost,
        events: EventBus,
        registry: ExecutionRegistry,
        config: Optional[ReplayConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.host = host
        self.events = events
        self.registry = registry
        self.config = config or ReplayConfig()
        self._sleep = sleep

    async def run(
        self,
        payload,
        item_count: int = 1,
        tab: Optional[BrowserTab] = None,
        execution_id: Optional[str] = None,
        iterate: bool = False,
    ) -> ExecutionResult:
        """
        Replay ``payload`` ``item_count`` times.

        Args:
            payload: NavigationPayload or FormPayload
            item_count: Number of iterations
            tab: Existing tab to reuse for navigation replay
            execution_id: Caller-chosen id (generated when omitted)
            iterate: Replay one repeat unit of a navigation history per
                iteration instead of the full recorded sequence

        Returns:
            ExecutionResult; failures are reported in ``error``

        Raises:
            ValidationError: unsupported payload or item count
            ResourceLimitError: ``tab`` is already automation-controlled
        """
        if not 1 <= item_count <= self.config.max_item_count:
            raise ValidationError(
                f"item_count must be between 1 and {self.config.max_item_count}",
                field="item_count",
            )
        if tab is not None and (tab.automation_mode or self.registry.tab_in_use(tab.tab_id)):
            raise ResourceLimitError(
                "Tab is already under automation control",
                code="TAB_IN_USE",
                context={"tab_id": tab.tab_id},
            )

        if isinstance(payload, NavigationPayload):
            urls = extract_iteration(payload.urls()) if iterate else payload.urls()
            if not urls:
                raise ValidationError("Navigation pattern has no steps", field="sequence")
            per_iteration = len(urls)
        elif isinstance(payload, FormPayload):
            fields = replayable_fields(payload)
            per_iteration = len(fields) + 2
        else:
            raise ValidationError(
                f"{type(payload).__name__} cannot be replayed literally",
                field="payload",
            )

        state = self.registry.create(
            payload.kind,
            per_iteration * item_count,
            execution_id=execution_id,
        )
        start_time = time.monotonic()
        iterations_done = 0
        owned: Optional[BrowserTab] = tab

        self.events.emit(
            EventType.EXECUTION_STARTED,
            execution_id=state.execution_id,
            pattern_type=payload.kind,
            total_steps=state.total_steps,
            total_iterations=item_count,
        )
        logger.info(
            "replay_started",
            execution_id=state.execution_id,
            pattern_type=payload.kind,
            total_steps=state.total_steps,
        )

        try:
            if owned is not None:
                state.tab_id = owned.tab_id
                await owned.set_automation_mode(True)

            for iteration in range(1, item_count + 1):
                self._checkpoint(state)
                if isinstance(payload, NavigationPayload):
                    owned = await self._navigation_iteration(urls, state, owned, iteration, item_count)
                else:
                    owned = await self._form_iteration(payload, fields, state, iteration, item_count)
                iterations_done = iteration
                if iteration < item_count:
                    await self._sleep(self.config.iteration_gap_seconds)

            await self._release(self._current_tab(state, owned))
            self.events.emit(
                EventType.EXECUTION_COMPLETED,
                execution_id=state.execution_id,
                steps_executed=state.current_step,
                iterations=iterations_done,
                pattern=describe_payload(payload),
            )
            logger.info("replay_completed", execution_id=state.execution_id, steps=state.current_step)
            return self._result(state, ExecutionStatus.COMPLETED, iterations_done, start_time)

        except ExecutionCancelled:
            await self._release(self._current_tab(state, owned))
            self.events.emit(
                EventType.EXECUTION_CANCELLED,
                execution_id=state.execution_id,
                stopped_at=state.current_step,
                total_steps=state.total_steps,
            )
            logger.info("replay_cancelled", execution_id=state.execution_id, stopped_at=state.current_step)
            return self._result(state, ExecutionStatus.CANCELLED, iterations_done, start_time)

        except Exception as e:
            error = e if isinstance(e, PilotError) else ExecutionError(str(e), execution_id=state.execution_id)
            error.context.setdefault("execution_id", state.execution_id)
            error.context.setdefault("step", state.current_step)
            await self._release(self._current_tab(state, owned))
            self.events.emit(
                EventType.EXECUTION_ERROR,
                execution_id=state.execution_id,
                step=state.current_step,
                error=error.message,
            )
            logger.warning("replay_failed", execution_id=state.execution_id, error=error.message)
            return self._result(state, ExecutionStatus.FAILED, iterations_done, start_time, error)

        finally:
            self.registry.remove(state.execution_id)

    # ==================== Navigation ====================

    async def _navigation_iteration(
        self,
        urls: list[str],
        state: ExecutionState,
        tab: Optional[BrowserTab],
        iteration: int,
        total_iterations: int,
    ) -> BrowserTab:
        for url in urls:
            self._checkpoint(state)
            self._progress(state, f"Navigating to {hostname(url)}...", iteration, total_iterations)

            if tab is None:
                tab = await self.host.create_tab()
                state.tab_id = tab.tab_id
                await tab.set_automation_mode(True)

            await self._navigate(tab, url)
            self.registry.advance(state.execution_id, state.current_step + 1)
            await self._sleep(self.config.navigation_settle_seconds)
        return tab

    async def _navigate(self, tab: BrowserTab, url: str) -> None:
        try:
            await tab.navigate(url)
        except NavigationError as e:
            raise NavigationError(
                navigation_failure_message(url, e.code, e.message),
                url=url,
                code=e.code,
                severity=ErrorSeverity.HIGH,
                retryable=False,
            ) from e

    # ==================== Forms ====================

    async def _form_iteration(
        self,
        payload: FormPayload,
        fields: list[FieldDescriptor],
        state: ExecutionState,
        iteration: int,
        total_iterations: int,
    ) -> BrowserTab:
        self._checkpoint(state)
        self._progress(state, f"Opening {payload.domain}...", iteration, total_iterations)
        tab = await self.host.create_tab()
        state.tab_id = tab.tab_id
        await tab.set_automation_mode(True)

        await self._navigate(tab, f"https://{payload.domain}")
        self.registry.advance(state.execution_id, state.current_step + 1)
        await self._sleep(self.config.form_load_seconds)

        for field in fields:
            self._checkpoint(state)
            self._progress(state, f"Filling {field.label or field.name}...", iteration, total_iterations)
            outcome = await tab.run_script(FILL_FIELD_SCRIPT, {
                "formSelector": payload.form_selector,
                "name": field.name,
                "value": sample_value(field),
            })
            self._check_script(outcome, payload.form_selector)
            self.registry.advance(state.execution_id, state.current_step + 1)
            await self._sleep(self.config.field_fill_seconds)

        self._checkpoint(state)
        self._progress(state, "Submitting form...", iteration, total_iterations)
        outcome = await tab.run_script(SUBMIT_FORM_SCRIPT, {"formSelector": payload.form_selector})
        self._check_script(outcome, payload.form_selector)
        self.registry.advance(state.execution_id, state.current_step + 1)
        await self._sleep(self.config.submit_wait_seconds)

        if iteration < total_iterations:
            await self._release(tab)
        return tab

    @staticmethod
    def _check_script(outcome, selector: str) -> None:
        if isinstance(outcome, dict) and outcome.get("ok"):
            return
        detail = outcome.get("error", "") if isinstance(outcome, dict) else ""
        raise TargetNotFoundError(
            FORM_CHANGED_MESSAGE,
            selector=selector,
            severity=ErrorSeverity.HIGH,
            retryable=False,
            context={"detail": detail},
        )

    # ==================== Helpers ====================

    def _checkpoint(self, state: ExecutionState) -> None:
        if self.registry.is_cancelled(state.execution_id):
            raise ExecutionCancelled()

    def _progress(
        self,
        state: ExecutionState,
        action: str,
        iteration: int,
        total_iterations: int,
    ) -> None:
        self.events.emit(
            EventType.EXECUTION_PROGRESS,
            execution_id=state.execution_id,
            current=state.current_step + 1,
            total=state.total_steps,
            action=action,
            iteration=iteration,
            total_iterations=total_iterations,
        )

    def _current_tab(self, state: ExecutionState, owned: Optional[BrowserTab]) -> Optional[BrowserTab]:
        """Tab the run holds right now, including one opened mid-iteration."""
        if state.tab_id and (owned is None or owned.tab_id != state.tab_id):
            return self.host.get_tab(state.tab_id) or owned
        return owned

    async def _release(self, tab: Optional[BrowserTab]) -> None:
        if tab is None or not tab.automation_mode:
            return
        try:
            await tab.set_automation_mode(False)
        except Exception as e:
            logger.warning("automation_mode_release_failed", tab_id=tab.tab_id, error=str(e))

    @staticmethod
    def _result(
        state: ExecutionState,
        status: ExecutionStatus,
        iterations: int,
        start_time: float,
        error: Optional[PilotError] = None,
    ) -> ExecutionResult:
        return ExecutionResult(
            execution_id=state.execution_id,
            status=status,
            steps_executed=state.current_step,
            total_steps=state.total_steps,
            iterations_completed=iterations,
            duration_ms=(time.monotonic() - start_time) * 1000,
            error=error,
        )
