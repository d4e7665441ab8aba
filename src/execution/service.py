"""Automation library and execution entry points."""

import time
import uuid
from typing import Any, Optional, Sequence, Union

import structlog
from pydantic import ValidationError as SchemaError

from browser.host import TabHost
from core.errors import PatternNotFoundError, ValidationError
from core.models import (
    Automation,
    CopyPastePayload,
    FormPayload,
    NavigationPayload,
    Pattern,
    WorkflowPayload,
    WorkflowStep,
)
from core.store import PatternStore
from execution.adaptive import AdaptiveReplayEngine
from execution.deterministic import DeterministicReplayEngine
from execution.state import ExecutionRegistry, ExecutionResult
from recognition.iteration import template_summary
from recording.manager import RecordingPreview

logger = structlog.get_logger()


def start_url(payload) -> Optional[str]:
    """Page an adaptive run opens before asking the oracle for steps."""
    if isinstance(payload, NavigationPayload):
        urls = payload.urls()
        return urls[0] if urls else None
    if isinstance(payload, FormPayload):
        return f"https://{payload.domain}"
    if isinstance(payload, CopyPastePayload):
        return payload.pairs[0].source_url if payload.pairs else None
    if isinstance(payload, WorkflowPayload):
        return payload.start_url
    return None


class AutomationService:
    """
    Saved automations and the replay entry points behind them.

    Navigation and form payloads replay deterministically unless adaptive
    replay is requested; copy-paste and workflow payloads always replay
    adaptively.
    """

    def __init__(
        self,
        store: PatternStore,
        host: TabHost,
        registry: ExecutionRegistry,
        deterministic: DeterministicReplayEngine,
        adaptive: Optional[AdaptiveReplayEngine] = None,
    ):
        self.store = store
        self.host = host
        self.registry = registry
        self.deterministic = deterministic
        self.adaptive = adaptive

    # ==================== Library ====================

    async def save_automation(self, pattern_id: str, name: str, description: str = "") -> Automation:
        """
        Save a pattern as a named automation.

        The payload is deep-copied so later edits to the pattern never
        change the automation.

        Raises:
            PatternNotFoundError: unknown pattern id
            ValidationError: name or description out of bounds
        """
        pattern = await self._require_pattern(pattern_id)
        automation = await self._store_new(
            name,
            description,
            pattern.payload.model_copy(deep=True),
            pattern_id=pattern.id,
            intent_summary=pattern.intent_summary,
        )
        logger.info("automation_saved", automation_id=automation.id, pattern_id=pattern_id, name=name)
        return automation

    async def save_workflow(
        self,
        name: str,
        steps: Sequence[Union[WorkflowStep, dict[str, Any]]],
        description: str = "",
        start_url: Optional[str] = None,
        intent_summary: Optional[str] = None,
    ) -> Automation:
        """
        Save an externally-authored step list as an automation.

        Sources are a pattern judgment's suggested workflow or a recording
        preview. Workflow automations always replay adaptively.

        Raises:
            ValidationError: empty or malformed steps, or name/description
                out of bounds
        """
        if not steps:
            raise ValidationError("Workflow needs at least one step", field="steps")
        try:
            payload = WorkflowPayload(
                steps=[WorkflowStep.model_validate(s) for s in steps],
                start_url=start_url,
            )
        except SchemaError as e:
            raise ValidationError(f"Invalid workflow: {e.error_count()} error(s)", field="steps")

        automation = await self._store_new(name, description, payload, intent_summary=intent_summary)
        logger.info("workflow_saved", automation_id=automation.id, steps=len(payload.steps), name=name)
        return automation

    async def save_recording(self, preview: RecordingPreview, name: str, description: str = "") -> Automation:
        """Save a stopped recording as a workflow automation."""
        workflow = preview.to_workflow()
        return await self.save_workflow(
            name,
            workflow.steps,
            description=description,
            start_url=workflow.start_url,
        )

    async def list_automations(self) -> list[Automation]:
        return await self.store.list_automations()

    async def get_automation(self, automation_id: str) -> Automation:
        automation = await self.store.get_automation(automation_id)
        if automation is None:
            raise PatternNotFoundError("Automation not found", record_id=automation_id)
        return automation

    async def edit_automation(
        self,
        automation_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Automation:
        automation = await self.get_automation(automation_id)
        changes: dict[str, Any] = {}
        if name is not None:
            changes["name"] = name
        if description is not None:
            changes["description"] = description

        try:
            updated = Automation.model_validate({**automation.model_dump(), **changes})
        except SchemaError as e:
            raise ValidationError(
                f"Invalid automation: {e.errors()[0]['msg']}",
                field=str(e.errors()[0]["loc"][0]),
            )

        await self.store.put_automation(updated)
        logger.info("automation_edited", automation_id=automation_id, fields=sorted(changes))
        return updated

    async def delete_automation(self, automation_id: str) -> None:
        if not await self.store.delete_automation(automation_id):
            raise PatternNotFoundError("Automation not found", record_id=automation_id)
        logger.info("automation_deleted", automation_id=automation_id)

    # ==================== Execution ====================

    async def execute_automation(
        self,
        automation_id: str,
        adaptive: bool = False,
        execution_id: Optional[str] = None,
    ) -> ExecutionResult:
        """
        Run a saved automation once.

        Args:
            automation_id: Saved automation to run
            adaptive: Use oracle-guided replay for navigation/form payloads
            execution_id: Caller-chosen id, useful for cancelling

        Returns:
            ExecutionResult; on success the automation's execution count
            and last-executed time are bumped
        """
        automation = await self.get_automation(automation_id)
        payload = automation.payload
        logger.info("automation_execute", automation_id=automation_id, kind=payload.kind, adaptive=adaptive)

        if adaptive or isinstance(payload, (CopyPastePayload, WorkflowPayload)):
            intent = automation.intent_summary or automation.description or automation.name
            result = await self._run_adaptive(payload, intent, execution_id)
        else:
            result = await self.deterministic.run(payload, item_count=1, execution_id=execution_id)

        if result.success:
            await self.store.record_execution(automation_id, time.time())
            logger.info(
                "automation_executed",
                automation_id=automation_id,
                steps=result.steps_executed,
                duration_ms=round(result.duration_ms, 1),
            )
        else:
            logger.warning(
                "automation_execution_failed",
                automation_id=automation_id,
                status=result.status.value,
                error=result.error.message if result.error else None,
            )
        return result

    async def continue_pattern(
        self,
        pattern_id: str,
        item_count: int,
        execution_id: Optional[str] = None,
    ) -> ExecutionResult:
        """
        Replay a detected pattern ``item_count`` times from a suggestion.

        Raises:
            PatternNotFoundError: unknown or dismissed pattern
            ValidationError: item_count outside 1..max, or a payload that
                cannot be iterated
        """
        pattern = await self._require_pattern(pattern_id)
        logger.info("pattern_continue", pattern_id=pattern_id, item_count=item_count)

        if isinstance(pattern.payload, CopyPastePayload):
            if item_count != 1:
                raise ValidationError("Copy/paste patterns run one item at a time", field="item_count")
            intent = pattern.intent_summary or template_summary(pattern)
            return await self._run_adaptive(pattern.payload, intent, execution_id)

        return await self.deterministic.run(
            pattern.payload,
            item_count=item_count,
            execution_id=execution_id,
            iterate=True,
        )

    def cancel_execution(self, execution_id: str) -> bool:
        """Request cancellation; the run emits its cancelled event when it halts."""
        return self.registry.cancel(execution_id) is not None

    async def dismiss_pattern(self, pattern_id: str) -> None:
        if not await self.store.dismiss_pattern(pattern_id):
            raise PatternNotFoundError("Pattern not found", record_id=pattern_id)

        notification = await self.store.find_active_notification(pattern_id)
        if notification is not None:
            await self.store.dismiss_notification(notification.id)
        logger.info("pattern_dismissed", pattern_id=pattern_id)

    # ==================== Helpers ====================

    async def _run_adaptive(self, payload, intent: str, execution_id: Optional[str]) -> ExecutionResult:
        if self.adaptive is None:
            raise ValidationError("Adaptive replay is not configured", field="adaptive")

        tab = await self.host.create_tab()
        return await self.adaptive.run(
            tab,
            intent,
            workflow=payload.model_dump(mode="json"),
            execution_id=execution_id,
            start_url=start_url(payload),
        )

    async def _store_new(
        self,
        name: str,
        description: str,
        payload,
        pattern_id: Optional[str] = None,
        intent_summary: Optional[str] = None,
    ) -> Automation:
        try:
            automation = Automation(
                id=f"automation-{uuid.uuid4().hex}",
                pattern_id=pattern_id,
                name=name,
                description=description or "",
                payload=payload,
                intent_summary=intent_summary,
            )
        except SchemaError as e:
            raise ValidationError(
                f"Invalid automation: {e.errors()[0]['msg']}",
                field=str(e.errors()[0]["loc"][0]),
            )
        await self.store.put_automation(automation)
        return automation

    async def _require_pattern(self, pattern_id: str) -> Pattern:
        pattern = await self.store.get_pattern(pattern_id)
        if pattern is None or pattern.dismissed:
            raise PatternNotFoundError("Pattern not found", record_id=pattern_id)
        return pattern
