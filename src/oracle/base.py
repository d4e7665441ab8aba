"""
Decision oracle interface.

The oracle is a best-effort external classifier/generator. Its responses
are schema-validated on receipt; anything that does not validate is a
ValidationError and is never retried blindly.
"""

import asyncio
import json
import re
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Literal, Optional, Sequence, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as SchemaError

from core.errors import OracleUnavailableError, ValidationError
from core.models import Pattern, WorkflowStep

logger = structlog.get_logger()

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


# ==================== Response schemas ====================

class PatternJudgment(BaseModel):
    """Answer to "is this a pattern?"."""
    model_config = ConfigDict(populate_by_name=True)

    is_pattern: bool = Field(alias="isPattern")
    confidence: float = Field(ge=0, le=100)
    intent_summary: str = Field(default="", alias="intentSummary", max_length=200)
    workflow: Optional[list[WorkflowStep]] = None
    rejection_reason: Optional[str] = Field(default=None, alias="rejectionReason")

    @field_validator("workflow", mode="before")
    @classmethod
    def unwrap_steps(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return v.get("steps")
        return v

    @field_validator("intent_summary")
    @classmethod
    def at_most_fifteen_words(cls, v: str) -> str:
        if len(v.split()) > 15:
            raise ValueError("intent summary must be at most 15 words")
        return v


NextActionType = Literal["click", "type", "navigate", "wait", "extract", "press", "complete"]


class NextStep(BaseModel):
    """Answer to "what is the next action?"."""
    model_config = ConfigDict(populate_by_name=True)

    next_action: NextActionType = Field(alias="nextAction")
    target: Optional[str] = None
    value: Optional[str] = None
    reasoning: str = ""
    is_complete: bool = Field(default=False, alias="isComplete")
    estimated_steps_remaining: Optional[int] = Field(
        default=None, alias="estimatedStepsRemaining", ge=0
    )

    @field_validator("value", "target", mode="before")
    @classmethod
    def stringify(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @property
    def finishes(self) -> bool:
        return self.is_complete or self.next_action == "complete"


class IntentSummaries(BaseModel):
    short: str = Field(min_length=1)
    detailed: str = Field(min_length=1)


# ==================== Requests ====================

class JudgmentRequest(BaseModel):
    """2-3 ordered session actions with contextual metadata."""
    actions: list[dict[str, Any]] = Field(min_length=2, max_length=3)


class NextStepRequest(BaseModel):
    intent: str
    workflow_reference: dict[str, Any] = Field(default_factory=dict)
    page_title: str = ""
    page_url: str = ""
    elements: list[dict[str, Any]] = Field(default_factory=list)
    history: list[dict[str, Any]] = Field(default_factory=list)
    extracted_contents: list[str] = Field(default_factory=list)
    last_error: Optional[str] = None
    attempt: int = 0
    max_attempts: int = 3
    screenshot: Optional[str] = None


# ==================== Interface ====================

class DecisionOracle(ABC):
    """
    Abstract external oracle.

    Implementations talk to a model endpoint. They raise
    OracleUnavailableError on transport failures and ValidationError on
    malformed responses; callers own timeouts and retries.

    Example:
        class CannedOracle(DecisionOracle):
            async def judge_pattern(self, request):
                return PatternJudgment(isPattern=False, confidence=0)
            async def summarize_pattern(self, pattern):
                return IntentSummaries(short="Checking mail", detailed="...")
            async def decide_next_step(self, request):
                return NextStep(nextAction="complete", isComplete=True)
    """

    @abstractmethod
    async def judge_pattern(self, request: JudgmentRequest) -> PatternJudgment:
        """Decide whether the supplied actions form a repeatable pattern."""

    @abstractmethod
    async def summarize_pattern(self, pattern: Pattern) -> IntentSummaries:
        """Produce short and detailed natural-language intent summaries."""

    @abstractmethod
    async def decide_next_step(self, request: NextStepRequest) -> NextStep:
        """Choose the next adaptive-replay action for the current page."""

    async def close(self) -> None:
        """Release transport resources."""


# ==================== Helpers ====================

_FENCED_JSON = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```", re.IGNORECASE)
_BARE_JSON = re.compile(r"\{[\s\S]*\}")


def parse_json_response(text: str, model: type[M]) -> M:
    """
    Extract a JSON object from model text and validate it.

    Accepts fenced ```json blocks or the outermost {...} span.

    Raises:
        ValidationError: when no JSON is found or the schema rejects it
    """
    cleaned = (text or "").strip()
    fenced = _FENCED_JSON.search(cleaned)
    if fenced:
        cleaned = fenced.group(1).strip()
    else:
        bare = _BARE_JSON.search(cleaned)
        if bare:
            cleaned = bare.group(0)

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Oracle response is not JSON: {e}", field="response")

    try:
        return model.model_validate(data)
    except SchemaError as e:
        raise ValidationError(
            f"Oracle response failed validation: {e.error_count()} error(s)",
            field=model.__name__,
            context={"errors": e.errors(include_url=False)},
        )


_SHORT = re.compile(r"SHORT:\s*(.+?)(?=\n\s*DETAILED:|$)", re.IGNORECASE | re.DOTALL)
_DETAILED = re.compile(r"DETAILED:\s*(.+)", re.IGNORECASE | re.DOTALL)


def parse_summaries(text: str) -> IntentSummaries:
    """Parse ``SHORT: ... DETAILED: ...`` text, falling back to the first line."""
    text = (text or "").strip()
    if not text:
        raise ValidationError("Empty summary response", field="response")

    short_match = _SHORT.search(text)
    detailed_match = _DETAILED.search(text)
    if short_match and detailed_match:
        return IntentSummaries(
            short=short_match.group(1).strip(),
            detailed=detailed_match.group(1).strip(),
        )

    first_line = text.splitlines()[0].strip()
    return IntentSummaries(short=first_line, detailed=text)


async def call_with_timeout(call: Awaitable[T], timeout: float) -> T:
    """
    Race ``call`` against a timer.

    The underlying call is not cancelled on timeout; it may finish later
    and its result is discarded.

    Raises:
        asyncio.TimeoutError: when the timer wins
    """
    task = asyncio.ensure_future(call)
    task.add_done_callback(_discard_stray_result)
    return await asyncio.wait_for(asyncio.shield(task), timeout=timeout)


async def call_with_retries(
    factory: Callable[[], Awaitable[T]],
    delays: Sequence[float],
    timeout: float,
    call: str,
    unavailable_message: str,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Timeout-guarded call retried once per entry in ``delays``.

    Validation failures propagate immediately; timeouts and transport
    failures are retried and finally surfaced as OracleUnavailableError.

    Args:
        factory: Zero-argument coroutine factory, invoked per attempt
        delays: Wait before each retry (its length is the retry count)
        timeout: Per-attempt timeout in seconds
        call: Name used in logs and error context
        unavailable_message: User-facing message on exhaustion
        sleep: Sleep coroutine (injectable for tests)
    """
    attempts = len(delays) + 1
    for attempt in range(1, attempts + 1):
        try:
            return await call_with_timeout(factory(), timeout)
        except ValidationError:
            raise
        except (asyncio.TimeoutError, OracleUnavailableError) as e:
            logger.warning(
                "oracle_call_failed",
                call=call,
                attempt=attempt,
                max_attempts=attempts,
                error=str(e) or type(e).__name__,
            )
            if attempt < attempts:
                await sleep(delays[attempt - 1])

    raise OracleUnavailableError(unavailable_message, call=call, attempts=attempts)


def _discard_stray_result(task: asyncio.Future) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("oracle_call_finished_with_error", error=str(exc))
