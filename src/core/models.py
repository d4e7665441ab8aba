"""Persisted data model: patterns, payloads, automations and session actions."""

import re
import time
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, model_validator


class PatternType(str, Enum):
    """Kinds of repeated user behaviour."""
    NAVIGATION = "navigation"
    FORM = "form"
    COPY_PASTE = "copy-paste"


ValuePattern = Literal["email", "name", "phone", "number", "text"]

# Field names that must never be stored or replayed
SENSITIVE_FIELD_RE = re.compile(
    r"pass(word|wd|code)?|pwd|secret|token|cvv|cvc|security.?code"
    r"|(?<![a-z])(otp|pin|ssn)(?![a-z])",
    re.IGNORECASE,
)


def is_sensitive_field(name: str) -> bool:
    """True for password-like field names."""
    return bool(SENSITIVE_FIELD_RE.search(name or ""))


def hostname(url: str) -> str:
    """Lower-cased hostname of ``url``, or the raw string when unparseable."""
    try:
        host = urlsplit(url).hostname
    except ValueError:
        return url
    return host if host else url


# -- payloads ----------------------------------------------------------------

class _Payload(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class NavigationStep(_Payload):
    url: str = Field(min_length=1)
    timestamp: float
    tab_id: str


class NavigationPayload(_Payload):
    kind: Literal["navigation"] = "navigation"
    sequence: list[NavigationStep] = Field(default_factory=list)
    session_gap_seconds: float = 1800.0

    def urls(self) -> list[str]:
        return [step.url for step in self.sequence]


class FieldDescriptor(_Payload):
    name: str = Field(min_length=1)
    value_pattern: ValuePattern = "text"
    label: Optional[str] = None
    sanitized_value: Optional[str] = None


class FormPayload(_Payload):
    kind: Literal["form"] = "form"
    domain: str = Field(min_length=1)
    form_selector: str = Field(min_length=1)
    fields: list[FieldDescriptor] = Field(default_factory=list)

    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]


class CopyPastePair(_Payload):
    source_url: str
    destination_url: str
    source_element: str
    destination_element: str
    copied_text: Optional[str] = None
    source_title: Optional[str] = None
    destination_title: Optional[str] = None
    timestamp: float = 0.0

    def signature(self) -> tuple[str, str, str, str]:
        """Host/element identity used for matching."""
        return (
            hostname(self.source_url),
            hostname(self.destination_url),
            self.source_element,
            self.destination_element,
        )


class CopyPastePayload(_Payload):
    kind: Literal["copy-paste"] = "copy-paste"
    pairs: list[CopyPastePair] = Field(default_factory=list)


class WorkflowStep(_Payload):
    action: str
    target: Optional[str] = None
    value: Optional[str] = None
    description: Optional[str] = None


class WorkflowPayload(_Payload):
    """Externally-authored step list (e.g. produced by pattern judgment)."""
    kind: Literal["workflow"] = "workflow"
    steps: list[WorkflowStep] = Field(default_factory=list)
    start_url: Optional[str] = None


PatternPayload = Annotated[
    Union[NavigationPayload, FormPayload, CopyPastePayload],
    Field(discriminator="kind"),
]

ReplayPayload = Annotated[
    Union[NavigationPayload, FormPayload, CopyPastePayload, WorkflowPayload],
    Field(discriminator="kind"),
]


# -- records -----------------------------------------------------------------

class Pattern(BaseModel):
    """A stored, scored description of a repeated action sequence."""
    id: str
    type: PatternType
    payload: PatternPayload
    confidence: float = Field(default=0.0, ge=0.0, le=100.0)
    occurrence_count: int = Field(default=1, ge=1)
    first_seen: float = Field(default_factory=time.time)
    last_seen: float = Field(default_factory=time.time)
    dismissed: bool = False
    intent_summary: Optional[str] = None
    intent_summary_detailed: Optional[str] = None
    summary_generated_at: Optional[float] = None

    @model_validator(mode="after")
    def payload_matches_type(self) -> "Pattern":
        if self.payload.kind != self.type.value:
            raise ValueError(
                f"payload kind {self.payload.kind!r} does not match type {self.type.value!r}"
            )
        return self


class Automation(BaseModel):
    """Saved replayable payload, decoupled from its source pattern."""
    id: str
    pattern_id: Optional[str] = None
    name: str = Field(min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    payload: ReplayPayload
    intent_summary: Optional[str] = None
    execution_count: int = Field(default=0, ge=0)
    last_executed: Optional[float] = None
    created_at: float = Field(default_factory=time.time)


class Notification(BaseModel):
    id: str
    type: str = "pattern"
    severity: str = "info"
    title: str
    message: str
    pattern_id: Optional[str] = None
    created_at: float = Field(default_factory=time.time)
    dismissed: bool = False


# -- live session actions ----------------------------------------------------

class _Action(BaseModel):
    model_config = ConfigDict(frozen=True)
    timestamp: float = Field(default_factory=time.time)
    tab_id: Optional[str] = None


class NavigationAction(_Action):
    kind: Literal["navigation"] = "navigation"
    url: str = Field(min_length=1)
    title: Optional[str] = None


class FormAction(_Action):
    kind: Literal["form"] = "form"
    domain: str = Field(min_length=1)
    form_selector: str = Field(min_length=1)
    fields: list[FieldDescriptor] = Field(default_factory=list)


class CopyPasteAction(_Action):
    kind: Literal["copy-paste"] = "copy-paste"
    pair: CopyPastePair


class ClickAction(_Action):
    kind: Literal["click"] = "click"
    selector: str
    text: Optional[str] = None
    url: Optional[str] = None


SessionAction = Annotated[
    Union[NavigationAction, FormAction, CopyPasteAction, ClickAction],
    Field(discriminator="kind"),
]


def describe_payload(payload: Any) -> dict[str, Any]:
    """Compact summary attached to completion events."""
    if isinstance(payload, NavigationPayload):
        urls = payload.urls()
        return {
            "type": "navigation",
            "url_count": len(urls),
            "first_url": urls[0] if urls else None,
            "last_url": urls[-1] if urls else None,
        }
    if isinstance(payload, FormPayload):
        return {
            "type": "form",
            "domain": payload.domain,
            "field_count": len(payload.fields),
        }
    if isinstance(payload, CopyPastePayload):
        return {"type": "copy-paste", "pair_count": len(payload.pairs)}
    if isinstance(payload, WorkflowPayload):
        return {"type": "workflow", "step_count": len(payload.steps)}
    raise TypeError(f"Unknown payload: {type(payload).__name__}")
