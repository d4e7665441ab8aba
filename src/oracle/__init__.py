"""External decision oracle: interface, schemas and HTTP client."""

from .base import (
    DecisionOracle,
    IntentSummaries,
    JudgmentRequest,
    NextStep,
    NextStepRequest,
    PatternJudgment,
    call_with_retries,
    call_with_timeout,
    parse_json_response,
    parse_summaries,
)
from .client import HttpOracle

__all__ = [
    "DecisionOracle",
    "IntentSummaries",
    "JudgmentRequest",
    "NextStep",
    "NextStepRequest",
    "PatternJudgment",
    "call_with_retries",
    "call_with_timeout",
    "parse_json_response",
    "parse_summaries",
    "HttpOracle",
]
