"""Error taxonomy shared by recognition, replay and recording."""

import hashlib
from typing import Optional, Any
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for classification."""
    LOW = "low"           # Expected, surfaced to the user as-is
    MEDIUM = "medium"     # Retry with backoff
    HIGH = "high"         # Aborts the current run
    CRITICAL = "critical" # Indicates a broken invariant


class ErrorCategory(Enum):
    """Error categories for routing and handling."""
    TRANSIENT = "transient"       # Network, timeout - will likely resolve
    PERMANENT = "permanent"       # Missing record, bad config - won't resolve
    RESOURCE = "resource"         # Caps and exclusive resources
    EXTERNAL = "external"         # Oracle or browser collaborator issue
    VALIDATION = "validation"     # Malformed tracked input or oracle output
    SAFETY = "safety"             # Loop defense, reentrancy


class PilotError(Exception):
    """Base exception for all pattern-pilot errors."""

    def __init__(
        self,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.TRANSIENT,
        context: Optional[dict[str, Any]] = None,
        retryable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.severity = severity
        self.category = category
        self.context = context or {}
        self.retryable = retryable

    def fingerprint(self) -> str:
        """Generate error fingerprint for deduplication."""
        components = [
            self.__class__.__name__,
            self.category.value,
            str(self.context.get("execution_id", "")),
            str(self.context.get("pattern_id", "")),
            str(self.context.get("selector", "")),
        ]
        return hashlib.sha256(":".join(components).encode()).hexdigest()[:16]

    def to_dict(self) -> dict[str, Any]:
        """Serialize error for logging and event payloads."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "context": self.context,
            "retryable": self.retryable,
            "fingerprint": self.fingerprint(),
        }


class ConfigError(PilotError):
    """Configuration loading or validation error."""

    def __init__(self, message: str, config_path: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("category", ErrorCategory.PERMANENT)
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)
        self.context["config_path"] = config_path


class ValidationError(PilotError):
    """Malformed tracked input or malformed oracle response. Never retried."""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.MEDIUM)
        kwargs.setdefault("category", ErrorCategory.VALIDATION)
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)
        self.context["field"] = field


class OracleUnavailableError(PilotError):
    """External oracle timed out or failed after bounded retries."""

    def __init__(self, message: str, call: Optional[str] = None, attempts: int = 0, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.MEDIUM)
        kwargs.setdefault("category", ErrorCategory.EXTERNAL)
        super().__init__(message, **kwargs)
        self.context["call"] = call
        self.context["attempts"] = attempts


class NavigationError(PilotError):
    """Tab navigation failed; ``code`` carries the collaborator error code."""

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        code: Optional[str] = None,
        **kwargs
    ):
        kwargs.setdefault("category", ErrorCategory.EXTERNAL)
        super().__init__(message, **kwargs)
        self.code = code
        self.context["url"] = url
        self.context["code"] = code


class TargetNotFoundError(PilotError):
    """Page element or form targeted by a replay step is missing."""

    def __init__(self, message: str, selector: Optional[str] = None, **kwargs):
        kwargs.setdefault("category", ErrorCategory.PERMANENT)
        super().__init__(message, **kwargs)
        self.context["selector"] = selector


class ExecutionError(PilotError):
    """Replay run failed or was rejected."""

    def __init__(
        self,
        message: str,
        execution_id: Optional[str] = None,
        step: Optional[int] = None,
        **kwargs
    ):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        super().__init__(message, **kwargs)
        self.context["execution_id"] = execution_id
        self.context["step"] = step


class ResourceLimitError(PilotError):
    """A cap or exclusive resource rejected the request up front."""

    def __init__(self, message: str, code: str = "RESOURCE_LIMIT", **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.LOW)
        kwargs.setdefault("category", ErrorCategory.RESOURCE)
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)
        self.code = code
        self.context["code"] = code


class PatternNotFoundError(PilotError):
    """Pattern or automation id does not resolve to a stored record."""

    def __init__(self, message: str, record_id: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.LOW)
        kwargs.setdefault("category", ErrorCategory.PERMANENT)
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)
        self.context["record_id"] = record_id
