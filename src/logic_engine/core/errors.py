"""Logic engine error definitions."""

import hashlib
from typing import Optional, Any
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for classification."""
    LOW = "low"           # Single condition, evaluates false
    MEDIUM = "medium"     # Single action or rule, isolated
    HIGH = "high"         # Rejected at the call boundary
    CRITICAL = "critical" # Whole run affected


class ErrorCategory(Enum):
    """Error categories for routing and HTTP status mapping."""
    VALIDATION = "validation"     # Caller input - maps to 4xx
    NOT_FOUND = "not_found"       # Unknown rule id - maps to 404
    PARSE = "parse"               # Stored rule payload could not be decoded
    EVALUATION = "evaluation"     # Condition evaluation failure
    EXECUTION = "execution"       # Action handler failure
    EXTERNAL = "external"         # Store or webhook failure
    INTERNAL = "internal"         # Unexpected failure - maps to 5xx


class LogicEngineError(Exception):
    """Base exception for all logic engine errors."""

    def __init__(
        self,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.INTERNAL,
        context: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.severity = severity
        self.category = category
        self.context = context or {}

    def fingerprint(self) -> str:
        """Generate error fingerprint for deduplication."""
        components = [
            self.__class__.__name__,
            self.category.value,
            str(self.context.get("rule_id", "")),
            str(self.context.get("action_type", "")),
        ]
        return hashlib.sha256(":".join(components).encode()).hexdigest()[:16]

    def to_dict(self) -> dict[str, Any]:
        """Serialize error for logging/responses."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "context": self.context,
            "fingerprint": self.fingerprint(),
        }


class ValidationError(LogicEngineError):
    """Missing or invalid input at the invocation boundary."""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("category", ErrorCategory.VALIDATION)
        super().__init__(message, **kwargs)
        self.context["field"] = field


class RuleNotFoundError(ValidationError):
    """Requested rule id does not exist in the rule store."""

    def __init__(self, rule_id: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.NOT_FOUND)
        super().__init__(f"Rule not found: {rule_id}", field="ruleId", **kwargs)
        self.context["rule_id"] = rule_id


class ConfigError(LogicEngineError):
    """Configuration loading or validation error."""

    def __init__(self, message: str, config_path: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.HIGH)
        kwargs.setdefault("category", ErrorCategory.VALIDATION)
        super().__init__(message, **kwargs)
        self.context["config_path"] = config_path


class RuleParseError(LogicEngineError):
    """A rule's stored conditions or actions could not be decoded."""

    def __init__(self, message: str, rule_id: Optional[str] = None, **kwargs):
        kwargs.setdefault("category", ErrorCategory.PARSE)
        super().__init__(message, **kwargs)
        self.context["rule_id"] = rule_id


class ConditionEvaluationError(LogicEngineError):
    """Exception raised while evaluating one condition."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        operator: Optional[str] = None,
        **kwargs
    ):
        kwargs.setdefault("severity", ErrorSeverity.LOW)
        kwargs.setdefault("category", ErrorCategory.EVALUATION)
        super().__init__(message, **kwargs)
        self.context["field"] = field
        self.context["operator"] = operator


class ActionExecutionError(LogicEngineError):
    """Action handler failure (missing parameter, store or webhook error)."""

    def __init__(
        self,
        message: str,
        action_type: Optional[str] = None,
        rule_id: Optional[str] = None,
        **kwargs
    ):
        kwargs.setdefault("category", ErrorCategory.EXECUTION)
        super().__init__(message, **kwargs)
        self.context["action_type"] = action_type
        self.context["rule_id"] = rule_id


class EngineFatalError(LogicEngineError):
    """Failure outside the per-rule loop, e.g. the rule fetch."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.CRITICAL)
        kwargs.setdefault("category", ErrorCategory.INTERNAL)
        super().__init__(message, **kwargs)


class StoreError(LogicEngineError):
    """Persistence failure in one of the external stores."""

    def __init__(self, message: str, store: Optional[str] = None, **kwargs):
        kwargs.setdefault("category", ErrorCategory.EXTERNAL)
        super().__init__(message, **kwargs)
        self.context["store"] = store
