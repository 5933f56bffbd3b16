"""Core engine components."""

from .config import ConfigLoader, EngineConfig
from .errors import (
    LogicEngineError,
    ValidationError,
    RuleNotFoundError,
    ConfigError,
    RuleParseError,
    ConditionEvaluationError,
    ActionExecutionError,
    EngineFatalError,
    StoreError,
)

__all__ = [
    "ConfigLoader",
    "EngineConfig",
    "LogicEngineError",
    "ValidationError",
    "RuleNotFoundError",
    "ConfigError",
    "RuleParseError",
    "ConditionEvaluationError",
    "ActionExecutionError",
    "EngineFatalError",
    "StoreError",
]
