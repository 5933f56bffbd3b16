"""Rules engine module."""

from .models import (
    Rule,
    RuleRecord,
    Condition,
    Action,
    ActionKind,
    Operator,
    LogicType,
    ExecutionContext,
    ActionResult,
    EngineResult,
)
from .evaluator import ConditionEvaluator
from .actions import ActionDispatcher
from .selector import RuleSelector
from .engine import LogicEngine
from .tester import RuleTester

__all__ = [
    "Rule",
    "RuleRecord",
    "Condition",
    "Action",
    "ActionKind",
    "Operator",
    "LogicType",
    "ExecutionContext",
    "ActionResult",
    "EngineResult",
    "ConditionEvaluator",
    "ActionDispatcher",
    "RuleSelector",
    "LogicEngine",
    "RuleTester",
]
