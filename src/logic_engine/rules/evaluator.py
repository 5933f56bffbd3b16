"""Condition and rule evaluation for the logic engine."""

from typing import Any, Optional

import structlog

from ..core.errors import ConditionEvaluationError
from .models import Condition, ConditionResult, ExecutionContext, LogicType, Rule
from .operators import evaluate_operator
from .resolver import resolve_field


logger = structlog.get_logger()


class ConditionEvaluator:
    """
    Evaluates rule conditions against a payload and execution context.

    Supports:
    - Field resolution from payload, context metadata, or dotted paths
    - Equality, numeric/date ordering, case-insensitive string tests
    - Emptiness and list membership checks
    - AND / OR combination with short-circuiting

    A condition that raises is logged and treated as false so one malformed
    condition never aborts the evaluation of its rule.
    """

    def evaluate_condition(
        self,
        condition: Condition,
        data: Any,
        context: Optional[ExecutionContext] = None,
    ) -> bool:
        """Evaluate a single condition; errors evaluate to False."""
        try:
            value = resolve_field(condition.field, data, context)
            return evaluate_operator(
                value,
                condition.operator,
                condition.value,
                condition.data_type,
            )
        except Exception as e:
            error = ConditionEvaluationError(
                f"Error evaluating condition: {e}",
                field=condition.field,
                operator=condition.operator,
            )
            logger.warning("condition_evaluation_error", **error.to_dict())
            return False

    def evaluate_rule(
        self,
        rule: Rule,
        data: Any,
        context: Optional[ExecutionContext] = None,
    ) -> bool:
        """
        Evaluate a rule's conditions per its logic type.

        A rule without conditions never triggers.
        """
        if not rule.conditions:
            return False

        if rule.logic_type == LogicType.AND:
            return all(
                self.evaluate_condition(c, data, context)
                for c in rule.conditions
            )

        return any(
            self.evaluate_condition(c, data, context)
            for c in rule.conditions
        )

    def evaluate_each(
        self,
        rule: Rule,
        data: Any,
        context: Optional[ExecutionContext] = None,
    ) -> list[ConditionResult]:
        """Evaluate every condition without short-circuiting."""
        return [
            ConditionResult(
                condition=condition,
                result=self.evaluate_condition(condition, data, context),
            )
            for condition in rule.conditions
        ]
