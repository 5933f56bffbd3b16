"""Dry-run evaluation of a single rule for previews and debugging."""

from typing import Any, Optional, Union

import structlog

from .actions import ActionDispatcher
from .evaluator import ConditionEvaluator
from .models import (
    ExecutionContext,
    LogicType,
    Rule,
    RuleRecord,
    RuleTestResult,
    decode_rule,
)


logger = structlog.get_logger()


class RuleTester:
    """
    Reports a rule's outcome condition by condition.

    Unlike the engine, every condition is evaluated and reported even after
    the outcome is decided. When the rule triggers its actions are executed
    for real, exactly as in production; there is no simulate-only mode.
    """

    def __init__(
        self,
        dispatcher: Optional[ActionDispatcher] = None,
        evaluator: Optional[ConditionEvaluator] = None,
    ):
        self.dispatcher = dispatcher or ActionDispatcher()
        self.evaluator = evaluator or ConditionEvaluator()

    async def test_rule(
        self,
        rule: Union[Rule, RuleRecord, dict[str, Any]],
        test_data: Any,
        context: Optional[ExecutionContext] = None,
    ) -> RuleTestResult:
        """
        Evaluate one rule against test data.

        Raises:
            RuleParseError: if the rule's stored payload cannot be decoded
        """
        context = context or ExecutionContext()
        rule = decode_rule(rule)

        condition_results = self.evaluator.evaluate_each(rule, test_data, context)
        triggered = self._combine(rule.logic_type, [c.result for c in condition_results])

        action_results = None
        if triggered:
            action_results = await self.dispatcher.execute_actions(rule, test_data, context)

        logger.info(
            "rule_tested",
            rule_id=rule.id,
            triggered=triggered,
            passed=sum(1 for c in condition_results if c.result),
            conditions=len(condition_results),
        )
        return RuleTestResult(
            triggered=triggered,
            condition_results=condition_results,
            action_results=action_results,
        )

    @staticmethod
    def _combine(logic_type: LogicType, outcomes: list[bool]) -> bool:
        # Same outcome as ConditionEvaluator.evaluate_rule, without re-evaluating
        if not outcomes:
            return False
        if logic_type == LogicType.AND:
            return all(outcomes)
        return any(outcomes)
