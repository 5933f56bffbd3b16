"""Logic engine - selects rules, evaluates conditions, dispatches actions."""

import asyncio
import time
import weakref
from typing import Any, Optional, Sequence, Union

import structlog

from ..core.config import EngineConfig
from ..core.errors import EngineFatalError
from ..stores.base import RuleStore
from .actions import ActionDispatcher
from .evaluator import ConditionEvaluator
from .models import (
    EngineResult,
    ExecutionContext,
    Rule,
    RuleRecord,
    decode_rule,
    to_record,
)
from .selector import RuleSelector


logger = structlog.get_logger()

RuleInput = Union[Rule, RuleRecord, dict[str, Any]]


class LogicEngine:
    """
    Runs stored condition/action rules against a payload.

    Flow:
    1. Resolve the rule set (caller-supplied or selected from the store)
    2. Drop inactive rules, order by priority desc then created_at desc
    3. Decode and evaluate each rule
    4. Execute every action of each triggered rule, in declared order
    5. Return an aggregated EngineResult

    Isolation:
    - A failing condition evaluates false (ConditionEvaluator)
    - A failing action yields an unsuccessful ActionResult (ActionDispatcher)
    - A failing rule adds one entry to ``errors``; later rules still run
    - A failure outside the rule loop adds one entry to ``errors`` and the
      partial result is returned

    Execution is never short-circuited by an earlier rule's outcome and
    triggered rules cannot trigger other rules.
    """

    def __init__(
        self,
        rule_store: Optional[RuleStore] = None,
        dispatcher: Optional[ActionDispatcher] = None,
        config: Optional[EngineConfig] = None,
        selector: Optional[RuleSelector] = None,
    ):
        self.config = config or EngineConfig()
        self.evaluator = ConditionEvaluator()
        self.dispatcher = dispatcher or ActionDispatcher(
            webhook_config=self.config.webhook,
        )
        if selector is None and rule_store is not None:
            selector = RuleSelector(rule_store, self.config.rule_cache)
        self.selector = selector

        # Per-entity locks (only used with serialize_per_entity). An entry lives
        # only while some run for that entity holds or awaits the lock.
        self._entity_locks: weakref.WeakValueDictionary[
            tuple[Optional[str], Optional[str]], asyncio.Lock
        ] = weakref.WeakValueDictionary()

    async def run_logic_rules(
        self,
        data: Any,
        context: Optional[ExecutionContext] = None,
        custom_rules: Optional[Sequence[RuleInput]] = None,
    ) -> EngineResult:
        """
        Evaluate rules against ``data`` and execute actions of triggered rules.

        Args:
            data: Input payload (usually a mapping)
            context: Execution context; also a secondary field source
            custom_rules: Rules to use instead of selecting from the store

        Returns:
            EngineResult; never raises for rule, condition or action failures
        """
        context = context or ExecutionContext()

        if self.config.serialize_per_entity and context.entity_id:
            key = (context.entity_type, context.entity_id)
            lock = self._entity_locks.setdefault(key, asyncio.Lock())
            async with lock:
                return await self._run(data, context, custom_rules)

        return await self._run(data, context, custom_rules)

    async def run_rules_for_entity(
        self,
        entity_type: str,
        entity_id: str,
        entity_data: Any,
        user_id: Optional[str] = None,
    ) -> EngineResult:
        """Run the rules scoped to one entity."""
        return await self.run_logic_rules(
            entity_data,
            ExecutionContext(
                entity_type=entity_type,
                entity_id=entity_id,
                user_id=user_id,
            ),
        )

    async def run_rules_for_mission(
        self,
        mission_id: str,
        mission_data: Any,
        user_id: Optional[str] = None,
    ) -> EngineResult:
        """Run the rules scoped to a mission."""
        return await self.run_logic_rules(
            mission_data,
            ExecutionContext(
                entity_type="mission",
                entity_id=mission_id,
                mission_id=mission_id,
                user_id=user_id,
            ),
        )

    async def _run(
        self,
        data: Any,
        context: ExecutionContext,
        custom_rules: Optional[Sequence[RuleInput]],
    ) -> EngineResult:
        start_time = time.monotonic()
        result = EngineResult()

        try:
            rules = await self._resolve_rules(context, custom_rules, result)
            result.total_rules_evaluated = len(rules)

            for item in rules:
                try:
                    await self._process_rule(item, data, context, result)
                except Exception as e:
                    result.errors.append(f"Error evaluating rule {item.id}: {e}")
                    logger.error(
                        "rule_processing_error",
                        rule_id=item.id,
                        error_type=type(e).__name__,
                        error=str(e),
                    )

        except Exception as e:
            fatal = EngineFatalError(f"Logic engine error: {e}")
            result.errors.append(fatal.message)
            logger.exception("engine_fatal_error", **fatal.to_dict())

        result.execution_time = (time.monotonic() - start_time) * 1000

        logger.info(
            "logic_rules_completed",
            entity_type=context.entity_type,
            entity_id=context.entity_id,
            evaluated=result.total_rules_evaluated,
            triggered=result.rules_triggered,
            actions=result.actions_executed,
            errors=len(result.errors),
            duration_ms=round(result.execution_time, 2),
        )
        return result

    async def _resolve_rules(
        self,
        context: ExecutionContext,
        custom_rules: Optional[Sequence[RuleInput]],
        result: EngineResult,
    ) -> list[Union[Rule, RuleRecord]]:
        """Active rules to consider, in execution order."""
        if custom_rules is None:
            if self.selector is None:
                raise EngineFatalError("No rule store configured and no rules supplied")
            candidates: list[Union[Rule, RuleRecord]] = list(
                await self.selector.get_relevant_rules(context)
            )
        else:
            candidates = []
            for item in custom_rules:
                if isinstance(item, (Rule, RuleRecord)):
                    candidates.append(item)
                    continue
                try:
                    candidates.append(to_record(item))
                except Exception as e:
                    rule_id = item.get("id") if isinstance(item, dict) else None
                    result.errors.append(f"Error evaluating rule {rule_id}: {e}")
                    logger.error("rule_processing_error", rule_id=rule_id, error=str(e))

        active = [rule for rule in candidates if rule.is_active]
        return sorted(active, key=lambda r: r.sort_key(), reverse=True)

    async def _process_rule(
        self,
        item: Union[Rule, RuleRecord],
        data: Any,
        context: ExecutionContext,
        result: EngineResult,
    ) -> None:
        rule = decode_rule(item)

        if not self.evaluator.evaluate_rule(rule, data, context):
            return

        result.rules_triggered += 1
        logger.info(
            "rule_triggered",
            rule_id=rule.id,
            rule_name=rule.name,
            priority=rule.priority,
        )

        action_results = await self.dispatcher.execute_actions(rule, data, context)
        result.action_results.extend(action_results)
        result.actions_executed += len(action_results)
