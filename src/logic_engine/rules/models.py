"""Rule, condition, action and result types.

Rules come from an external store as ``RuleRecord`` rows whose conditions and
actions are serialized blobs. ``decode_rule`` turns a record into a typed
``Rule`` once per run; any decode failure surfaces as ``RuleParseError``.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from ..core.errors import RuleParseError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


_UNDATED = datetime.min.replace(tzinfo=timezone.utc)


class LogicType(str, Enum):
    """How a rule combines its conditions."""
    AND = "AND"
    OR = "OR"


class Operator(str, Enum):
    """Comparison operators understood by the operator table."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN = "less_than"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"
    IN = "in"
    NOT_IN = "not_in"


class ActionKind(str, Enum):
    """Closed set of action kinds a rule can dispatch."""
    NOTIFY_AGENT = "notify_agent"
    CREATE_INCIDENT = "create_incident"
    FLAG_ENTITY = "flag_entity"
    UPDATE_FIELD = "update_field"
    TRIGGER_MISSION = "trigger_mission"
    SEND_EMAIL = "send_email"
    WEBHOOK = "webhook"
    LOG_EVENT = "log_event"
    ESCALATE = "escalate"
    ASSIGN_TASK = "assign_task"


class _Model(BaseModel):
    """Accepts camelCase or snake_case keys, serializes camelCase."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class Condition(_Model):
    """One comparison between a resolved field and a literal."""
    id: Optional[str] = None
    field: str
    # Kept as a plain string: unknown operators evaluate false with a warning
    # instead of rejecting the whole rule.
    operator: str
    value: Any = None
    data_type: Optional[str] = None

    @field_validator("field")
    @classmethod
    def _field_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("condition field must not be empty")
        return value


class Action(_Model):
    """A side-effecting operation dispatched when a rule triggers."""
    id: Optional[str] = None
    type: ActionKind
    target: Optional[str] = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    message: Optional[str] = None

    @field_validator("parameters", mode="before")
    @classmethod
    def _parameters_default(cls, value: Any) -> Any:
        return {} if value is None else value


class ExecutionContext(_Model):
    """Ambient identity and metadata supplementing the payload."""
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    mission_id: Optional[str] = None
    user_id: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_default(cls, value: Any) -> Any:
        return {} if value is None else value


class _RuleFields(_Model):
    """Scalar columns shared by stored records and decoded rules."""
    id: str
    name: str
    description: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    is_active: bool = True
    priority: int = 0
    created_by: Optional[str] = None
    # None until stored; undated rules keep their supplied order on ties.
    created_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("created_at", "updated_at")
    @classmethod
    def _aware(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Naive timestamps are stored as UTC; keep ordering comparable.
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def sort_key(self) -> tuple[int, datetime]:
        """
        Priority desc, then created_at desc when used with reverse=True.

        Undated rules sort after dated ones of the same priority and compare
        equal among themselves, so a stable sort keeps their given order.
        """
        return (self.priority, self.created_at or _UNDATED)


class Rule(_RuleFields):
    """A decoded, read-only rule."""
    conditions: list[Condition] = Field(default_factory=list)
    actions: list[Action] = Field(default_factory=list)
    logic_type: LogicType = LogicType.AND

    @field_validator("logic_type", mode="before")
    @classmethod
    def _upper_logic_type(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class RuleRecord(_RuleFields):
    """A rule as persisted: conditions and actions are undecoded blobs."""
    conditions: Union[str, list[Any]] = "[]"
    actions: Union[str, list[Any]] = "[]"
    logic_type: str = "AND"

    def decode(self) -> Rule:
        """Decode the blobs into a typed ``Rule``."""
        try:
            conditions = _load_blob(self.conditions)
            actions = _load_blob(self.actions)
        except json.JSONDecodeError as e:
            raise RuleParseError(
                f"Invalid JSON in rule {self.id}: {e}", rule_id=self.id
            ) from e

        payload = self.model_dump(exclude={"conditions", "actions"})
        payload["conditions"] = conditions
        payload["actions"] = actions
        try:
            return Rule.model_validate(payload)
        except PydanticValidationError as e:
            raise RuleParseError(
                f"Invalid conditions/actions in rule {self.id}: {e}",
                rule_id=self.id,
            ) from e

    @classmethod
    def from_rule(cls, rule: Rule) -> "RuleRecord":
        """Serialize a typed rule back into its stored form."""
        data = rule.model_dump(mode="json", exclude={"conditions", "actions"})
        return cls.model_validate({
            **data,
            "conditions": json.dumps(
                [c.model_dump(mode="json", by_alias=True) for c in rule.conditions]
            ),
            "actions": json.dumps(
                [a.model_dump(mode="json", by_alias=True) for a in rule.actions]
            ),
        })


RuleLike = Union[Rule, RuleRecord, dict[str, Any]]


def _load_blob(blob: Union[str, list[Any]]) -> Any:
    if isinstance(blob, str):
        return json.loads(blob)
    return blob


def decode_rule(item: RuleLike) -> Rule:
    """Decode any accepted rule shape into a ``Rule``."""
    if isinstance(item, Rule):
        return item
    if isinstance(item, RuleRecord):
        return item.decode()
    try:
        return RuleRecord.model_validate(item).decode()
    except PydanticValidationError as e:
        rule_id = item.get("id") if isinstance(item, dict) else None
        raise RuleParseError(f"Invalid rule record: {e}", rule_id=rule_id) from e


def to_record(item: RuleLike) -> RuleRecord:
    """Coerce any accepted rule shape into a ``RuleRecord`` without decoding."""
    if isinstance(item, RuleRecord):
        return item
    if isinstance(item, Rule):
        return RuleRecord.from_rule(item)
    return RuleRecord.model_validate(item)


# ==================== Results ====================


@dataclass
class ActionResult:
    """Outcome of one dispatched action."""
    action: Action
    rule_id: str
    rule_name: str
    success: bool = False
    result: Any = None
    error: Optional[str] = None
    executed_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.model_dump(mode="json", by_alias=True),
            "ruleId": self.rule_id,
            "ruleName": self.rule_name,
            "success": self.success,
            "result": _jsonable(self.result),
            "error": self.error,
            "executedAt": self.executed_at.isoformat(),
        }


@dataclass
class EngineResult:
    """Aggregate outcome of one engine run."""
    total_rules_evaluated: int = 0
    rules_triggered: int = 0
    actions_executed: int = 0
    action_results: list[ActionResult] = field(default_factory=list)
    execution_time: float = 0       # milliseconds
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalRulesEvaluated": self.total_rules_evaluated,
            "rulesTriggered": self.rules_triggered,
            "actionsExecuted": self.actions_executed,
            "actionResults": [r.to_dict() for r in self.action_results],
            "executionTime": self.execution_time,
            "errors": list(self.errors),
        }


@dataclass
class ConditionResult:
    condition: Condition
    result: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "condition": self.condition.model_dump(mode="json", by_alias=True),
            "result": self.result,
        }


@dataclass
class RuleTestResult:
    """Dry-run report for a single rule."""
    triggered: bool
    condition_results: list[ConditionResult] = field(default_factory=list)
    action_results: Optional[list[ActionResult]] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "triggered": self.triggered,
            "conditionResults": [c.to_dict() for c in self.condition_results],
        }
        if self.action_results is not None:
            data["actionResults"] = [r.to_dict() for r in self.action_results]
        return data


def _jsonable(value: Any) -> Any:
    """Make handler results JSON friendly (datetimes, models)."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value
