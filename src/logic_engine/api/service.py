"""Invocation surface used by the HTTP layer and test harnesses."""

from dataclasses import dataclass
from typing import Any, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from ..core.errors import (
    ErrorCategory,
    LogicEngineError,
    RuleNotFoundError,
    ValidationError,
)
from ..rules.engine import LogicEngine
from ..rules.models import ExecutionContext, utcnow
from ..rules.tester import RuleTester
from ..stores.base import RuleStore


logger = structlog.get_logger()


@dataclass
class ServiceResponse:
    """Uniform response: success flag plus a result or an error."""
    success: bool
    status: int
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    details: Optional[str] = None
    test_data: Any = None
    context: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        if not self.success:
            body: dict[str, Any] = {"success": False, "error": self.error}
            if self.details:
                body["details"] = self.details
            return body
        return {
            "success": True,
            "result": self.result,
            "testData": self.test_data,
            "context": self.context,
        }


def status_for(error: Exception) -> int:
    """HTTP status for an error: 4xx for caller causes, 5xx otherwise."""
    if isinstance(error, LogicEngineError):
        if error.category == ErrorCategory.NOT_FOUND:
            return 404
        if error.category == ErrorCategory.VALIDATION:
            return 400
    return 500


class LogicEngineService:
    """
    Runs the engine on behalf of an API caller.

    Operations:
    - run_all: every applicable rule for a payload and context
    - run_rule: one stored rule, as a dry run
    - sample_payloads: canonical payloads per entity category

    Boundary validation errors become 4xx responses; anything unexpected
    becomes a 500 response. Nothing is raised to the caller.
    """

    def __init__(
        self,
        engine: LogicEngine,
        rule_store: Optional[RuleStore] = None,
        tester: Optional[RuleTester] = None,
    ):
        self.engine = engine
        self.rule_store = rule_store
        self.tester = tester or RuleTester(dispatcher=engine.dispatcher)

    async def handle_test_request(self, body: dict[str, Any]) -> ServiceResponse:
        """Dispatch a ``{testData, context, ruleId?, entityType?, entityId?}`` body."""
        if body.get("ruleId"):
            return await self.run_rule(
                body["ruleId"],
                body.get("testData"),
                body.get("context"),
            )
        return await self.run_all(
            body.get("testData"),
            body.get("context"),
            entity_type=body.get("entityType"),
            entity_id=body.get("entityId"),
        )

    async def run_all(
        self,
        test_data: Any,
        context: Optional[dict[str, Any]] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> ServiceResponse:
        """Run all rules applicable to the context against ``test_data``."""
        try:
            self._require_test_data(test_data)
            execution_context = self._build_context(context, entity_type, entity_id)
            result = await self.engine.run_logic_rules(test_data, execution_context)
        except Exception as e:
            return self._failure("Failed to test logic engine", e)

        return ServiceResponse(
            success=True,
            status=200,
            result=result.to_dict(),
            test_data=test_data,
            context=execution_context.model_dump(mode="json", by_alias=True),
        )

    async def run_rule(
        self,
        rule_id: str,
        test_data: Any,
        context: Optional[dict[str, Any]] = None,
    ) -> ServiceResponse:
        """Dry-run one stored rule against ``test_data``."""
        try:
            self._require_test_data(test_data)
            execution_context = self._build_context(context)
            if self.rule_store is None:
                raise LogicEngineError("No rule store configured")

            record = await self.rule_store.get_rule(rule_id)
            if record is None:
                raise RuleNotFoundError(rule_id)

            result = await self.tester.test_rule(record, test_data, execution_context)
        except Exception as e:
            return self._failure("Failed to test logic engine", e)

        return ServiceResponse(
            success=True,
            status=200,
            result=result.to_dict(),
            test_data=test_data,
            context=execution_context.model_dump(mode="json", by_alias=True),
        )

    def sample_payloads(self) -> dict[str, Any]:
        """Canonical test payloads and contexts per entity category."""
        now = utcnow().isoformat()
        return {
            "sampleTestData": {
                "customer": {
                    "riskScore": 0.85,
                    "churnProbability": 0.7,
                    "segment": "enterprise",
                    "lastLoginDays": 45,
                    "totalSpent": 125000,
                    "email": "customer@example.com",
                    "status": "active",
                },
                "incident": {
                    "severity": "critical",
                    "status": "open",
                    "title": "System outage detected",
                    "sourceType": "monitoring",
                    "createdAt": now,
                    "affectedUsers": 1500,
                    "estimatedDowntime": 30,
                },
                "mission": {
                    "status": "active",
                    "name": "Q1 Security Audit",
                    "startDate": "2024-01-01",
                    "endDate": "2024-03-31",
                    "progress": 75,
                    "budget": 50000,
                    "teamSize": 8,
                },
                "pipeline": {
                    "status": "failed",
                    "executionTime": 3600,
                    "errorRate": 0.15,
                    "dataQualityScore": 0.65,
                    "recordsProcessed": 10000,
                    "lastRun": now,
                },
                "anomaly": {
                    "severity": "high",
                    "resolved": False,
                    "title": "Unusual traffic pattern detected",
                    "resourceType": "network",
                    "detectedAt": now,
                    "confidence": 0.92,
                    "impact": "medium",
                },
            },
            "sampleContexts": {
                "customer": {"entityType": "customer", "entityId": "cust_123", "userId": "agent_001"},
                "incident": {
                    "entityType": "incident",
                    "entityId": "inc_456",
                    "missionId": "mission_789",
                    "userId": "agent_002",
                },
                "mission": {"entityType": "mission", "entityId": "mission_789", "userId": "manager_001"},
                "pipeline": {"entityType": "pipeline", "entityId": "pipe_321", "userId": "system"},
                "anomaly": {"entityType": "anomaly", "entityId": "anom_654", "userId": "detector_ai"},
            },
            "usage": {
                "testSpecificRule": "POST with { testData, context, ruleId }",
                "testAllRules": "POST with { testData, context, entityType?, entityId? }",
                "getSamples": "GET this endpoint",
            },
        }

    def _require_test_data(self, test_data: Any) -> None:
        if test_data is None:
            raise ValidationError("testData is required", field="testData")

    def _build_context(
        self,
        context: Optional[dict[str, Any]],
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> ExecutionContext:
        if context is not None and not isinstance(context, dict):
            raise ValidationError("context must be an object", field="context")

        values = dict(context or {})
        if entity_type:
            values["entityType"] = entity_type
        if entity_id:
            values["entityId"] = entity_id

        try:
            return ExecutionContext.model_validate(values)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid context: {e}", field="context") from e

    def _failure(self, message: str, error: Exception) -> ServiceResponse:
        status = status_for(error)
        if status >= 500:
            logger.exception("logic_engine_request_failed", error=str(error))
            return ServiceResponse(
                success=False, status=status, error=message, details=str(error)
            )

        logger.warning("logic_engine_request_rejected", status=status, error=str(error))
        return ServiceResponse(success=False, status=status, error=str(error))
