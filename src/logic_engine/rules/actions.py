"""Action dispatch for the logic engine."""

import re
from typing import Any, Awaitable, Callable, Mapping, Optional

import httpx
import structlog

from ..core.config import WebhookConfig
from ..core.errors import ActionExecutionError, LogicEngineError
from ..stores.base import ActivityLog, IncidentStore
from .models import Action, ActionKind, ActionResult, ExecutionContext, Rule, utcnow
from .resolver import navigate_path


logger = structlog.get_logger()

ENGINE_ACTOR = "logic-engine"

_PLACEHOLDER = re.compile(r"\{\{\s*([\w.]+)\s*\}\}")


def _require(params: dict[str, Any], kind: ActionKind, *names: str) -> None:
    missing = [name for name in names if not params.get(name)]
    if missing:
        raise ActionExecutionError(
            f"{' and '.join(names)} {'is' if len(names) == 1 else 'are'} "
            f"required for {kind.value} action",
            action_type=kind.value,
        )


class ActionDispatcher:
    """
    Executes rule actions by kind.

    The set of kinds is closed (``ActionKind``) and every kind has exactly one
    handler in ``HANDLERS``. Handlers either write to a wired store (incidents,
    activity log), call out over HTTP (webhook, when enabled) or return a
    structured description of the intended effect.

    Every handler failure is caught here and reported as an unsuccessful
    ``ActionResult``; it never reaches sibling actions or other rules.
    """

    def __init__(
        self,
        incident_store: Optional[IncidentStore] = None,
        activity_log: Optional[ActivityLog] = None,
        webhook_config: Optional[WebhookConfig] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.incident_store = incident_store
        self.activity_log = activity_log
        self.webhook_config = webhook_config or WebhookConfig()
        self._http_transport = http_transport

    async def execute_action(
        self,
        action: Action,
        rule: Rule,
        data: Any,
        context: Optional[ExecutionContext] = None,
    ) -> ActionResult:
        """
        Execute one action.

        Args:
            action: The action to run
            rule: Owning rule (recorded on the result)
            data: Input payload the rule matched
            context: Execution context

        Returns:
            ActionResult with success flag and result or error
        """
        context = context or ExecutionContext()
        result = ActionResult(
            action=action,
            rule_id=rule.id,
            rule_name=rule.name,
            executed_at=utcnow(),
        )

        try:
            handler = self.HANDLERS[action.type]
            params = self._interpolate_params(action.parameters, data, context)
            result.result = await handler(self, params, data, context)
            result.success = True
            logger.info(
                "action_executed",
                rule_id=rule.id,
                action_type=action.type.value,
            )
        except Exception as e:
            if not isinstance(e, LogicEngineError):
                e = ActionExecutionError(
                    str(e), action_type=action.type.value, rule_id=rule.id
                )
            if e.context.get("rule_id") is None:
                e.context["rule_id"] = rule.id
            result.error = e.message
            logger.warning(
                "action_failed",
                rule_id=rule.id,
                action_type=action.type.value,
                error=e.message,
                fingerprint=e.fingerprint(),
            )

        return result

    async def execute_actions(
        self,
        rule: Rule,
        data: Any,
        context: Optional[ExecutionContext] = None,
    ) -> list[ActionResult]:
        """Run every action of a rule in declared order."""
        return [
            await self.execute_action(action, rule, data, context)
            for action in rule.actions
        ]

    # ==================== Parameter interpolation ====================

    def _interpolate_params(
        self,
        params: dict[str, Any],
        data: Any,
        context: ExecutionContext,
    ) -> dict[str, Any]:
        """Fill ``{{path}}`` references from the payload, metadata or context."""
        variables: dict[str, Any] = dict(context.metadata)
        if isinstance(data, Mapping):
            variables.update(data)
        # A payload key named "context" wins over the execution context
        variables.setdefault("context", context.model_dump())

        def lookup(path: str) -> Any:
            if path in variables:
                return variables[path]
            return navigate_path(variables, path.split("."))

        def replace_vars(value: Any) -> Any:
            if isinstance(value, str):
                whole = _PLACEHOLDER.fullmatch(value)
                if whole:
                    resolved = lookup(whole.group(1))
                    return value if resolved is None else resolved

                def substitute(match: re.Match) -> str:
                    resolved = lookup(match.group(1))
                    return match.group(0) if resolved is None else str(resolved)

                return _PLACEHOLDER.sub(substitute, value)
            elif isinstance(value, dict):
                return {k: replace_vars(v) for k, v in value.items()}
            elif isinstance(value, list):
                return [replace_vars(v) for v in value]
            return value

        return replace_vars(params)

    # ==================== Handlers ====================

    async def _notify_agent(self, params, data, context) -> dict[str, Any]:
        _require(params, ActionKind.NOTIFY_AGENT, "agentId")
        notification = {
            "agentId": params["agentId"],
            "message": params.get("message")
                or f"Rule triggered: {context.entity_type} data changed",
            "priority": params.get("priority") or "medium",
            "data": data,
            "context": context.model_dump(by_alias=True),
            "timestamp": utcnow(),
        }
        logger.info("agent_notified", agent_id=notification["agentId"])
        return notification

    async def _create_incident(self, params, data, context) -> dict[str, Any]:
        _require(params, ActionKind.CREATE_INCIDENT, "title", "severity")
        record = {
            "title": params["title"],
            "description": params.get("description")
                or "Automatically created by logic rule",
            "severity": params["severity"],
            "status": "open",
            "sourceType": "agent",
            "tags": "automated,logic-rule",
            "createdBy": context.user_id or ENGINE_ACTOR,
            "assignedTo": params.get("assignedTo"),
            "missionId": context.mission_id,
        }
        if self.incident_store is None:
            return {**record, "persisted": False}
        return await self.incident_store.create_incident(record)

    async def _flag_entity(self, params, data, context) -> dict[str, Any]:
        _require(params, ActionKind.FLAG_ENTITY, "flagType")
        return {
            "entityType": context.entity_type,
            "entityId": context.entity_id,
            "flagType": params["flagType"],
            "reason": params.get("reason") or "Flagged by logic rule",
            "priority": params.get("priority") or "medium",
            "timestamp": utcnow(),
        }

    async def _update_field(self, params, data, context) -> dict[str, Any]:
        # value may legitimately be falsy (0, False, ""), only absence is an error
        if not params.get("field") or "value" not in params:
            raise ActionExecutionError(
                "field and value are required for update_field action",
                action_type=ActionKind.UPDATE_FIELD.value,
            )
        field = params["field"]
        old_value = data.get(field) if isinstance(data, Mapping) else None
        return {
            "entityType": context.entity_type,
            "entityId": context.entity_id,
            "field": field,
            "oldValue": old_value,
            "newValue": params["value"],
            "reason": params.get("reason") or "Updated by logic rule",
            "timestamp": utcnow(),
        }

    async def _trigger_mission(self, params, data, context) -> dict[str, Any]:
        _require(params, ActionKind.TRIGGER_MISSION, "missionId")
        return {
            "missionId": params["missionId"],
            "actionType": params.get("actionType") or "update",
            "parameters": params.get("parameters") or {},
            "triggeredBy": "logic-rule",
            "timestamp": utcnow(),
        }

    async def _send_email(self, params, data, context) -> dict[str, Any]:
        _require(params, ActionKind.SEND_EMAIL, "recipient", "subject")
        return {
            "to": params["recipient"],
            "subject": params["subject"],
            "template": params.get("template") or "default",
            "attachments": params.get("attachments") or [],
            "data": data,
            "context": context.model_dump(by_alias=True),
            "timestamp": utcnow(),
        }

    async def _webhook(self, params, data, context) -> dict[str, Any]:
        _require(params, ActionKind.WEBHOOK, "url")
        call = {
            "url": params["url"],
            "method": (params.get("method") or self.webhook_config.default_method).upper(),
            "headers": params.get("headers") or {"Content-Type": "application/json"},
            "payload": params.get("payload")
                or {"data": data, "context": context.model_dump(mode="json", by_alias=True)},
            "timestamp": utcnow(),
        }
        if not self.webhook_config.enabled:
            return {**call, "sent": False}

        async with httpx.AsyncClient(
            transport=self._http_transport,
            timeout=self.webhook_config.timeout_seconds,
        ) as client:
            response = await client.request(
                method=call["method"],
                url=call["url"],
                headers=call["headers"],
                json=call["payload"],
            )

        if response.status_code >= 400:
            raise ActionExecutionError(
                f"Webhook {call['url']} returned HTTP {response.status_code}",
                action_type=ActionKind.WEBHOOK.value,
            )

        return {
            **call,
            "sent": True,
            "statusCode": response.status_code,
            "body": response.text[: self.webhook_config.max_response_chars],
        }

    async def _log_event(self, params, data, context) -> dict[str, Any]:
        _require(params, ActionKind.LOG_EVENT, "eventType")
        record = {
            "entityType": context.entity_type or "system",
            "entityId": context.entity_id or ENGINE_ACTOR,
            "action": params["eventType"],
            "actor": context.user_id or ENGINE_ACTOR,
            "actorName": "Logic Engine",
            "description": params.get("details")
                or f"Logic rule executed: {params['eventType']}",
            "metadata": {
                "severity": params.get("severity") or "info",
                "ruleData": data,
                "context": context.model_dump(mode="json", by_alias=True),
            },
        }
        if self.activity_log is None:
            return {**record, "persisted": False}
        return await self.activity_log.add_activity(record)

    async def _escalate(self, params, data, context) -> dict[str, Any]:
        _require(params, ActionKind.ESCALATE, "escalationLevel")
        return {
            "level": params["escalationLevel"],
            "reason": params.get("reason") or "Escalated by logic rule",
            "assignedTo": params.get("assignedTo") or "default-escalation-team",
            "entityType": context.entity_type,
            "entityId": context.entity_id,
            "data": data,
            "timestamp": utcnow(),
        }

    async def _assign_task(self, params, data, context) -> dict[str, Any]:
        _require(params, ActionKind.ASSIGN_TASK, "assignedTo", "taskTitle")
        return {
            "assignedTo": params["assignedTo"],
            "title": params["taskTitle"],
            "description": params.get("description") or "Task created by logic rule",
            "dueDate": params.get("dueDate"),
            "priority": params.get("priority") or "medium",
            "entityType": context.entity_type,
            "entityId": context.entity_id,
            "createdBy": ENGINE_ACTOR,
            "timestamp": utcnow(),
        }

    HANDLERS: dict[ActionKind, Callable[..., Awaitable[Any]]] = {
        ActionKind.NOTIFY_AGENT: _notify_agent,
        ActionKind.CREATE_INCIDENT: _create_incident,
        ActionKind.FLAG_ENTITY: _flag_entity,
        ActionKind.UPDATE_FIELD: _update_field,
        ActionKind.TRIGGER_MISSION: _trigger_mission,
        ActionKind.SEND_EMAIL: _send_email,
        ActionKind.WEBHOOK: _webhook,
        ActionKind.LOG_EVENT: _log_event,
        ActionKind.ESCALATE: _escalate,
        ActionKind.ASSIGN_TASK: _assign_task,
    }


_unhandled = set(ActionKind) - set(ActionDispatcher.HANDLERS)
if _unhandled:
    raise RuntimeError(
        f"No handler for action kinds: {sorted(k.value for k in _unhandled)}"
    )
