"""Tests for action dispatch."""

import json
import os
import sys
import tempfile

import httpx
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from logic_engine.core.config import WebhookConfig
from logic_engine.rules.actions import ActionDispatcher
from logic_engine.rules.models import Action, ActionKind, ExecutionContext, Rule
from logic_engine.stores.sqlite import SqliteStore


def make_rule(*actions):
    return Rule(id="rule_1", name="Test Rule", actions=list(actions))


def make_action(kind, **parameters):
    return Action(type=kind, parameters=parameters)


class TestActionDispatcher:
    """Test handlers without wired stores."""

    @pytest.fixture
    def dispatcher(self):
        return ActionDispatcher()

    @pytest.fixture
    def context(self):
        return ExecutionContext(
            entity_type="customer",
            entity_id="cust_123",
            mission_id="mission_789",
            user_id="agent_001",
        )

    async def run(self, dispatcher, action, data=None, context=None):
        return await dispatcher.execute_action(
            action, make_rule(action), data if data is not None else {}, context
        )

    def test_every_kind_has_a_handler(self):
        assert set(ActionDispatcher.HANDLERS) == set(ActionKind)

    @pytest.mark.asyncio
    async def test_missing_parameters(self, dispatcher, context):
        cases = [
            (make_action("notify_agent"), "agentId is required for notify_agent action"),
            (make_action("create_incident", title="x"),
             "title and severity are required for create_incident action"),
            (make_action("flag_entity"), "flagType is required for flag_entity action"),
            (make_action("update_field", field="status"),
             "field and value are required for update_field action"),
            (make_action("trigger_mission"), "missionId is required for trigger_mission action"),
            (make_action("send_email", recipient="a@example.com"),
             "recipient and subject are required for send_email action"),
            (make_action("webhook"), "url is required for webhook action"),
            (make_action("log_event"), "eventType is required for log_event action"),
            (make_action("escalate"), "escalationLevel is required for escalate action"),
            (make_action("assign_task", assignedTo="ops"),
             "assignedTo and taskTitle are required for assign_task action"),
        ]

        for action, message in cases:
            result = await self.run(dispatcher, action, context=context)
            assert result.success is False, action.type
            assert result.error == message

    @pytest.mark.asyncio
    async def test_notify_agent_defaults(self, dispatcher, context):
        result = await self.run(
            dispatcher, make_action("notify_agent", agentId="agent_7"), {"a": 1}, context
        )

        assert result.success
        assert result.result["message"] == "Rule triggered: customer data changed"
        assert result.result["priority"] == "medium"
        assert result.result["data"] == {"a": 1}

    @pytest.mark.asyncio
    async def test_create_incident_without_store(self, dispatcher, context):
        result = await self.run(
            dispatcher,
            make_action("create_incident", title="High risk", severity="high"),
            context=context,
        )

        assert result.success
        assert result.result["persisted"] is False
        assert result.result["description"] == "Automatically created by logic rule"
        assert result.result["status"] == "open"
        assert result.result["createdBy"] == "agent_001"
        assert result.result["missionId"] == "mission_789"

    @pytest.mark.asyncio
    async def test_update_field_accepts_falsy_value(self, dispatcher, context):
        result = await self.run(
            dispatcher,
            make_action("update_field", field="score", value=0),
            {"score": 42},
            context,
        )

        assert result.success
        assert result.result["oldValue"] == 42
        assert result.result["newValue"] == 0
        assert result.result["entityId"] == "cust_123"

    @pytest.mark.asyncio
    async def test_descriptive_handlers(self, dispatcher, context):
        flag = await self.run(dispatcher, make_action("flag_entity", flagType="fraud"), context=context)
        mission = await self.run(dispatcher, make_action("trigger_mission", missionId="m1"), context=context)
        email = await self.run(
            dispatcher,
            make_action("send_email", recipient="a@example.com", subject="Alert"),
            context=context,
        )
        escalate = await self.run(dispatcher, make_action("escalate", escalationLevel=2), context=context)
        task = await self.run(
            dispatcher,
            make_action("assign_task", assignedTo="ops", taskTitle="Review"),
            context=context,
        )

        assert flag.result["reason"] == "Flagged by logic rule"
        assert mission.result["actionType"] == "update"
        assert mission.result["triggeredBy"] == "logic-rule"
        assert email.result["template"] == "default"
        assert email.result["attachments"] == []
        assert escalate.result["assignedTo"] == "default-escalation-team"
        assert task.result["createdBy"] == "logic-engine"
        assert task.result["description"] == "Task created by logic rule"

    @pytest.mark.asyncio
    async def test_failure_does_not_affect_siblings(self, dispatcher, context):
        rule = make_rule(
            make_action("escalate"),
            make_action("escalate", escalationLevel=1),
        )

        results = await dispatcher.execute_actions(rule, {}, context)

        assert [r.success for r in results] == [False, True]
        assert all(r.rule_id == "rule_1" for r in results)

    @pytest.mark.asyncio
    async def test_parameter_interpolation(self, dispatcher, context):
        action = make_action(
            "create_incident",
            title="High risk: {{customer.name}}",
            severity="{{level}}",
            description="Score {{riskScore}} for {{unknown}}",
        )

        result = await self.run(
            dispatcher,
            action,
            {"customer": {"name": "Acme"}, "level": "high", "riskScore": 0.9},
            context,
        )

        assert result.result["title"] == "High risk: Acme"
        assert result.result["severity"] == "high"
        assert result.result["description"] == "Score 0.9 for {{unknown}}"

    @pytest.mark.asyncio
    async def test_whole_placeholder_keeps_type(self, dispatcher, context):
        result = await self.run(
            dispatcher,
            make_action("update_field", field="score", value="{{riskScore}}"),
            {"riskScore": 0.9},
            context,
        )

        assert result.result["newValue"] == 0.9

    @pytest.mark.asyncio
    async def test_payload_context_key_not_clobbered(self, dispatcher, context):
        result = await self.run(
            dispatcher,
            make_action("update_field", field="source", value="{{context}}"),
            {"context": "web-form"},
            context,
        )

        assert result.result["newValue"] == "web-form"

    @pytest.mark.asyncio
    async def test_execution_context_reference(self, dispatcher, context):
        result = await self.run(
            dispatcher,
            make_action("update_field", field="owner", value="{{context.entity_id}}"),
            {"status": "open"},
            context,
        )

        assert result.result["newValue"] == "cust_123"

    @pytest.mark.asyncio
    async def test_result_serializes(self, dispatcher, context):
        result = await self.run(dispatcher, make_action("flag_entity", flagType="vip"), context=context)
        data = result.to_dict()

        assert data["ruleId"] == "rule_1"
        assert data["action"]["type"] == "flag_entity"
        json.dumps(data)


class TestWebhook:
    """Test webhook dispatch."""

    @pytest.mark.asyncio
    async def test_disabled_describes_call(self):
        dispatcher = ActionDispatcher()
        action = make_action("webhook", url="https://hooks.example.com/x")

        result = await dispatcher.execute_action(action, make_rule(action), {"a": 1})

        assert result.success
        assert result.result["sent"] is False
        assert result.result["method"] == "POST"
        assert result.result["payload"]["data"] == {"a": 1}

    @pytest.mark.asyncio
    async def test_enabled_sends_request(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"ok": True})

        dispatcher = ActionDispatcher(
            webhook_config=WebhookConfig(enabled=True),
            http_transport=httpx.MockTransport(handler),
        )
        action = make_action(
            "webhook",
            url="https://hooks.example.com/x",
            method="put",
            payload={"alert": "{{status}}"},
        )

        result = await dispatcher.execute_action(action, make_rule(action), {"status": "failed"})

        assert result.success
        assert result.result["sent"] is True
        assert result.result["statusCode"] == 200
        assert seen["method"] == "PUT"
        assert seen["url"] == "https://hooks.example.com/x"
        assert seen["body"] == {"alert": "failed"}

    @pytest.mark.asyncio
    async def test_error_status_fails_action(self):
        dispatcher = ActionDispatcher(
            webhook_config=WebhookConfig(enabled=True),
            http_transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )
        action = make_action("webhook", url="https://hooks.example.com/x")

        result = await dispatcher.execute_action(action, make_rule(action), {})

        assert result.success is False
        assert "HTTP 503" in result.error


class TestPersistingHandlers:
    """Test handlers wired to the SQLite store."""

    @pytest.fixture
    async def store(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            store = SqliteStore(os.path.join(tmpdir, "test.db"))
            await store.initialize()
            yield store
            await store.close()

    @pytest.mark.asyncio
    async def test_create_incident_persists(self, store):
        dispatcher = ActionDispatcher(incident_store=store, activity_log=store)
        action = make_action("create_incident", title="Outage", severity="critical")
        context = ExecutionContext(mission_id="mission_1")

        result = await dispatcher.execute_action(action, make_rule(action), {}, context)

        assert result.success
        assert result.result["id"]
        assert result.result["readToken"].startswith("auto_")

        incidents = await store.list_incidents(mission_id="mission_1")
        assert len(incidents) == 1
        assert incidents[0]["title"] == "Outage"
        assert incidents[0]["created_by"] == "logic-engine"
        assert incidents[0]["tags"] == "automated,logic-rule"

    @pytest.mark.asyncio
    async def test_log_event_persists(self, store):
        dispatcher = ActionDispatcher(incident_store=store, activity_log=store)
        action = make_action("log_event", eventType="pipeline_failed", severity="warning")

        result = await dispatcher.execute_action(action, make_rule(action), {"status": "failed"})

        assert result.success
        entries = await store.list_activity("system", "logic-engine")
        assert len(entries) == 1
        assert entries[0]["action"] == "pipeline_failed"
        assert entries[0]["description"] == "Logic rule executed: pipeline_failed"
        assert entries[0]["metadata"]["severity"] == "warning"
        assert entries[0]["metadata"]["ruleData"] == {"status": "failed"}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
