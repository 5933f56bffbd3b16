"""Tests for the SQLite store."""

import os
import sys
import tempfile
from datetime import date, datetime, timezone

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from logic_engine.core.errors import StoreError
from logic_engine.rules.models import Rule, RuleRecord
from logic_engine.stores.base import ActivityLog, IncidentStore, RuleStore
from logic_engine.stores.sqlite import SqliteStore


class TestSqliteStore:
    """Test rule, incident and activity persistence."""

    @pytest.fixture
    async def store(self):
        """Create a temporary store."""
        with tempfile.TemporaryDirectory() as tmpdir:
            store = SqliteStore(os.path.join(tmpdir, "test_store.db"))
            await store.initialize()
            yield store
            await store.close()

    def test_implements_contracts(self):
        store = SqliteStore(":memory:")

        assert isinstance(store, RuleStore)
        assert isinstance(store, IncidentStore)
        assert isinstance(store, ActivityLog)

    @pytest.mark.asyncio
    async def test_uninitialized_store_raises(self):
        store = SqliteStore(":memory:")

        with pytest.raises(StoreError):
            await store.get_rule("x")

    @pytest.mark.asyncio
    async def test_rule_round_trip(self, store):
        rule = Rule(
            id="r1",
            name="Rule 1",
            priority=5,
            conditions=[{"field": "status", "operator": "equals", "value": "failed"}],
            actions=[{"type": "log_event", "parameters": {"eventType": "failed"}}],
            logic_type="OR",
            created_at=datetime(2024, 3, 1, 12, 30, tzinfo=timezone.utc),
        )
        await store.create_rule(rule)

        loaded = await store.get_rule("r1")
        decoded = loaded.decode()

        assert decoded.priority == 5
        assert decoded.logic_type.value == "OR"
        assert decoded.conditions[0].value == "failed"
        assert decoded.actions[0].parameters == {"eventType": "failed"}
        assert loaded.created_at == rule.created_at

    @pytest.mark.asyncio
    async def test_undated_rule_stamped_on_create(self, store):
        created = await store.create_rule({"id": "r1", "name": "Rule 1"})

        loaded = await store.get_rule("r1")

        assert created.created_at is not None
        assert loaded.created_at == created.created_at

    @pytest.mark.asyncio
    async def test_date_literals_in_blobs(self, store):
        await store.create_rule({
            "id": "due",
            "name": "Due",
            "conditions": [
                {"field": "dueDate", "operator": "less_than", "value": date(2024, 6, 1), "dataType": "date"},
            ],
        })
        await store.update_rule(
            "due",
            conditions=[{"field": "dueDate", "operator": "greater_than", "value": date(2024, 7, 1)}],
        )

        condition = (await store.get_rule("due")).decode().conditions[0]

        assert condition.operator == "greater_than"
        assert condition.value == "2024-07-01"

    @pytest.mark.asyncio
    async def test_blobs_stored_verbatim(self, store):
        await store.create_rule(RuleRecord(id="bad", name="Bad", conditions="{not json"))

        loaded = await store.get_rule("bad")

        assert loaded.conditions == "{not json"

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self, store):
        await store.create_rule({"id": "dup", "name": "Dup"})

        with pytest.raises(StoreError):
            await store.create_rule({"id": "dup", "name": "Dup again"})

    @pytest.mark.asyncio
    async def test_revision_tracks_mutations(self, store):
        assert store.revision == 0

        await store.create_rule({"id": "r1", "name": "Rule 1"})
        await store.update_rule("r1", priority=3)
        assert await store.delete_rule("r1")
        assert not await store.delete_rule("r1")

        assert store.revision == 3

    @pytest.mark.asyncio
    async def test_update_rule(self, store):
        await store.create_rule({"id": "r1", "name": "Rule 1"})

        updated = await store.update_rule(
            "r1",
            is_active=False,
            actions=[{"type": "escalate", "parameters": {"escalationLevel": 2}}],
        )

        assert updated.is_active is False
        assert await store.find_rules(is_active=True) == []
        loaded = await store.get_rule("r1")
        assert loaded.decode().actions[0].parameters["escalationLevel"] == 2

    @pytest.mark.asyncio
    async def test_update_missing_rule(self, store):
        with pytest.raises(StoreError):
            await store.update_rule("missing", priority=1)

    @pytest.mark.asyncio
    async def test_list_rules_includes_inactive(self, store):
        await store.create_rule({"id": "on", "name": "On", "priority": 1})
        await store.create_rule({"id": "off", "name": "Off", "isActive": False})

        rules = await store.list_rules()

        assert [r.id for r in rules] == ["on", "off"]

    @pytest.mark.asyncio
    async def test_incidents(self, store):
        created = await store.create_incident({
            "title": "Outage",
            "severity": "critical",
            "missionId": "m1",
        })
        await store.create_incident({"title": "Other", "severity": "low"})

        loaded = await store.get_incident(created["id"])

        assert loaded["title"] == "Outage"
        assert loaded["status"] == "open"
        assert loaded["read_token"] == created["readToken"]
        assert len(await store.list_incidents()) == 2
        assert len(await store.list_incidents(mission_id="m1")) == 1
        assert await store.get_incident("missing") is None

    @pytest.mark.asyncio
    async def test_activity(self, store):
        await store.add_activity({
            "entityType": "customer",
            "entityId": "cust_1",
            "action": "risk_flagged",
            "metadata": {"score": 0.9},
        })

        entries = await store.list_activity("customer", "cust_1")

        assert len(entries) == 1
        assert entries[0]["metadata"] == {"score": 0.9}
        assert await store.list_activity("customer", "cust_2") == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
