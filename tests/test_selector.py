"""Tests for rule selection and the selection cache."""

import asyncio
import os
import sys
import tempfile
from datetime import datetime, timezone

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from logic_engine.core.config import RuleCacheConfig
from logic_engine.rules.models import ExecutionContext, RuleRecord
from logic_engine.rules.selector import RuleSelector
from logic_engine.stores.sqlite import SqliteStore


class CountingRuleStore:
    """In-memory rule store that counts fetches."""

    def __init__(self, rules):
        self.rules = rules
        self.revision = 0
        self.calls = 0

    async def find_rules(self, is_active=True, entity_type=None, entity_id=None):
        self.calls += 1
        return [r for r in self.rules if r.is_active == is_active]

    async def get_rule(self, rule_id):
        return next((r for r in self.rules if r.id == rule_id), None)


def record(rule_id, priority=0, **kwargs):
    return RuleRecord(id=rule_id, name=rule_id, priority=priority, **kwargs)


class TestRuleSelectorCache:
    """Test ordering and caching."""

    @pytest.mark.asyncio
    async def test_sorted_by_priority_then_created_at(self):
        store = CountingRuleStore([
            record("low", 1),
            record("old", 5, created_at=datetime(2024, 1, 1, tzinfo=timezone.utc)),
            record("new", 5, created_at=datetime(2024, 6, 1, tzinfo=timezone.utc)),
        ])

        rules = await RuleSelector(store).get_relevant_rules()

        assert [r.id for r in rules] == ["new", "old", "low"]

    @pytest.mark.asyncio
    async def test_no_cache_by_default(self):
        store = CountingRuleStore([record("a")])
        selector = RuleSelector(store)

        await selector.get_relevant_rules()
        await selector.get_relevant_rules()

        assert store.calls == 2

    @pytest.mark.asyncio
    async def test_cache_hit(self):
        store = CountingRuleStore([record("a")])
        selector = RuleSelector(store, RuleCacheConfig(enabled=True))
        context = ExecutionContext(entity_type="customer")

        first = await selector.get_relevant_rules(context)
        second = await selector.get_relevant_rules(context)

        assert store.calls == 1
        assert [r.id for r in first] == [r.id for r in second]

    @pytest.mark.asyncio
    async def test_cache_keyed_by_scope(self):
        store = CountingRuleStore([record("a")])
        selector = RuleSelector(store, RuleCacheConfig(enabled=True))

        await selector.get_relevant_rules(ExecutionContext(entity_type="customer"))
        await selector.get_relevant_rules(ExecutionContext(entity_type="incident"))

        assert store.calls == 2

    @pytest.mark.asyncio
    async def test_revision_change_invalidates(self):
        store = CountingRuleStore([record("a")])
        selector = RuleSelector(store, RuleCacheConfig(enabled=True))

        await selector.get_relevant_rules()
        store.rules.append(record("b"))
        store.revision += 1
        rules = await selector.get_relevant_rules()

        assert store.calls == 2
        assert {r.id for r in rules} == {"a", "b"}

    @pytest.mark.asyncio
    async def test_explicit_invalidate(self):
        store = CountingRuleStore([record("a")])
        selector = RuleSelector(store, RuleCacheConfig(enabled=True))

        await selector.get_relevant_rules()
        selector.invalidate()
        await selector.get_relevant_rules()

        assert store.calls == 2

    @pytest.mark.asyncio
    async def test_cache_bounded_by_max_entries(self):
        store = CountingRuleStore([record("a")])
        selector = RuleSelector(store, RuleCacheConfig(enabled=True, max_entries=3))

        for i in range(10):
            await selector.get_relevant_rules(
                ExecutionContext(entity_type="customer", entity_id=f"cust_{i}")
            )

        assert len(selector._cache) == 3
        assert ("customer", "cust_9") in selector._cache
        assert ("customer", "cust_0") not in selector._cache

    @pytest.mark.asyncio
    async def test_stale_entries_dropped_on_write(self):
        store = CountingRuleStore([record("a")])
        selector = RuleSelector(store, RuleCacheConfig(enabled=True))

        for i in range(5):
            await selector.get_relevant_rules(ExecutionContext(entity_id=f"e{i}"))
        store.revision += 1
        await selector.get_relevant_rules(ExecutionContext(entity_id="e0"))

        assert len(selector._cache) == 1

    @pytest.mark.asyncio
    async def test_expired_entries_dropped_on_write(self):
        store = CountingRuleStore([record("a")])
        selector = RuleSelector(store, RuleCacheConfig(enabled=True, ttl_seconds=0.05))

        for i in range(5):
            await selector.get_relevant_rules(ExecutionContext(entity_id=f"e{i}"))
        await asyncio.sleep(0.1)
        await selector.get_relevant_rules(ExecutionContext(entity_id="fresh"))

        assert len(selector._cache) == 1
        assert store.calls == 2


class TestRuleSelectorScope:
    """Test entity scoping against the SQLite store."""

    @pytest.fixture
    async def store(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            store = SqliteStore(os.path.join(tmpdir, "test.db"))
            await store.initialize()
            await store.create_rule(record("global"))
            await store.create_rule(record("customers", entity_type="customer"))
            await store.create_rule(
                record("one_customer", entity_type="customer", entity_id="cust_1")
            )
            await store.create_rule(record("incidents", entity_type="incident"))
            await store.create_rule(record("disabled", is_active=False))
            yield store
            await store.close()

    @pytest.mark.asyncio
    async def test_entity_type_scope(self, store):
        rules = await RuleSelector(store).get_relevant_rules(
            ExecutionContext(entity_type="customer")
        )

        assert {r.id for r in rules} == {"global", "customers", "one_customer"}

    @pytest.mark.asyncio
    async def test_entity_id_scope(self, store):
        rules = await RuleSelector(store).get_relevant_rules(
            ExecutionContext(entity_type="customer", entity_id="cust_2")
        )

        assert {r.id for r in rules} == {"global", "customers"}

    @pytest.mark.asyncio
    async def test_unscoped_context_sees_all_active(self, store):
        rules = await RuleSelector(store).get_relevant_rules(ExecutionContext())

        assert {r.id for r in rules} == {"global", "customers", "one_customer", "incidents"}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
