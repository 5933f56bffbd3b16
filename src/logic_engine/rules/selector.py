"""Selection of the rules applicable to an execution context."""

import time
from dataclasses import dataclass
from typing import Optional

import structlog

from ..core.config import RuleCacheConfig
from ..stores.base import RuleStore
from .models import ExecutionContext, RuleRecord


logger = structlog.get_logger()


@dataclass
class _CacheEntry:
    revision: int
    expires_at: float
    rules: list[RuleRecord]


class RuleSelector:
    """
    Fetches active rules for an entity scope from the rule store.

    Rules whose entity_type / entity_id are unset are global and apply to
    every scope. Results are ordered by priority desc, then created_at desc.

    By default every call hits the store. With the cache enabled, results are
    kept per (entity_type, entity_id) until the TTL passes or the store's
    revision changes (any rule create/update/delete). Expired and stale entries
    are dropped on every write and at most ``max_entries`` scopes are kept.
    """

    def __init__(
        self,
        store: RuleStore,
        cache_config: Optional[RuleCacheConfig] = None,
    ):
        self.store = store
        self.cache_config = cache_config or RuleCacheConfig()
        self._cache: dict[tuple[Optional[str], Optional[str]], _CacheEntry] = {}

    async def get_relevant_rules(
        self,
        context: Optional[ExecutionContext] = None,
    ) -> list[RuleRecord]:
        """Active rules in scope for ``context``, in execution order."""
        context = context or ExecutionContext()
        key = (context.entity_type, context.entity_id)

        if self.cache_config.enabled:
            entry = self._cache.get(key)
            if (
                entry is not None
                and entry.revision == self.store.revision
                and entry.expires_at > time.monotonic()
            ):
                logger.debug("rule_cache_hit", entity_type=key[0], entity_id=key[1])
                return list(entry.rules)

        revision = self.store.revision
        rules = await self.store.find_rules(
            is_active=True,
            entity_type=context.entity_type,
            entity_id=context.entity_id,
        )
        rules = sorted(rules, key=lambda r: r.sort_key(), reverse=True)

        if self.cache_config.enabled:
            self._store_entry(key, revision, rules)

        logger.debug(
            "rules_selected",
            entity_type=key[0],
            entity_id=key[1],
            count=len(rules),
        )
        return list(rules)

    def _store_entry(
        self,
        key: tuple[Optional[str], Optional[str]],
        revision: int,
        rules: list[RuleRecord],
    ) -> None:
        now = time.monotonic()
        # Drop expired and stale selections before adding a new one
        self._cache = {
            k: entry for k, entry in self._cache.items()
            if entry.expires_at > now and entry.revision == revision and k != key
        }
        while len(self._cache) >= self.cache_config.max_entries:
            # Dicts keep insertion order; the first entry is the oldest
            del self._cache[next(iter(self._cache))]

        self._cache[key] = _CacheEntry(
            revision=revision,
            expires_at=now + self.cache_config.ttl_seconds,
            rules=rules,
        )

    def invalidate(self) -> None:
        """Drop every cached selection."""
        self._cache.clear()
