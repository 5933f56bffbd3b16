"""Contracts for the external collaborators the engine talks to."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..rules.models import RuleRecord


@runtime_checkable
class RuleStore(Protocol):
    """Source of stored rules."""

    @property
    def revision(self) -> int:
        """Counter bumped on every rule mutation (used for cache invalidation)."""
        ...

    async def find_rules(
        self,
        is_active: bool = True,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> list[RuleRecord]:
        """
        Rules matching ``is_active`` whose entity_type equals ``entity_type``
        or is unset, and (when given) whose entity_id equals ``entity_id`` or
        is unset. Ordered by priority desc, created_at desc.
        """
        ...

    async def get_rule(self, rule_id: str) -> Optional[RuleRecord]:
        ...


@runtime_checkable
class IncidentStore(Protocol):
    """Accepts incident records and returns them with an id."""

    async def create_incident(self, record: dict[str, Any]) -> dict[str, Any]:
        ...


@runtime_checkable
class ActivityLog(Protocol):
    """Accepts activity entries and returns them with an id."""

    async def add_activity(self, record: dict[str, Any]) -> dict[str, Any]:
        ...
