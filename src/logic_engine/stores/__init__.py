"""External stores: rules, incidents and the activity log."""

from .base import RuleStore, IncidentStore, ActivityLog
from .sqlite import SqliteStore

__all__ = ["RuleStore", "IncidentStore", "ActivityLog", "SqliteStore"]
