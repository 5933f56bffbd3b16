"""SQLite-backed rule store, incident store and activity log."""

import asyncio
import json
import secrets
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import aiosqlite
import structlog

from ..core.errors import StoreError
from ..rules.models import RuleLike, RuleRecord, to_record, utcnow


logger = structlog.get_logger()


def _timestamp(value: datetime) -> str:
    # Fixed-width UTC ISO strings sort the same lexicographically and in time.
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _blob(value: Any) -> str:
    # YAML rule files may carry date literals
    return value if isinstance(value, str) else json.dumps(value, default=str)


class SqliteStore:
    """
    Persists rules, incidents and activity entries in SQLite.

    Implements the ``RuleStore``, ``IncidentStore`` and ``ActivityLog``
    contracts. Rule conditions/actions are kept as JSON text exactly as
    written; decoding happens in the engine.
    """

    def __init__(self, db_path: str = "./data/logic_engine.db"):
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        self._revision = 0

    @property
    def revision(self) -> int:
        return self._revision

    async def initialize(self) -> None:
        """Open the database and create tables."""
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row

        await self._db.executescript("""
            -- Stored logic rules
            CREATE TABLE IF NOT EXISTS logic_rules (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT,
                entity_type TEXT,
                entity_id TEXT,
                conditions TEXT NOT NULL,
                actions TEXT NOT NULL,
                logic_type TEXT NOT NULL DEFAULT 'AND',
                is_active INTEGER NOT NULL DEFAULT 1,
                priority INTEGER NOT NULL DEFAULT 0,
                created_by TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            -- Incidents raised by create_incident actions
            CREATE TABLE IF NOT EXISTS incidents (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                description TEXT,
                severity TEXT NOT NULL,
                status TEXT NOT NULL,
                source_type TEXT,
                tags TEXT,
                created_by TEXT,
                assigned_to TEXT,
                mission_id TEXT,
                read_token TEXT,
                created_at TEXT NOT NULL
            );

            -- Activity entries written by log_event actions
            CREATE TABLE IF NOT EXISTS activity_log (
                id TEXT PRIMARY KEY,
                entity_type TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                action TEXT NOT NULL,
                actor TEXT,
                actor_name TEXT,
                description TEXT,
                metadata TEXT,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_rules_scope
                ON logic_rules(is_active, entity_type, entity_id);
            CREATE INDEX IF NOT EXISTS idx_rules_order
                ON logic_rules(priority, created_at);
            CREATE INDEX IF NOT EXISTS idx_incidents_mission ON incidents(mission_id);
            CREATE INDEX IF NOT EXISTS idx_activity_entity
                ON activity_log(entity_type, entity_id);
        """)
        await self._db.commit()
        logger.info("store_initialized", db_path=self.db_path)

    async def close(self) -> None:
        """Close database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StoreError("Store is not initialized", store="sqlite")
        return self._db

    # ==================== Rules ====================

    async def find_rules(
        self,
        is_active: bool = True,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> list[RuleRecord]:
        """Find rules in scope, highest priority then newest first."""
        clauses = ["is_active = ?"]
        params: list[Any] = [int(is_active)]

        # Unscoped (global) rules always apply within a scope
        if entity_type:
            clauses.append("(entity_type = ? OR entity_type IS NULL)")
            params.append(entity_type)
        if entity_id:
            clauses.append("(entity_id = ? OR entity_id IS NULL)")
            params.append(entity_id)

        cursor = await self._conn().execute(
            f"SELECT * FROM logic_rules WHERE {' AND '.join(clauses)} "
            "ORDER BY priority DESC, created_at DESC",
            params,
        )
        rows = await cursor.fetchall()
        return [self._row_to_record(row) for row in rows]

    async def get_rule(self, rule_id: str) -> Optional[RuleRecord]:
        cursor = await self._conn().execute(
            "SELECT * FROM logic_rules WHERE id = ?", (rule_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_record(row) if row else None

    async def list_rules(self) -> list[RuleRecord]:
        """All rules regardless of scope or state."""
        cursor = await self._conn().execute(
            "SELECT * FROM logic_rules ORDER BY priority DESC, created_at DESC"
        )
        return [self._row_to_record(row) for row in await cursor.fetchall()]

    async def create_rule(self, rule: RuleLike) -> RuleRecord:
        """Persist a rule; blobs on a ``RuleRecord`` are written verbatim."""
        record = to_record(rule)
        if record.created_at is None:
            record = record.model_copy(update={"created_at": utcnow()})
        async with self._lock:
            await self._write_rule(record, replace=False)
            self._revision += 1
        logger.info("rule_created", rule_id=record.id, name=record.name)
        return record

    async def update_rule(self, rule_id: str, **changes: Any) -> RuleRecord:
        """Apply column changes to a stored rule."""
        async with self._lock:
            current = await self.get_rule(rule_id)
            if current is None:
                raise StoreError(f"Rule not found: {rule_id}", store="rules")

            for key in ("conditions", "actions"):
                if isinstance(changes.get(key), list):
                    changes[key] = _blob(changes[key])
            changes["updated_at"] = utcnow()

            record = RuleRecord.model_validate({**current.model_dump(), **changes})
            await self._write_rule(record, replace=True)
            self._revision += 1

        logger.info("rule_updated", rule_id=rule_id, fields=sorted(changes))
        return record

    async def delete_rule(self, rule_id: str) -> bool:
        async with self._lock:
            cursor = await self._conn().execute(
                "DELETE FROM logic_rules WHERE id = ?", (rule_id,)
            )
            await self._conn().commit()
            deleted = cursor.rowcount > 0
            if deleted:
                self._revision += 1

        if deleted:
            logger.info("rule_deleted", rule_id=rule_id)
        return deleted

    async def _write_rule(self, record: RuleRecord, replace: bool) -> None:
        verb = "INSERT OR REPLACE" if replace else "INSERT"
        try:
            await self._conn().execute(f"""
                {verb} INTO logic_rules (
                    id, name, description, entity_type, entity_id,
                    conditions, actions, logic_type, is_active, priority,
                    created_by, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                record.id,
                record.name,
                record.description,
                record.entity_type,
                record.entity_id,
                _blob(record.conditions),
                _blob(record.actions),
                record.logic_type,
                int(record.is_active),
                record.priority,
                record.created_by,
                _timestamp(record.created_at),
                _timestamp(record.updated_at),
            ))
            await self._conn().commit()
        except aiosqlite.IntegrityError as e:
            raise StoreError(f"Cannot write rule {record.id}: {e}", store="rules") from e

    def _row_to_record(self, row: aiosqlite.Row) -> RuleRecord:
        data = {key: row[key] for key in row.keys()}
        data["is_active"] = bool(data["is_active"])
        return RuleRecord.model_validate(data)

    # ==================== Incidents ====================

    async def create_incident(self, record: dict[str, Any]) -> dict[str, Any]:
        """Insert an incident and return it with its id."""
        incident = {
            "id": uuid.uuid4().hex,
            "title": record["title"],
            "description": record.get("description"),
            "severity": record["severity"],
            "status": record.get("status", "open"),
            "sourceType": record.get("sourceType"),
            "tags": record.get("tags"),
            "createdBy": record.get("createdBy"),
            "assignedTo": record.get("assignedTo"),
            "missionId": record.get("missionId"),
            "readToken": record.get("readToken")
                or f"auto_{int(time.time() * 1000)}_{secrets.token_hex(5)}",
            "createdAt": _timestamp(utcnow()),
        }

        async with self._lock:
            await self._conn().execute("""
                INSERT INTO incidents (
                    id, title, description, severity, status, source_type,
                    tags, created_by, assigned_to, mission_id, read_token, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                incident["id"],
                incident["title"],
                incident["description"],
                incident["severity"],
                incident["status"],
                incident["sourceType"],
                incident["tags"],
                incident["createdBy"],
                incident["assignedTo"],
                incident["missionId"],
                incident["readToken"],
                incident["createdAt"],
            ))
            await self._conn().commit()

        logger.info("incident_created", incident_id=incident["id"])
        return incident

    async def get_incident(self, incident_id: str) -> Optional[dict[str, Any]]:
        cursor = await self._conn().execute(
            "SELECT * FROM incidents WHERE id = ?", (incident_id,)
        )
        row = await cursor.fetchone()
        return dict(row) if row else None

    async def list_incidents(self, mission_id: Optional[str] = None) -> list[dict[str, Any]]:
        if mission_id:
            cursor = await self._conn().execute(
                "SELECT * FROM incidents WHERE mission_id = ? ORDER BY created_at",
                (mission_id,),
            )
        else:
            cursor = await self._conn().execute(
                "SELECT * FROM incidents ORDER BY created_at"
            )
        return [dict(row) for row in await cursor.fetchall()]

    # ==================== Activity log ====================

    async def add_activity(self, record: dict[str, Any]) -> dict[str, Any]:
        """Append an activity entry and return it with its id."""
        entry = {
            "id": uuid.uuid4().hex,
            "entityType": record["entityType"],
            "entityId": record["entityId"],
            "action": record["action"],
            "actor": record.get("actor"),
            "actorName": record.get("actorName"),
            "description": record.get("description"),
            "metadata": record.get("metadata") or {},
            "createdAt": _timestamp(utcnow()),
        }

        async with self._lock:
            await self._conn().execute("""
                INSERT INTO activity_log (
                    id, entity_type, entity_id, action, actor, actor_name,
                    description, metadata, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                entry["id"],
                entry["entityType"],
                entry["entityId"],
                entry["action"],
                entry["actor"],
                entry["actorName"],
                entry["description"],
                json.dumps(entry["metadata"], default=str),
                entry["createdAt"],
            ))
            await self._conn().commit()

        logger.info("activity_logged", activity_id=entry["id"], action=entry["action"])
        return entry

    async def list_activity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[dict[str, Any]]:
        cursor = await self._conn().execute(
            "SELECT * FROM activity_log WHERE entity_type = ? AND entity_id = ? "
            "ORDER BY created_at",
            (entity_type, entity_id),
        )
        entries = []
        for row in await cursor.fetchall():
            entry = dict(row)
            entry["metadata"] = json.loads(entry["metadata"]) if entry["metadata"] else {}
            entries.append(entry)
        return entries
