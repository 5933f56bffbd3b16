"""Configuration loading and validation."""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

import jsonschema
import yaml
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from .errors import ConfigError

if TYPE_CHECKING:
    from ..rules.models import RuleRecord


class RuleCacheConfig(BaseModel):
    """TTL cache for rule selection, keyed by (entity_type, entity_id)."""
    enabled: bool = Field(default=False)
    ttl_seconds: float = Field(default=30.0, gt=0, le=3600)
    max_entries: int = Field(default=1024, ge=1)


class WebhookConfig(BaseModel):
    """Outbound webhook behaviour."""
    enabled: bool = Field(default=False)  # False: describe the call, don't send it
    timeout_seconds: float = Field(default=10.0, gt=0, le=120)
    default_method: str = Field(default="POST")
    max_response_chars: int = Field(default=10000, ge=0)


class StorageConfig(BaseModel):
    """SQLite persistence for rules, incidents and activity."""
    database_path: str = Field(default="./data/logic_engine.db")


class ApiConfig(BaseModel):
    """HTTP invocation surface."""
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080, ge=1, le=65535)


class EngineConfig(BaseModel):
    """Main logic engine configuration."""
    name: str = Field(default="logic-engine")
    version: str = Field(default="0.1.0")

    # Serialize runs per (entity_type, entity_id) to avoid duplicate actions
    serialize_per_entity: bool = Field(default=False)

    rule_cache: RuleCacheConfig = Field(default_factory=RuleCacheConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)

    # Paths
    rules_directory: str = Field(default="./config/rules")

    def config_hash(self) -> str:
        """Generate hash of config for change detection."""
        return hashlib.sha256(
            self.model_dump_json().encode()
        ).hexdigest()[:16]


ACTION_TYPES = [
    "notify_agent",
    "create_incident",
    "flag_entity",
    "update_field",
    "trigger_mission",
    "send_email",
    "webhook",
    "log_event",
    "escalate",
    "assign_task",
]

# Shape of a rules file; values are type-checked again when rules are decoded.
RULE_FILE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "rules": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id", "name", "conditions", "actions"],
                "properties": {
                    "id": {"type": "string", "minLength": 1},
                    "name": {"type": "string", "minLength": 1},
                    "priority": {"type": "integer"},
                    "logicType": {"enum": ["AND", "OR", "and", "or"]},
                    "logic_type": {"enum": ["AND", "OR", "and", "or"]},
                    "conditions": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "required": ["field", "operator"],
                            "properties": {
                                "field": {"type": "string", "minLength": 1},
                                "operator": {"type": "string"},
                            },
                        },
                    },
                    "actions": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "required": ["type"],
                            "properties": {
                                "type": {"enum": ACTION_TYPES},
                                "parameters": {"type": ["object", "null"]},
                            },
                        },
                    },
                },
            },
        },
    },
    "required": ["rules"],
}


class ConfigLoader:
    """Loads and validates YAML/JSON configurations."""

    def __init__(self, config_dir: str = "./config"):
        self.config_dir = Path(config_dir)
        self._hashes: dict[str, str] = {}

    def load_engine_config(self, path: Optional[str] = None) -> EngineConfig:
        """Load main engine configuration; defaults when the file is absent."""
        if path is None:
            path = self.config_dir / "engine.yaml"
            if not path.exists():
                return EngineConfig()
        else:
            path = Path(path)

        data = self._load_file(path)
        try:
            return EngineConfig(**data)
        except PydanticValidationError as e:
            raise ConfigError(f"Invalid engine config: {e}", config_path=str(path))

    def load_rules(self, directory: Optional[str] = None) -> list[RuleRecord]:
        """Load all rule definitions from a directory of YAML/JSON files."""
        if directory is None:
            directory = self.config_dir / "rules"
        else:
            directory = Path(directory)

        rules: list[RuleRecord] = []
        if not directory.exists():
            return rules

        paths = sorted(directory.glob("**/*.yaml")) + sorted(directory.glob("**/*.yml"))
        paths += sorted(directory.glob("**/*.json"))
        for file_path in paths:
            rules.extend(self._load_rules_file(file_path))

        # Sort by priority (higher first)
        rules.sort(key=lambda r: r.priority, reverse=True)
        return rules

    def has_config_changed(self, path: str) -> bool:
        """Check if a config file has changed since last load."""
        path = Path(path)
        current_hash = self._compute_file_hash(path)
        previous_hash = self._hashes.get(str(path))
        return current_hash != previous_hash

    def _load_file(self, path: Path) -> dict[str, Any]:
        """Load YAML or JSON file."""
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}", config_path=str(path))

        try:
            content = path.read_text()
            self._hashes[str(path)] = hashlib.sha256(content.encode()).hexdigest()[:16]

            if path.suffix in (".yaml", ".yml"):
                return yaml.safe_load(content) or {}
            elif path.suffix == ".json":
                return json.loads(content)
            else:
                raise ConfigError(
                    f"Unsupported config format: {path.suffix}",
                    config_path=str(path)
                )
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML: {e}", config_path=str(path))
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON: {e}", config_path=str(path))

    def _load_rules_file(self, path: Path) -> list[RuleRecord]:
        """Load rules from a single file."""
        from ..rules.models import RuleRecord

        data = self._load_file(path)

        # Support both single rule and list of rules
        if "rules" not in data and "id" in data:
            data = {"rules": [data]}

        try:
            jsonschema.validate(data, RULE_FILE_SCHEMA)
        except jsonschema.ValidationError as e:
            raise ConfigError(
                f"Invalid rule file: {e.message}",
                config_path=str(path)
            )

        rules = []
        for rule_data in data["rules"]:
            try:
                rules.append(RuleRecord.model_validate(rule_data))
            except PydanticValidationError as e:
                raise ConfigError(
                    f"Invalid rule {rule_data.get('id')}: {e}",
                    config_path=str(path)
                )

        return rules

    def _compute_file_hash(self, path: Path) -> str:
        """Compute hash of file contents."""
        if not path.exists():
            return ""
        content = path.read_text()
        return hashlib.sha256(content.encode()).hexdigest()[:16]
