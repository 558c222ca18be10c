from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..errors import ConfigurationError
from ..services.validator import MAX_IMPORT_ROWS, ValidationRules

"""Configuration loader.

Responsibilities:
- Load the YAML config file (default config/foodbank.yml)
- Validate it against the bundled JSON schema (config_schema.json)
- Apply defaults for every omitted section / key

Database connection values in the file are only a fallback: environment
variables (DATABASE_URL / PGDSN / PG*) take precedence, see db.connection.
"""

SCHEMA_PATH = Path(__file__).with_name("config_schema.json")
DEFAULT_CONFIG_PATH = Path("config/foodbank.yml")

DEFAULT_BATCH_SIZE = 50
MAX_BATCH_SIZE = 100
BACKUP_VERSION = "1.0"


class ConfigError(ConfigurationError):
    pass


@dataclass(frozen=True)
class DatabaseConfig:
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class ImportSettings:
    default_batch_size: int = DEFAULT_BATCH_SIZE
    max_batch_size: int = MAX_BATCH_SIZE  # hard cap; larger requests are clamped
    max_rows: int = MAX_IMPORT_ROWS
    audit_log: bool = False  # write an audit_log INSERT entry per imported client

    def effective_batch_size(self, requested: int | None) -> int:
        if requested is None or requested <= 0:
            requested = self.default_batch_size
        return min(requested, self.max_batch_size)


@dataclass(frozen=True)
class BackupSettings:
    version: str = BACKUP_VERSION
    supported_versions: frozenset[str] = frozenset({BACKUP_VERSION})
    filename_prefix: str = "foodbank-backup"


@dataclass(frozen=True)
class AppConfig:
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    importing: ImportSettings = field(default_factory=ImportSettings)
    validation: ValidationRules = field(default_factory=ValidationRules)
    backup: BackupSettings = field(default_factory=BackupSettings)
    logs_dir: str = "./logs"


def default_config() -> AppConfig:
    return AppConfig()


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the bundled JSON schema.

    Raises:
        ConfigError: schema file missing / unreadable, or the data violates it
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def parse_config(data: dict[str, Any]) -> AppConfig:
    _validate_config_schema(data)

    db_raw = data.get("database") or {}
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )

    imp_raw = data.get("import") or {}
    importing = ImportSettings(
        default_batch_size=imp_raw.get("default_batch_size", DEFAULT_BATCH_SIZE),
        max_batch_size=imp_raw.get("max_batch_size", MAX_BATCH_SIZE),
        max_rows=imp_raw.get("max_rows", MAX_IMPORT_ROWS),
        audit_log=imp_raw.get("audit_log", False),
    )
    if importing.default_batch_size > importing.max_batch_size:
        raise ConfigError(
            f"import.default_batch_size ({importing.default_batch_size}) exceeds "
            f"import.max_batch_size ({importing.max_batch_size})"
        )

    val_raw = data.get("validation") or {}
    try:
        rules = ValidationRules.build(
            days=val_raw.get("appointment_days"),
            time_pattern=val_raw.get("appointment_time_pattern"),
        )
    except ValueError as e:
        raise ConfigError(f"validation: {e}") from e

    bk_raw = data.get("backup") or {}
    version = bk_raw.get("version", BACKUP_VERSION)
    supported = frozenset(bk_raw.get("supported_versions", [version]))
    if version not in supported:
        raise ConfigError(f"backup.version {version!r} is not in backup.supported_versions")
    backup = BackupSettings(
        version=version,
        supported_versions=supported,
        filename_prefix=bk_raw.get("filename_prefix", "foodbank-backup"),
    )

    return AppConfig(
        database=db,
        importing=importing,
        validation=rules,
        backup=backup,
        logs_dir=data.get("logs_dir", "./logs"),
    )


def load_config(path: Path) -> AppConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config root must be a mapping, got {type(data).__name__}")
    return parse_config(data)
