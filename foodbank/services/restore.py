from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from ..config.loader import BackupSettings
from ..db.batch_insert import BatchMetrics, batch_insert
from ..db.locks import acquire_maintenance_lock
from ..db.transaction import transaction
from ..errors import BackupVersionError, InputError, PersistenceError
from ..logging.error_log import ErrorLogBuffer
from ..models.backup import COLLECTIONS, Backup, RestoreStats

"""Full-replace restore from a JSON backup document.

Everything runs in one transaction holding the exclusive maintenance lock:

    BEGIN
    SELECT pg_advisory_xact_lock(...)       -- waits for running import batches
    DELETE children ... parents             -- reverse dependency order
    INSERT parents ... children             -- original ids preserved
    COMMIT

The document is checked (version, then shape) before any statement is
issued. Any database failure, or an interrupt, rolls the whole transaction
back; the previous contents stay untouched.
"""

__all__ = [
    "check_backup_version",
    "load_backup_file",
    "restore_backup",
]

logger = logging.getLogger(__name__)

OPERATION = "restore"


def check_backup_version(version: Any, supported: Iterable[str]) -> str:
    """Return the version tag if it is supported, else raise BackupVersionError."""
    if not isinstance(version, str) or not version.strip():
        raise BackupVersionError("invalid backup: missing version")
    supported = frozenset(supported)
    if version not in supported:
        raise BackupVersionError(
            f"unsupported backup version {version!r} (supported: {', '.join(sorted(supported))})"
        )
    return version


def load_backup_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise InputError(f"backup file not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InputError(f"invalid backup file format: {e}") from e
    if not isinstance(data, dict):
        raise InputError("invalid backup file format: expected a JSON object")
    return data


def _insert_collection(
    cursor: Any, key: str, backup: Backup, metrics_callback: Callable[[BatchMetrics], None] | None = None
) -> None:
    records = backup.records(key)
    if not records:
        return
    record_cls = type(records[0])
    rows = [r.to_row() for r in records]
    batch_insert(
        cursor,
        record_cls.TABLE,
        record_cls.columns(),
        rows,
        # staff rows reference each other (created_by / deactivated_by); a
        # single statement lets every referenced row exist when the FK is checked
        page_size=len(rows) if key == "staff" else 1000,
        metrics_callback=metrics_callback,
        json_columns=set(record_cls.JSON_COLUMNS) or None,
    )


def _log_insert_metrics(metrics: BatchMetrics) -> None:
    logger.debug(
        "insert %s: %d records in %.3fs", metrics.table, metrics.batch_size, metrics.elapsed_seconds
    )


def restore_backup(
    cursor: Any,
    document: dict[str, Any],
    *,
    settings: BackupSettings | None = None,
    error_log: ErrorLogBuffer | None = None,
) -> RestoreStats:
    """Replace the six collections with the contents of `document`.

    Raises:
        BackupVersionError: version missing / empty / not supported (nothing executed)
        InputError: malformed document (nothing executed)
        PersistenceError: a statement failed; the transaction was rolled back
    """
    settings = settings or BackupSettings()
    if not isinstance(document, dict):
        raise InputError("backup document must be a JSON object")
    check_backup_version(document.get("version"), settings.supported_versions)
    backup = Backup.from_dict(document)
    logger.info(
        "starting restore from backup created at %s by %s", backup.created_at or "?", backup.created_by or "?"
    )

    step = "lock"
    try:
        with transaction(cursor):
            acquire_maintenance_lock(cursor)
            for key, record_cls in reversed(COLLECTIONS):
                step = f"clear {key}"
                cursor.execute(f"DELETE FROM {record_cls.TABLE}")
            for key, _ in COLLECTIONS:
                step = f"insert {key}"
                _insert_collection(cursor, key, backup, metrics_callback=_log_insert_metrics)
            step = "commit"
    except Exception as e:
        if error_log is not None:
            error_log.record(OPERATION, -1, -1, "RESTORE_ERROR", f"{step}: {e}")
        logger.error("restore failed during %s, rolled back: %s", step, e)
        raise PersistenceError(f"restore failed during {step}: {e}") from e

    stats = backup.stats()
    logger.info("restore completed: %d records", stats.total)
    return stats
