from __future__ import annotations

import io
import json
import logging
import zipfile
from datetime import UTC, date, datetime
from typing import Any

import pandas as pd

from ..config.loader import BackupSettings
from ..db.transaction import REPEATABLE_READ_READ_ONLY, transaction
from ..errors import InputError, PersistenceError
from ..models.backup import COLLECTIONS, Backup, BackupRecord

"""Full-database snapshot export.

All six collections are read inside one REPEATABLE READ READ ONLY
transaction, so the document is a consistent point-in-time snapshot. Export
takes no maintenance lock and never blocks writers.

Two renderings of the same Backup:
- JSON: the backup document itself (restorable)
- CSV: a ZIP archive of one `<collection>.csv` per collection, each UTF-8 with
  a BOM (so spreadsheet tools pick the encoding) and a header row equal to
  the JSON field names. Not restorable.
"""

__all__ = [
    "EXPORT_FORMATS",
    "DEFAULT_CREATED_BY",
    "create_backup",
    "export_json",
    "export_csv_zip",
    "collection_frame",
    "backup_filename",
    "export_backup",
]

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("json", "csv")
DEFAULT_CREATED_BY = "recovery-token"
BOM = "\ufeff"


def create_backup(cursor: Any, created_by: str = DEFAULT_CREATED_BY, version: str = "1.0") -> Backup:
    collections: dict[str, list[BackupRecord]] = {}
    try:
        with transaction(cursor, REPEATABLE_READ_READ_ONLY):
            for key, record_cls in COLLECTIONS:
                cursor.execute(record_cls.select_sql())
                collections[key] = [record_cls.from_db_row(r) for r in cursor.fetchall()]
                logger.debug("read %s: %d records", key, len(collections[key]))
    except Exception as e:
        raise PersistenceError(f"backup read failed: {e}") from e

    return Backup(
        version=version,
        created_at=datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        created_by=created_by,
        **collections,  # type: ignore[arg-type]
    )


def export_json(backup: Backup) -> bytes:
    return json.dumps(backup.to_dict(), ensure_ascii=False, indent=2).encode("utf-8")


def _csv_cell(value: Any, is_json: bool) -> str:
    if value is None:
        return ""
    if is_json:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def collection_frame(record_cls: type[BackupRecord], records: list[BackupRecord]) -> pd.DataFrame:
    """One collection as a DataFrame of display strings, columns in storage order."""
    columns = list(record_cls.columns())
    data = [
        [
            _csv_cell(value, col in record_cls.JSON_COLUMNS)
            for col, value in zip(columns, r.to_row(), strict=True)
        ]
        for r in records
    ]
    return pd.DataFrame(data, columns=columns, dtype=str)


def export_csv_zip(backup: Backup) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for key, record_cls in COLLECTIONS:
            df = collection_frame(record_cls, backup.records(key))
            text = df.to_csv(index=False, lineterminator="\n")
            zf.writestr(f"{key}.csv", (BOM + text).encode("utf-8"))
    return buf.getvalue()


def backup_filename(fmt: str, today: date | None = None, prefix: str = "foodbank-backup") -> str:
    if fmt not in EXPORT_FORMATS:
        raise InputError(f"invalid format '{fmt}', use 'json' or 'csv'")
    day = today or datetime.now(UTC).date()
    ext = "json" if fmt == "json" else "zip"
    return f"{prefix}-{day.isoformat()}.{ext}"


def export_backup(
    cursor: Any,
    fmt: str = "json",
    created_by: str = DEFAULT_CREATED_BY,
    settings: BackupSettings | None = None,
) -> tuple[str, bytes, Backup]:
    """Snapshot the database and render it. Returns (filename, payload, backup)."""
    settings = settings or BackupSettings()
    filename = backup_filename(fmt, prefix=settings.filename_prefix)
    backup = create_backup(cursor, created_by, settings.version)
    payload = export_json(backup) if fmt == "json" else export_csv_zip(backup)
    logger.info("exported %s (%d bytes, %d records)", filename, len(payload), backup.stats().total)
    return filename, payload, backup
