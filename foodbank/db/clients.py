from __future__ import annotations

from typing import Any

from psycopg2.extras import Json

from ..models.import_row import ImportRow

"""Client table queries used by the validator and the batch importer."""

__all__ = [
    "find_duplicate_client",
    "insert_client",
    "insert_audit_entry",
    "normalize_appointment_day",
]

FIND_DUPLICATE_SQL = """
    SELECT id FROM clients
    WHERE LOWER(TRIM(name)) = LOWER(TRIM(%s))
      AND LOWER(TRIM(address)) = LOWER(TRIM(%s))
    LIMIT 1
"""

INSERT_CLIENT_SQL = """
    INSERT INTO clients (barcode_id, name, address, family_size, num_children, children_ages,
                         reason, photo_url, appointment_day, appointment_time,
                         pref_gluten_free, pref_halal, pref_vegetarian, pref_no_cooking, created_by)
    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
    RETURNING id
"""

INSERT_AUDIT_SQL = """
    INSERT INTO audit_log (table_name, record_id, action, old_values, new_values, changed_by)
    VALUES (%s, %s, %s, %s, %s, %s)
"""


def find_duplicate_client(cursor: Any, name: str, address: str) -> str | None:
    """Return the id of an existing client with the same trimmed, case-folded name+address."""
    cursor.execute(FIND_DUPLICATE_SQL, (name, address))
    found = cursor.fetchone()
    return str(found[0]) if found else None


def normalize_appointment_day(day: str | None) -> str | None:
    if day is None or not day.strip():
        return None
    return day.strip().lower().title()


def insert_client(cursor: Any, row: ImportRow, barcode_id: str, created_by: str) -> str:
    """Insert one imported client and return its generated id. photo_url is never set by imports."""
    cursor.execute(
        INSERT_CLIENT_SQL,
        (
            barcode_id,
            row.name.strip(),
            row.address.strip(),
            row.family_size,
            row.num_children,
            row.children_ages,
            row.reason,
            None,
            normalize_appointment_day(row.appointment_day),
            row.appointment_time,
            row.pref_gluten_free,
            row.pref_halal,
            row.pref_vegetarian,
            row.pref_no_cooking,
            created_by,
        ),
    )
    return str(cursor.fetchone()[0])


def insert_audit_entry(
    cursor: Any,
    table_name: str,
    record_id: str,
    action: str,
    changed_by: str,
    old_values: dict[str, Any] | None = None,
    new_values: dict[str, Any] | None = None,
) -> None:
    cursor.execute(
        INSERT_AUDIT_SQL,
        (
            table_name,
            record_id,
            action,
            Json(old_values) if old_values is not None else None,
            Json(new_values) if new_values is not None else None,
            changed_by,
        ),
    )
