from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

"""ImportRow model: one client row submitted for bulk import.

Rows are request-scoped. Only the validated fields of an ImportRow are ever
written to the clients table; the row itself is never persisted.

Coercion rules follow the CSV import contract:
- integers: leading integer prefix of the cell, otherwise 0
  (so a non-numeric family_size is reported by the validator, not the parser)
- booleans: case-insensitive "true" / "1" / "yes" -> True, anything else False
- optional text: trimmed, empty -> None
"""

__all__ = [
    "ImportRow",
    "REQUIRED_COLUMNS",
    "OPTIONAL_COLUMNS",
    "IMPORT_COLUMNS",
    "PREFERENCE_FLAGS",
    "parse_bool",
    "parse_int",
]

REQUIRED_COLUMNS = ("name", "address", "family_size")
OPTIONAL_COLUMNS = (
    "num_children",
    "children_ages",
    "reason",
    "appointment_day",
    "appointment_time",
    "pref_gluten_free",
    "pref_halal",
    "pref_vegetarian",
    "pref_no_cooking",
)
IMPORT_COLUMNS = REQUIRED_COLUMNS + OPTIONAL_COLUMNS
PREFERENCE_FLAGS = ("pref_gluten_free", "pref_halal", "pref_vegetarian", "pref_no_cooking")

_TRUE_VALUES = {"true", "1", "yes"}
_INT_PREFIX = re.compile(r"^\s*([+-]?\d+)")


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in _TRUE_VALUES


def parse_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value == value else 0  # NaN
    if value is None:
        return 0
    m = _INT_PREFIX.match(str(value))
    return int(m.group(1)) if m else 0


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class ImportRow:
    """A single candidate client row (1-based row_number within the upload)."""
    row_number: int
    name: str
    address: str
    family_size: int
    num_children: int = 0
    children_ages: str | None = None
    reason: str | None = None
    appointment_day: str | None = None
    appointment_time: str | None = None
    pref_gluten_free: bool = False
    pref_halal: bool = False
    pref_vegetarian: bool = False
    pref_no_cooking: bool = False

    @staticmethod
    def from_record(record: dict[str, Any], row_number: int | None = None) -> ImportRow:
        """Build an ImportRow from a CSV record or JSON request object.

        `row_number` wins over a `row_number` key in the record; when neither is
        given the row number is 0.
        """
        if row_number is None:
            row_number = parse_int(record.get("row_number"))
        return ImportRow(
            row_number=row_number,
            name=str(record.get("name") or "").strip(),
            address=str(record.get("address") or "").strip(),
            family_size=parse_int(record.get("family_size")),
            num_children=parse_int(record.get("num_children")),
            children_ages=_optional_text(record.get("children_ages")),
            reason=_optional_text(record.get("reason")),
            appointment_day=_optional_text(record.get("appointment_day")),
            appointment_time=_optional_text(record.get("appointment_time")),
            pref_gluten_free=parse_bool(record.get("pref_gluten_free")),
            pref_halal=parse_bool(record.get("pref_halal")),
            pref_vegetarian=parse_bool(record.get("pref_vegetarian")),
            pref_no_cooking=parse_bool(record.get("pref_no_cooking")),
        )

    @property
    def duplicate_key(self) -> tuple[str, str]:
        """Trim + lower-case normalised (name, address) used for duplicate matching."""
        return (self.name.strip().lower(), self.address.strip().lower())
