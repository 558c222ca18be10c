from __future__ import annotations

import uuid
from dataclasses import dataclass, fields
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, ClassVar

from ..errors import InputError

"""Backup document models (full-database snapshot).

Each *Backup record is a field-complete mirror of one storage row. Field names
equal the storage column names and the JSON keys of the exported document, so
export -> restore round-trips every primary and foreign key verbatim.

Values are held in their JSON form:
- UUIDs as canonical strings
- timestamps as ISO-8601 strings, TIME columns as "HH:MM:SS"
- JSONB columns (audit_log.old_values / new_values) as decoded JSON (dict/list) or None

Collections are listed in dependency order (parents first). Deletes run in
the reverse order.
"""

__all__ = [
    "BackupRecord",
    "StaffBackup",
    "ClientBackup",
    "AttendanceBackup",
    "AuditLogBackup",
    "RegistrationBackup",
    "VerificationBackup",
    "Backup",
    "RestoreStats",
    "COLLECTIONS",
    "to_json_value",
]


def to_json_value(value: Any) -> Any:
    """Convert a driver value (psycopg2 row cell) into its JSON form."""
    if isinstance(value, datetime | date | time):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, memoryview | bytes):
        return bytes(value).decode("utf-8")
    return value


class BackupRecord:
    """Mixin giving a frozen dataclass table metadata and dict/row conversion."""

    TABLE: ClassVar[str]
    ORDER_BY: ClassVar[str] = "created_at"
    OPTIONAL: ClassVar[frozenset[str]] = frozenset()
    JSON_COLUMNS: ClassVar[frozenset[str]] = frozenset()
    # Column -> SELECT expression when the raw column needs massaging on export
    SELECT_EXPRESSIONS: ClassVar[dict[str, str]] = {}

    @classmethod
    def columns(cls) -> tuple[str, ...]:
        return tuple(f.name for f in fields(cls))  # type: ignore[arg-type]

    @classmethod
    def select_sql(cls) -> str:
        exprs = [cls.SELECT_EXPRESSIONS.get(c, c) for c in cls.columns()]
        return f"SELECT {', '.join(exprs)} FROM {cls.TABLE} ORDER BY {cls.ORDER_BY}"

    @classmethod
    def from_db_row(cls, row: tuple[Any, ...]):
        return cls(*(to_json_value(v) for v in row))  # type: ignore[call-arg]

    @classmethod
    def from_dict(cls, data: dict[str, Any]):
        if not isinstance(data, dict):
            raise InputError(f"{cls.TABLE}: record must be an object, got {type(data).__name__}")
        missing = [c for c in cls.columns() if c not in data and c not in cls.OPTIONAL]
        if missing:
            ident = data.get("id", "<unknown>")
            raise InputError(f"{cls.TABLE}: record {ident} missing fields: {missing}")
        return cls(**{c: data.get(c) for c in cls.columns()})  # type: ignore[call-arg]

    def to_dict(self) -> dict[str, Any]:
        return {c: getattr(self, c) for c in self.columns()}

    def to_row(self) -> tuple[Any, ...]:
        return tuple(getattr(self, c) for c in self.columns())


@dataclass(frozen=True)
class StaffBackup(BackupRecord):
    TABLE: ClassVar[str] = "staff"
    OPTIONAL: ClassVar[frozenset[str]] = frozenset(
        {"mobile", "address", "email_verified_at", "created_by", "deactivated_at", "deactivated_by"}
    )
    SELECT_EXPRESSIONS: ClassVar[dict[str, str]] = {
        "background_image": "COALESCE(background_image, '') AS background_image",
    }

    id: str
    auth0_id: str
    name: str
    email: str
    mobile: str | None
    address: str | None
    theme: str
    background_image: str
    role: str
    is_active: bool
    email_verified: bool
    email_verified_at: str | None
    created_at: str
    created_by: str | None
    deactivated_at: str | None
    deactivated_by: str | None


@dataclass(frozen=True)
class ClientBackup(BackupRecord):
    TABLE: ClassVar[str] = "clients"
    OPTIONAL: ClassVar[frozenset[str]] = frozenset(
        {"children_ages", "reason", "photo_url", "appointment_day", "appointment_time"}
    )

    id: str
    barcode_id: str
    name: str
    address: str
    family_size: int
    num_children: int
    children_ages: str | None
    reason: str | None
    photo_url: str | None
    appointment_day: str | None
    appointment_time: str | None
    pref_gluten_free: bool
    pref_halal: bool
    pref_vegetarian: bool
    pref_no_cooking: bool
    created_at: str
    created_by: str


@dataclass(frozen=True)
class AttendanceBackup(BackupRecord):
    TABLE: ClassVar[str] = "attendance"
    ORDER_BY: ClassVar[str] = "verified_at"

    id: str
    client_id: str
    verified_by: str
    verified_at: str


@dataclass(frozen=True)
class AuditLogBackup(BackupRecord):
    TABLE: ClassVar[str] = "audit_log"
    ORDER_BY: ClassVar[str] = "changed_at"
    OPTIONAL: ClassVar[frozenset[str]] = frozenset({"old_values", "new_values"})
    JSON_COLUMNS: ClassVar[frozenset[str]] = frozenset({"old_values", "new_values"})

    id: str
    table_name: str
    record_id: str
    action: str
    old_values: Any
    new_values: Any
    changed_by: str
    changed_at: str


@dataclass(frozen=True)
class RegistrationBackup(BackupRecord):
    TABLE: ClassVar[str] = "registration_requests"
    OPTIONAL: ClassVar[frozenset[str]] = frozenset({"mobile", "address", "reviewed_at", "reviewed_by"})

    id: str
    name: str
    email: str
    mobile: str | None
    address: str | None
    status: str
    approval_token: str
    token_expires_at: str
    created_at: str
    reviewed_at: str | None
    reviewed_by: str | None


@dataclass(frozen=True)
class VerificationBackup(BackupRecord):
    TABLE: ClassVar[str] = "verification_codes"
    OPTIONAL: ClassVar[frozenset[str]] = frozenset({"verified_at"})

    id: str
    staff_id: str
    code: str
    expires_at: str
    attempts: int
    verified_at: str | None
    created_at: str


# (document key, record class) in dependency order: parents before children
COLLECTIONS: tuple[tuple[str, type[BackupRecord]], ...] = (
    ("staff", StaffBackup),
    ("clients", ClientBackup),
    ("attendance", AttendanceBackup),
    ("audit_log", AuditLogBackup),
    ("registration_requests", RegistrationBackup),
    ("verification_codes", VerificationBackup),
)


@dataclass(frozen=True)
class Backup:
    version: str
    created_at: str
    created_by: str
    staff: list[StaffBackup]
    clients: list[ClientBackup]
    attendance: list[AttendanceBackup]
    audit_log: list[AuditLogBackup]
    registration_requests: list[RegistrationBackup]
    verification_codes: list[VerificationBackup]

    def records(self, key: str) -> list[BackupRecord]:
        return list(getattr(self, key))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "version": self.version,
            "created_at": self.created_at,
            "created_by": self.created_by,
        }
        for key, _ in COLLECTIONS:
            data[key] = [r.to_dict() for r in getattr(self, key)]
        return data

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Backup:
        """Parse a backup document. Shape problems raise InputError.

        A collection given as null is treated as empty; a collection key that is
        absent altogether is rejected, since restore would otherwise silently
        wipe that table.
        """
        if not isinstance(data, dict):
            raise InputError("backup document must be a JSON object")
        missing = [key for key, _ in COLLECTIONS if key not in data]
        if missing:
            raise InputError(f"backup document missing collections: {missing}")
        parsed: dict[str, list[BackupRecord]] = {}
        for key, record_cls in COLLECTIONS:
            raw = data[key] or []
            if not isinstance(raw, list):
                raise InputError(f"backup collection '{key}' must be a list")
            parsed[key] = [record_cls.from_dict(item) for item in raw]
        return Backup(
            version=str(data.get("version") or ""),
            created_at=str(data.get("created_at") or ""),
            created_by=str(data.get("created_by") or ""),
            **parsed,  # type: ignore[arg-type]
        )

    def stats(self) -> RestoreStats:
        return RestoreStats(**{key: len(getattr(self, key)) for key, _ in COLLECTIONS})


@dataclass(frozen=True)
class RestoreStats:
    """Per-collection record counts written by a restore."""
    staff: int = 0
    clients: int = 0
    attendance: int = 0
    audit_log: int = 0
    registration_requests: int = 0
    verification_codes: int = 0

    @property
    def total(self) -> int:
        return sum(self.to_dict().values())

    def to_dict(self) -> dict[str, int]:
        return {key: getattr(self, key) for key, _ in COLLECTIONS}
