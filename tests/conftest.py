# Shared pytest fixtures
from __future__ import annotations

import copy
import re
import tempfile
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import Any

import psycopg2
import pytest

from foodbank.logging.init import reset_logging
from foodbank.models.backup import COLLECTIONS
from foodbank.models.import_row import ImportRow

TABLES = {cls.TABLE: cls for _, cls in COLLECTIONS}

STAFF_ADMIN = "11111111-1111-1111-1111-111111111111"
STAFF_OTHER = "22222222-2222-2222-2222-222222222222"
CLIENT_A = "33333333-3333-3333-3333-333333333333"
CLIENT_B = "44444444-4444-4444-4444-444444444444"

_CLIENT_INSERT_COLUMNS = (
    "barcode_id", "name", "address", "family_size", "num_children", "children_ages",
    "reason", "photo_url", "appointment_day", "appointment_time",
    "pref_gluten_free", "pref_halal", "pref_vegetarian", "pref_no_cooking", "created_by",
)
_AUDIT_INSERT_COLUMNS = ("table_name", "record_id", "action", "old_values", "new_values", "changed_by")
_SELECT_RE = re.compile(r"^SELECT .+ FROM (\w+) ORDER BY (\w+)$")
_INSERT_RE = re.compile(r"^INSERT INTO (\w+) \(([^)]*)\) VALUES %s")


def _unwrap(value: Any) -> Any:
    # psycopg2.extras.Json keeps the wrapped object in .adapted
    return getattr(value, "adapted", value)


class FakeDatabase:
    """In-memory stand-in for the handful of statements the core issues.

    Transactions are modelled with deep-copy snapshots: BEGIN and SAVEPOINT
    take one, ROLLBACK restores it. A cursor opened with committed_only=True
    behaves like a second connection and sees the last committed state.
    """

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {t: [] for t in TABLES}
        self.statements: list[str] = []
        self.locks: list[str] = []
        self.commit_count = 0
        self.fail_commits: set[int] = set()  # 1-based COMMIT numbers that raise
        self.fail_begin = False
        self.fail_when: Callable[[str, Any], bool] | None = None
        self._snapshot: dict[str, list[dict[str, Any]]] | None = None
        self._savepoints: list[tuple[str, dict[str, list[dict[str, Any]]]]] = []
        self._clock = 0

    # -- state helpers -------------------------------------------------
    @property
    def in_transaction(self) -> bool:
        return self._snapshot is not None

    def committed(self) -> dict[str, list[dict[str, Any]]]:
        return self._snapshot if self._snapshot is not None else self.tables

    def tick(self) -> str:
        self._clock += 1
        minutes, seconds = divmod(self._clock, 60)
        return f"2024-06-01T{minutes // 60:02d}:{minutes % 60:02d}:{seconds:02d}+00:00"

    def cursor(self, committed_only: bool = False) -> FakeCursor:
        return FakeCursor(self, committed_only)

    def load(self, document: dict[str, Any]) -> None:
        for key, cls in COLLECTIONS:
            self.tables[cls.TABLE] = [dict(r) for r in document.get(key) or []]

    def insert(self, table: str, row: dict[str, Any]) -> None:
        if table == "clients":
            if any(r["barcode_id"] == row["barcode_id"] for r in self.tables["clients"]):
                raise psycopg2.IntegrityError(
                    'duplicate key value violates unique constraint "clients_barcode_id_key"'
                )
        columns = TABLES[table].columns()
        self.tables[table].append({c: _unwrap(row.get(c)) for c in columns})

    # -- statement dispatch --------------------------------------------
    def execute(self, sql: str, params: Any, committed_only: bool) -> list[tuple[Any, ...]]:
        stmt = " ".join(sql.split())
        self.statements.append(stmt)
        if self.fail_when is not None and self.fail_when(stmt, params):
            raise psycopg2.OperationalError(f"injected failure: {stmt[:40]}")

        if stmt.startswith("BEGIN"):
            if self.fail_begin:
                raise psycopg2.OperationalError("could not begin")
            assert not self.in_transaction, "BEGIN inside an open transaction"
            self._snapshot = copy.deepcopy(self.tables)
            return []
        if stmt == "COMMIT":
            self.commit_count += 1
            if self.commit_count in self.fail_commits:
                raise psycopg2.OperationalError("could not serialize access")
            self._snapshot = None
            self._savepoints.clear()
            return []
        if stmt == "ROLLBACK":
            if self._snapshot is not None:
                self.tables = self._snapshot
            self._snapshot = None
            self._savepoints.clear()
            return []
        if stmt.startswith("SAVEPOINT "):
            self._savepoints.append((stmt.split()[1], copy.deepcopy(self.tables)))
            return []
        if stmt.startswith("ROLLBACK TO SAVEPOINT "):
            name = stmt.split()[-1]
            while self._savepoints and self._savepoints[-1][0] != name:
                self._savepoints.pop()
            self.tables = copy.deepcopy(self._savepoints[-1][1])
            return []
        if stmt.startswith("RELEASE SAVEPOINT "):
            self._savepoints.pop()
            return []
        if stmt.startswith("SELECT pg_advisory"):
            self.locks.append(stmt.split("(")[0].removeprefix("SELECT "))
            return [("",)]
        if stmt == "SELECT 1":
            return [(1,)]

        view = self.committed() if committed_only else self.tables
        if stmt.startswith("SELECT id FROM clients WHERE"):
            name, address = (p.strip().lower() for p in params)
            for r in view["clients"]:
                if r["name"].strip().lower() == name and r["address"].strip().lower() == address:
                    return [(r["id"],)]
            return []
        if stmt.startswith("INSERT INTO clients (barcode_id"):
            row = dict(zip(_CLIENT_INSERT_COLUMNS, params, strict=True))
            row["id"] = str(uuid.uuid4())
            row["created_at"] = self.tick()
            self.insert("clients", row)
            return [(row["id"],)]
        if stmt.startswith("INSERT INTO audit_log (table_name"):
            row = dict(zip(_AUDIT_INSERT_COLUMNS, params, strict=True))
            row["id"] = str(uuid.uuid4())
            row["changed_at"] = self.tick()
            self.insert("audit_log", row)
            return []
        if stmt.startswith("DELETE FROM "):
            self.tables[stmt.removeprefix("DELETE FROM ")] = []
            return []
        m = _SELECT_RE.match(stmt)
        if m:
            table, order_by = m.groups()
            cls = TABLES[table]
            out = []
            for r in sorted(view[table], key=lambda r: r[order_by] or ""):
                values = []
                for c in cls.columns():
                    v = r.get(c)
                    if c in cls.SELECT_EXPRESSIONS and v is None:
                        v = ""  # COALESCE(..., '')
                    values.append(v)
                out.append(tuple(values))
            return out
        raise AssertionError(f"unexpected SQL: {stmt}")

    def execute_values(self, sql: str, argslist: list[tuple[Any, ...]]) -> None:
        stmt = " ".join(sql.split())
        self.statements.append(stmt)
        if self.fail_when is not None and self.fail_when(stmt, argslist):
            raise psycopg2.OperationalError(f"injected failure: {stmt[:40]}")
        m = _INSERT_RE.match(stmt)
        assert m, f"unexpected execute_values SQL: {stmt}"
        table, cols = m.groups()
        columns = [c.strip().strip('"') for c in cols.split(",")]
        for values in argslist:
            self.insert(table, dict(zip(columns, values, strict=True)))


class FakeCursor:
    def __init__(self, db: FakeDatabase, committed_only: bool = False) -> None:
        self.db = db
        self.committed_only = committed_only
        self._result: list[tuple[Any, ...]] = []

    def execute(self, sql: str, params: Any = None) -> None:
        self._result = self.db.execute(sql, params, self.committed_only)

    def fetchone(self):
        return self._result.pop(0) if self._result else None

    def fetchall(self):
        out, self._result = self._result, []
        return out


@pytest.fixture()
def fake_db(monkeypatch) -> FakeDatabase:
    import foodbank.db.batch_insert as bi

    db = FakeDatabase()

    def fake_execute_values(cursor, sql, argslist, template=None, page_size=100, fetch=False):
        cursor.db.execute_values(sql, list(argslist))
        return [] if fetch else None

    monkeypatch.setattr(bi, "execute_values", fake_execute_values)
    return db


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
import:
  default_batch_size: 50
  max_batch_size: 100
  max_rows: 10000
validation:
  appointment_days: [Monday, Tuesday, Wednesday, Thursday, Friday, Saturday]
backup:
  version: "1.0"
  supported_versions: ["1.0"]
logs_dir: ./logs
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "foodbank.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture(autouse=True)
def clean_logging():
    reset_logging()
    yield
    reset_logging()


def make_row(n: int, **overrides: Any) -> ImportRow:
    data: dict[str, Any] = {
        "row_number": n,
        "name": f"Client {n}",
        "address": f"{n} High Street, London N12 0AB",
        "family_size": 2,
    }
    data.update(overrides)
    return ImportRow(**data)


@pytest.fixture()
def rows_factory() -> Callable[..., list[ImportRow]]:
    def factory(count: int, **overrides: Any) -> list[ImportRow]:
        return [make_row(i, **overrides) for i in range(1, count + 1)]

    return factory


@pytest.fixture()
def backup_document() -> dict[str, Any]:
    """A small but complete backup document covering every collection."""
    return {
        "version": "1.0",
        "created_at": "2024-03-01T12:00:00Z",
        "created_by": "admin@example.org",
        "staff": [
            {
                "id": STAFF_ADMIN, "auth0_id": "auth0|admin", "name": "Ada Admin",
                "email": "ada@example.org", "mobile": None, "address": None, "theme": "light",
                "background_image": "", "role": "admin", "is_active": True,
                "email_verified": True, "email_verified_at": "2024-01-02T09:00:00+00:00",
                "created_at": "2024-01-01T09:00:00+00:00", "created_by": None,
                "deactivated_at": None, "deactivated_by": None,
            },
            {
                "id": STAFF_OTHER, "auth0_id": "auth0|sam", "name": "Sam Staff",
                "email": "sam@example.org", "mobile": "07700 900000", "address": "1 Park Road",
                "theme": "dark", "background_image": "leaves", "role": "staff", "is_active": False,
                "email_verified": False, "email_verified_at": None,
                "created_at": "2024-01-05T09:00:00+00:00", "created_by": STAFF_ADMIN,
                "deactivated_at": "2024-02-01T09:00:00+00:00", "deactivated_by": STAFF_ADMIN,
            },
        ],
        "clients": [
            {
                "id": CLIENT_A, "barcode_id": "FFB-202401-ABCDE", "name": "John Smith",
                "address": "123 High Street, London N12 0AB", "family_size": 4, "num_children": 2,
                "children_ages": "5, 8", "reason": "Referred by GP", "photo_url": None,
                "appointment_day": "Tuesday", "appointment_time": "10:30:00",
                "pref_gluten_free": False, "pref_halal": True, "pref_vegetarian": False,
                "pref_no_cooking": False, "created_at": "2024-01-10T10:00:00+00:00",
                "created_by": STAFF_ADMIN,
            },
            {
                "id": CLIENT_B, "barcode_id": "FFB-202401-FGHJK", "name": "Jane Doe",
                "address": "45 Park Road, Barnet EN5 1AA", "family_size": 1, "num_children": 0,
                "children_ages": None, "reason": None, "photo_url": "https://img.example/jd.png",
                "appointment_day": None, "appointment_time": None,
                "pref_gluten_free": True, "pref_halal": False, "pref_vegetarian": True,
                "pref_no_cooking": True, "created_at": "2024-01-11T10:00:00+00:00",
                "created_by": STAFF_OTHER,
            },
        ],
        "attendance": [
            {"id": "55555555-5555-5555-5555-555555555555", "client_id": CLIENT_A,
             "verified_by": STAFF_OTHER, "verified_at": "2024-01-16T10:35:00+00:00"},
        ],
        "audit_log": [
            {"id": "66666666-6666-6666-6666-666666666666", "table_name": "clients",
             "record_id": CLIENT_A, "action": "UPDATE",
             "old_values": {"family_size": 3}, "new_values": {"family_size": 4, "tags": ["a", "b"]},
             "changed_by": STAFF_ADMIN, "changed_at": "2024-01-12T08:00:00+00:00"},
        ],
        "registration_requests": [
            {"id": "77777777-7777-7777-7777-777777777777", "name": "Riley Volunteer",
             "email": "riley@example.org", "mobile": None, "address": None, "status": "pending",
             "approval_token": "tok-123", "token_expires_at": "2024-03-08T00:00:00+00:00",
             "created_at": "2024-03-01T00:00:00+00:00", "reviewed_at": None, "reviewed_by": None},
        ],
        "verification_codes": [
            {"id": "88888888-8888-8888-8888-888888888888", "staff_id": STAFF_OTHER, "code": "123456",
             "expires_at": "2024-01-05T09:15:00+00:00", "attempts": 1,
             "verified_at": None, "created_at": "2024-01-05T09:00:00+00:00"},
        ],
    }
