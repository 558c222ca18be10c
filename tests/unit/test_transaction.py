from __future__ import annotations

import pytest

from foodbank.db.transaction import REPEATABLE_READ_READ_ONLY, safe_rollback, savepoint, transaction


class RecordingCursor:
    def __init__(self, fail_on: set[str] | None = None) -> None:
        self.statements: list[str] = []
        self.fail_on = fail_on or set()

    def execute(self, sql, params=None):
        self.statements.append(sql)
        if sql in self.fail_on:
            raise RuntimeError(f"{sql} failed")


def test_transaction_commits():
    cur = RecordingCursor()
    with transaction(cur) as c:
        c.execute("SELECT 1")
    assert cur.statements == ["BEGIN", "SELECT 1", "COMMIT"]


def test_transaction_custom_begin():
    cur = RecordingCursor()
    with transaction(cur, REPEATABLE_READ_READ_ONLY):
        pass
    assert cur.statements[0] == "BEGIN ISOLATION LEVEL REPEATABLE READ READ ONLY"


def test_transaction_rolls_back_and_reraises():
    cur = RecordingCursor()
    with pytest.raises(ValueError):
        with transaction(cur):
            raise ValueError("boom")
    assert cur.statements == ["BEGIN", "ROLLBACK"]


def test_transaction_rolls_back_on_interrupt():
    cur = RecordingCursor()
    with pytest.raises(KeyboardInterrupt):
        with transaction(cur):
            raise KeyboardInterrupt
    assert cur.statements[-1] == "ROLLBACK"


def test_failed_commit_rolls_back():
    cur = RecordingCursor(fail_on={"COMMIT"})
    with pytest.raises(RuntimeError, match="COMMIT failed"):
        with transaction(cur):
            pass
    assert cur.statements == ["BEGIN", "COMMIT", "ROLLBACK"]


def test_safe_rollback_swallows_secondary_error(caplog):
    cur = RecordingCursor(fail_on={"ROLLBACK"})
    safe_rollback(cur)
    assert "ROLLBACK failed" in caplog.text


def test_failed_rollback_keeps_original_error():
    cur = RecordingCursor(fail_on={"ROLLBACK"})
    with pytest.raises(ValueError, match="original"):
        with transaction(cur):
            raise ValueError("original")


def test_savepoint_release_and_rollback():
    cur = RecordingCursor()
    with savepoint(cur, "sp"):
        cur.execute("INSERT")
    with pytest.raises(RuntimeError):
        with savepoint(cur, "sp"):
            raise RuntimeError("row failed")
    assert cur.statements == [
        "SAVEPOINT sp",
        "INSERT",
        "RELEASE SAVEPOINT sp",
        "SAVEPOINT sp",
        "ROLLBACK TO SAVEPOINT sp",
    ]
