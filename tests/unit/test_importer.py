from __future__ import annotations

import math

import pytest

from foodbank.config.loader import ImportSettings
from foodbank.errors import InputError
from foodbank.logging.error_log import ErrorLogBuffer
from foodbank.services.barcode import BARCODE_PATTERN
from foodbank.services.importer import BatchImporter, import_clients, partition

CREATOR = "11111111-1111-1111-1111-111111111111"


def _committed_clients(db) -> list[dict]:
    assert not db.in_transaction
    return db.tables["clients"]


@pytest.mark.parametrize("count", [1, 49, 50, 51, 120, 250])
@pytest.mark.parametrize("requested,effective", [(None, 50), (0, 50), (-5, 50), (7, 7), (100, 100), (500, 100)])
def test_batch_partition_law(fake_db, rows_factory, count, requested, effective):
    rows = rows_factory(count)
    result = import_clients(fake_db.cursor(), rows, CREATOR, batch_size=requested)
    assert len(result.results) == math.ceil(count / effective)
    assert sum(b.success + b.skipped + b.failed for b in result.results) == count
    assert result.imported + result.skipped + result.failed == result.total == count
    assert [b.size for b in result.results][:-1] == [effective] * (len(result.results) - 1)


def test_partition_positions():
    parts = partition(list(range(5)), 2)
    assert [(start, list(batch)) for start, batch in parts] == [(1, [0, 1]), (3, [2, 3]), (5, [4])]


def test_commit_failure_fails_whole_batch_and_import_continues(fake_db, rows_factory):
    fake_db.fail_commits = {2}
    error_log = ErrorLogBuffer()
    result = import_clients(fake_db.cursor(), rows_factory(120), CREATOR, batch_size=50, error_log=error_log)

    b1, b2, b3 = result.results
    assert (b1.start, b1.end, b1.success, b1.failed) == (1, 50, 50, 0)
    assert (b2.start, b2.end, b2.success, b2.skipped, b2.failed) == (51, 100, 0, 0, 50)
    assert b2.error is not None and b2.error.startswith("Failed to commit:")
    assert (b3.start, b3.end, b3.success, b3.failed) == (101, 120, 20, 0)

    assert result.imported == 70
    assert result.failed == 50
    assert result.skipped == 0
    assert result.success is False

    names = {c["name"] for c in _committed_clients(fake_db)}
    assert len(names) == 70
    assert "Client 75" not in names and "Client 101" in names
    assert [c.row for c in result.imported_clients] == list(range(1, 51)) + list(range(101, 121))
    assert [r.error_type for r in error_log.records] == ["TRANSACTION_COMMIT_ERROR"]
    assert error_log.records[0].batch == 2 and error_log.records[0].row == -1


def test_begin_failure_fails_batch(fake_db, rows_factory):
    fake_db.fail_begin = True
    result = import_clients(fake_db.cursor(), rows_factory(3), CREATOR)
    assert result.failed == 3
    assert result.results[0].error.startswith("Failed to begin transaction:")
    assert fake_db.tables["clients"] == []


def test_duplicate_pair_in_one_upload_with_skip(fake_db, rows_factory):
    rows = rows_factory(2)
    rows[1] = rows[1].__class__(row_number=2, name=" CLIENT 1 ", address=rows[0].address.upper(), family_size=5)
    result = import_clients(fake_db.cursor(), rows, CREATOR, skip_duplicates=True)
    assert (result.imported, result.skipped, result.failed) == (1, 1, 0)
    assert result.success is True


def test_duplicate_across_batches_with_separate_lookup_connection(fake_db, rows_factory):
    rows = rows_factory(2)
    rows[1] = rows[1].__class__(row_number=2, name=rows[0].name, address=rows[0].address, family_size=1)
    result = import_clients(
        fake_db.cursor(),
        rows,
        CREATOR,
        batch_size=1,
        skip_duplicates=True,
        lookup_cursor=fake_db.cursor(committed_only=True),
    )
    assert [(b.success, b.skipped) for b in result.results] == [(1, 0), (0, 1)]


def test_without_skip_duplicates_both_rows_insert(fake_db, rows_factory):
    rows = rows_factory(1) * 2
    result = import_clients(fake_db.cursor(), rows, CREATOR)
    assert result.imported == 2
    assert not any(s.startswith("SELECT id FROM clients") for s in fake_db.statements)


def test_existing_client_skipped(fake_db, backup_document, rows_factory):
    fake_db.load(backup_document)
    rows = rows_factory(2)
    rows[0] = rows[0].__class__(
        row_number=1, name="john smith", address=" 123 HIGH STREET, LONDON N12 0AB ", family_size=4
    )
    result = import_clients(fake_db.cursor(), rows, CREATOR, skip_duplicates=True)
    assert (result.imported, result.skipped) == (1, 1)
    assert len(fake_db.tables["clients"]) == 3


def test_failed_duplicate_lookup_fails_the_row(fake_db, rows_factory):
    fake_db.fail_when = lambda stmt, params: stmt.startswith("SELECT id FROM clients") and params[0] == "Client 2"
    error_log = ErrorLogBuffer()
    result = import_clients(
        fake_db.cursor(),
        rows_factory(3),
        CREATOR,
        skip_duplicates=True,
        lookup_cursor=fake_db.cursor(committed_only=True),
        error_log=error_log,
    )
    assert (result.imported, result.skipped, result.failed) == (2, 0, 1)
    assert sorted(c["name"] for c in _committed_clients(fake_db)) == ["Client 1", "Client 3"]
    rec = error_log.records[0]
    assert (rec.batch, rec.row, rec.error_type) == (1, 2, "ROW_INSERT_ERROR")
    assert "injected failure" in rec.message


def test_row_insert_failure_does_not_abort_batch(fake_db, rows_factory):
    fake_db.fail_when = lambda stmt, params: stmt.startswith("INSERT INTO clients") and params[1] == "Client 2"
    error_log = ErrorLogBuffer()
    result = import_clients(fake_db.cursor(), rows_factory(4), CREATOR, error_log=error_log)
    assert (result.imported, result.failed) == (3, 1)
    assert result.results[0].error is None
    assert sorted(c["name"] for c in _committed_clients(fake_db)) == ["Client 1", "Client 3", "Client 4"]
    rec = error_log.records[0]
    assert (rec.operation, rec.batch, rec.row, rec.error_type) == ("import", 1, 2, "ROW_INSERT_ERROR")
    assert "ROLLBACK TO SAVEPOINT import_row" in fake_db.statements


def test_barcode_collision_is_a_row_failure(fake_db, rows_factory):
    importer = BatchImporter(fake_db.cursor(), CREATOR, barcode_factory=lambda: "FFB-202401-AAAAA")
    result = importer.run(rows_factory(3))
    assert (result.imported, result.failed) == (1, 2)
    assert len(fake_db.tables["clients"]) == 1


def test_imported_clients_carry_ids_and_barcodes(fake_db, rows_factory):
    result = import_clients(fake_db.cursor(), rows_factory(3, appointment_day="tuesday"), CREATOR)
    stored = {c["id"]: c for c in fake_db.tables["clients"]}
    for client in result.imported_clients:
        assert BARCODE_PATTERN.match(client.barcode_id)
        assert stored[client.id]["barcode_id"] == client.barcode_id
        assert stored[client.id]["created_by"] == CREATOR
        assert stored[client.id]["appointment_day"] == "Tuesday"
        assert stored[client.id]["photo_url"] is None


def test_each_batch_takes_shared_maintenance_lock(fake_db, rows_factory):
    import_clients(fake_db.cursor(), rows_factory(5), CREATOR, batch_size=2)
    assert fake_db.locks == ["pg_advisory_xact_lock_shared"] * 3


def test_audit_entries_are_opt_in(fake_db, rows_factory):
    import_clients(fake_db.cursor(), rows_factory(2), CREATOR)
    assert fake_db.tables["audit_log"] == []

    settings = ImportSettings(audit_log=True)
    result = import_clients(fake_db.cursor(), rows_factory(2), CREATOR, settings=settings)
    entries = fake_db.tables["audit_log"]
    assert [e["record_id"] for e in entries] == [c.id for c in result.imported_clients]
    assert all(e["action"] == "INSERT" and e["changed_by"] == CREATOR for e in entries)
    assert entries[0]["new_values"]["source"] == "import"


def test_interrupt_rolls_back_open_batch(fake_db, rows_factory):
    calls = {"n": 0}

    def factory():
        calls["n"] += 1
        if calls["n"] == 4:
            raise KeyboardInterrupt
        return f"FFB-202401-{'ABCDE'[calls['n'] % 5] * 5}"

    importer = BatchImporter(fake_db.cursor(), CREATOR, barcode_factory=factory)
    with pytest.raises(KeyboardInterrupt):
        importer.run(rows_factory(5), batch_size=2)
    assert not fake_db.in_transaction
    assert len(fake_db.tables["clients"]) == 2
    assert fake_db.statements[-1] == "ROLLBACK"


def test_row_count_limits(fake_db, rows_factory):
    with pytest.raises(InputError):
        import_clients(fake_db.cursor(), [], CREATOR)
    with pytest.raises(InputError):
        import_clients(fake_db.cursor(), rows_factory(6), CREATOR, settings=ImportSettings(max_rows=5))
    assert fake_db.statements == []


def test_result_to_dict_omits_empty_errors(fake_db, rows_factory):
    fake_db.fail_commits = {1}
    data = import_clients(fake_db.cursor(), rows_factory(3), CREATOR, batch_size=2).to_dict()
    assert data["success"] is False
    assert "error" in data["results"][0]
    assert "error" not in data["results"][1]
