from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..config.loader import ImportSettings
from ..db.clients import find_duplicate_client, insert_audit_entry, insert_client
from ..db.locks import acquire_maintenance_lock
from ..db.transaction import safe_rollback, savepoint
from ..logging.error_log import ErrorLogBuffer
from ..models.import_result import BatchResult, ImportedClient, ImportResult
from ..models.import_row import ImportRow
from .barcode import generate_barcode_id
from .progress import ProgressTracker
from .validator import check_row_count

"""Batched client import.

Rows are split into consecutive batches; each batch runs in its own
transaction:

    BEGIN
    SELECT pg_advisory_xact_lock_shared(...)    -- blocks while a restore runs
    per row: SAVEPOINT / [duplicate lookup] / INSERT ... RETURNING id / RELEASE
    COMMIT

A failed INSERT rolls back to its savepoint and counts as one failed row; the
rest of the batch continues. A failed BEGIN or COMMIT marks the whole batch
failed (success=0, skipped=0, failed=len(batch)) and the import moves on to
the next batch. Batches that committed earlier stay committed.

The duplicate check is not synchronised with other writers: two concurrent
imports can both insert the same client.
"""

__all__ = [
    "BatchImporter",
    "import_clients",
    "partition",
]

logger = logging.getLogger(__name__)

ROW_SAVEPOINT = "import_row"
OPERATION = "import"


def partition(rows: Sequence[ImportRow], batch_size: int) -> list[tuple[int, Sequence[ImportRow]]]:
    """Split rows into (start, batch) pairs; start is the 1-based position of the first row."""
    return [(i + 1, rows[i : i + batch_size]) for i in range(0, len(rows), batch_size)]


@dataclass
class _BatchOutcome:
    success: int = 0
    skipped: int = 0
    failed: int = 0
    clients: list[ImportedClient] = field(default_factory=list)
    keys: set[tuple[str, str]] = field(default_factory=set)


class BatchImporter:
    """Runs one import over a cursor.

    `lookup_cursor` is used for the skip-duplicates lookup. When it is a
    separate connection the lookup sees committed data only, not the rows the
    current batch has inserted so far; rows imported earlier in the same run
    are tracked in memory and also count as duplicates.
    """

    def __init__(
        self,
        cursor: Any,
        created_by: str,
        *,
        skip_duplicates: bool = False,
        settings: ImportSettings | None = None,
        lookup_cursor: Any | None = None,
        error_log: ErrorLogBuffer | None = None,
        barcode_factory: Callable[[], str] = generate_barcode_id,
    ) -> None:
        self.cursor = cursor
        self.created_by = created_by
        self.skip_duplicates = skip_duplicates
        self.settings = settings or ImportSettings()
        self.lookup_cursor = lookup_cursor if lookup_cursor is not None else cursor
        self.error_log = error_log if error_log is not None else ErrorLogBuffer()
        self.barcode_factory = barcode_factory
        self.seen_keys: set[tuple[str, str]] = set()

    def run(self, rows: Sequence[ImportRow], batch_size: int | None = None) -> ImportResult:
        check_row_count(len(rows), self.settings.max_rows)
        size = self.settings.effective_batch_size(batch_size)
        batches = partition(rows, size)
        logger.info(
            "importing %d rows in %d batches (batch_size=%d skip_duplicates=%s)",
            len(rows),
            len(batches),
            size,
            self.skip_duplicates,
        )

        started = time.perf_counter()
        results: list[BatchResult] = []
        imported: list[ImportedClient] = []
        totals = {"imported": 0, "skipped": 0, "failed": 0}
        with ProgressTracker(len(batches)) as progress:
            for batch_no, (start, batch) in enumerate(batches, start=1):
                result, clients = self._import_batch(batch_no, start, batch)
                results.append(result)
                imported.extend(clients)
                totals["imported"] += result.success
                totals["skipped"] += result.skipped
                totals["failed"] += result.failed
                progress.finish_batch(**totals)

        return ImportResult.from_batches(
            total=len(rows),
            batches=results,
            imported_clients=imported,
            elapsed_seconds=time.perf_counter() - started,
        )

    def _import_batch(
        self, batch_no: int, start: int, rows: Sequence[ImportRow]
    ) -> tuple[BatchResult, list[ImportedClient]]:
        end = start + len(rows) - 1
        try:
            self.cursor.execute("BEGIN")
        except Exception as e:
            return self._batch_failed(
                batch_no, start, end, "TRANSACTION_BEGIN_ERROR", f"Failed to begin transaction: {e}"
            )

        try:
            acquire_maintenance_lock(self.cursor, shared=True)
        except Exception as e:
            safe_rollback(self.cursor)
            return self._batch_failed(
                batch_no, start, end, "LOCK_ERROR", f"Failed to acquire maintenance lock: {e}"
            )

        try:
            outcome = self._insert_rows(batch_no, start, rows)
        except BaseException:
            # KeyboardInterrupt / SystemExit mid-batch
            safe_rollback(self.cursor)
            raise

        try:
            self.cursor.execute("COMMIT")
        except Exception as e:
            safe_rollback(self.cursor)
            return self._batch_failed(
                batch_no, start, end, "TRANSACTION_COMMIT_ERROR", f"Failed to commit: {e}"
            )

        self.seen_keys.update(outcome.keys)
        logger.info(
            "batch %d rows %d-%d committed: success=%d skipped=%d failed=%d",
            batch_no,
            start,
            end,
            outcome.success,
            outcome.skipped,
            outcome.failed,
        )
        result = BatchResult(
            batch=batch_no,
            start=start,
            end=end,
            success=outcome.success,
            skipped=outcome.skipped,
            failed=outcome.failed,
        )
        return result, outcome.clients

    def _insert_rows(self, batch_no: int, start: int, rows: Sequence[ImportRow]) -> _BatchOutcome:
        outcome = _BatchOutcome()
        for position, row in enumerate(rows, start=start):
            row_no = row.row_number or position
            try:
                with savepoint(self.cursor, ROW_SAVEPOINT):
                    if self.skip_duplicates and self._is_duplicate(row, outcome.keys):
                        outcome.skipped += 1
                        logger.debug("row %d skipped as duplicate", row_no)
                        continue
                    client = self._insert_one(row, row_no)
            except Exception as e:
                outcome.failed += 1
                self.error_log.record(OPERATION, batch_no, row_no, "ROW_INSERT_ERROR", str(e))
                logger.warning("batch %d row %d insert failed: %s", batch_no, row_no, e)
                continue
            outcome.success += 1
            outcome.clients.append(client)
            outcome.keys.add(row.duplicate_key)
        return outcome

    def _insert_one(self, row: ImportRow, row_no: int) -> ImportedClient:
        barcode_id = self.barcode_factory()
        client_id = insert_client(self.cursor, row, barcode_id, self.created_by)
        if self.settings.audit_log:
            insert_audit_entry(
                self.cursor,
                "clients",
                client_id,
                "INSERT",
                self.created_by,
                new_values={"barcode_id": barcode_id, "name": row.name.strip(), "source": "import"},
            )
        return ImportedClient(row=row_no, id=client_id, barcode_id=barcode_id, name=row.name.strip())

    def _is_duplicate(self, row: ImportRow, batch_keys: set[tuple[str, str]]) -> bool:
        key = row.duplicate_key
        if key in self.seen_keys or key in batch_keys:
            return True
        return find_duplicate_client(self.lookup_cursor, row.name, row.address) is not None

    def _batch_failed(
        self, batch_no: int, start: int, end: int, error_type: str, message: str
    ) -> tuple[BatchResult, list[ImportedClient]]:
        self.error_log.record(OPERATION, batch_no, -1, error_type, message)
        logger.error("batch %d rows %d-%d failed: %s", batch_no, start, end, message)
        result = BatchResult(
            batch=batch_no,
            start=start,
            end=end,
            success=0,
            skipped=0,
            failed=end - start + 1,
            error=message,
        )
        return result, []


def import_clients(
    cursor: Any,
    rows: Sequence[ImportRow],
    created_by: str,
    *,
    batch_size: int | None = None,
    skip_duplicates: bool = False,
    settings: ImportSettings | None = None,
    lookup_cursor: Any | None = None,
    error_log: ErrorLogBuffer | None = None,
) -> ImportResult:
    """Import rows in batches. Raises InputError for zero rows or more than settings.max_rows."""
    importer = BatchImporter(
        cursor,
        created_by,
        skip_duplicates=skip_duplicates,
        settings=settings,
        lookup_cursor=lookup_cursor,
        error_log=error_log,
    )
    return importer.run(rows, batch_size)
