from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

import psycopg2
from psycopg2.extras import Json, execute_values

from ..errors import PersistenceError

"""Batched INSERT via psycopg2.extras.execute_values.

Used by restore to write whole collections with their original keys. The
caller owns the transaction; a failure here is wrapped in BatchInsertError
and leaves rollback to the enclosing scope.
"""

__all__ = [
    "BatchInsertError",
    "BatchMetrics",
    "InsertResult",
    "batch_insert",
]


class BatchInsertError(PersistenceError):
    pass


@dataclass(frozen=True)
class BatchMetrics:
    """Timing for a single batch_insert call."""
    table: str
    batch_size: int  # Number of rows in this batch
    elapsed_seconds: float  # Time spent on execute_values call
    start_time: float  # Start timestamp (time.time())
    end_time: float  # End timestamp (time.time())


@dataclass(frozen=True)
class InsertResult:
    inserted_rows: int


def _adapt_json(rows: list[Sequence[Any]], columns: Sequence[str], json_columns: set[str]) -> list[tuple[Any, ...]]:
    idx = [i for i, c in enumerate(columns) if c in json_columns]
    adapted = []
    for row in rows:
        values = list(row)
        for i in idx:
            if values[i] is not None:
                values[i] = Json(values[i])
        adapted.append(tuple(values))
    return adapted


def batch_insert(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    page_size: int = 1000,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
    json_columns: set[str] | None = None,
) -> InsertResult:
    """Perform batched INSERT using psycopg2.extras.execute_values.

    Parameters
    ----------
    cursor: psycopg2 cursor
    table: target table (trusted identifier, never user input)
    columns: insert columns, in row-tuple order
    rows: row tuples
    page_size: rows per generated statement. Pass len(rows) to force a single
        statement, which tables with self-referencing foreign keys need
        because constraints are checked per statement.
    metrics_callback: receives BatchMetrics after the call. Not invoked when
        `rows` is empty (the function returns early).
    json_columns: columns whose values are wrapped in psycopg2 Json for
        jsonb storage
    """
    rows_list = list(rows)
    if not rows_list:
        return InsertResult(inserted_rows=0)

    if json_columns:
        rows_list = _adapt_json(rows_list, columns, json_columns)

    cols_sql = ",".join(f'"{c}"' for c in columns)
    base_sql = f"INSERT INTO {table} ({cols_sql}) VALUES %s"

    start_time = time.time()
    try:
        execute_values(cursor, base_sql, rows_list, page_size=page_size)
    except psycopg2.Error as e:
        raise BatchInsertError(f"{table}: {e}") from e
    finally:
        end_time = time.time()
        if metrics_callback is not None:
            metrics_callback(
                BatchMetrics(
                    table=table,
                    batch_size=len(rows_list),
                    elapsed_seconds=end_time - start_time,
                    start_time=start_time,
                    end_time=end_time,
                )
            )

    return InsertResult(inserted_rows=len(rows_list))
