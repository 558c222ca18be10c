from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

"""Explicit transaction and savepoint scopes over a raw cursor.

The connection runs in autocommit mode; these helpers issue BEGIN / COMMIT /
ROLLBACK themselves. Any exception leaving the block, including
KeyboardInterrupt, rolls back before it propagates.
"""

__all__ = [
    "transaction",
    "savepoint",
    "safe_rollback",
    "REPEATABLE_READ_READ_ONLY",
]

logger = logging.getLogger(__name__)

REPEATABLE_READ_READ_ONLY = "BEGIN ISOLATION LEVEL REPEATABLE READ READ ONLY"


def safe_rollback(cursor: Any, sql: str = "ROLLBACK") -> None:
    """Issue a rollback statement, logging instead of raising if it fails."""
    try:
        cursor.execute(sql)
    except Exception:
        logger.warning("%s failed", sql, exc_info=True)


@contextmanager
def transaction(cursor: Any, begin_sql: str = "BEGIN") -> Iterator[Any]:
    cursor.execute(begin_sql)
    try:
        yield cursor
    except BaseException:
        safe_rollback(cursor)
        raise
    try:
        cursor.execute("COMMIT")
    except BaseException:
        safe_rollback(cursor)
        raise


@contextmanager
def savepoint(cursor: Any, name: str) -> Iterator[Any]:
    """Nested scope inside an open transaction.

    On error only the work since the savepoint is undone and the enclosing
    transaction stays usable.
    """
    cursor.execute(f"SAVEPOINT {name}")
    try:
        yield cursor
    except BaseException:
        safe_rollback(cursor, f"ROLLBACK TO SAVEPOINT {name}")
        raise
    cursor.execute(f"RELEASE SAVEPOINT {name}")
