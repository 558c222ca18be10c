from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

"""Advisory maintenance lock and connectivity check.

Import batches take the lock in shared mode, restore takes it exclusively.
Both use the transaction-scoped variants, so the lock is released by the
COMMIT / ROLLBACK that ends the batch or the restore.
"""

__all__ = [
    "MAINTENANCE_LOCK_KEY",
    "acquire_maintenance_lock",
    "check_database",
]

logger = logging.getLogger(__name__)

# Arbitrary 64-bit key shared by every foodbank process.
MAINTENANCE_LOCK_KEY = 0x46424B5253  # "FBKRS"


def acquire_maintenance_lock(cursor: Any, *, shared: bool = False) -> None:
    """Block until the maintenance lock is held for the current transaction."""
    fn = "pg_advisory_xact_lock_shared" if shared else "pg_advisory_xact_lock"
    logger.debug("acquiring %s(%d)", fn, MAINTENANCE_LOCK_KEY)
    cursor.execute(f"SELECT {fn}(%s)", (MAINTENANCE_LOCK_KEY,))


def check_database(cursor: Any) -> dict[str, str]:
    """Connectivity probe: {"database": "connected"|"unavailable", "timestamp": ..., ["error"]}."""
    status: dict[str, str] = {
        "timestamp": datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ"),
    }
    try:
        cursor.execute("SELECT 1")
        cursor.fetchone()
    except Exception as e:
        status["database"] = "unavailable"
        status["error"] = str(e)
        return status
    status["database"] = "connected"
    return status
