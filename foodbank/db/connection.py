from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import psycopg2
from dotenv import load_dotenv

from ..config.loader import AppConfig, DatabaseConfig
from ..errors import PersistenceError

"""psycopg2 connection handling.

Connection parameters are resolved in this order (first hit wins):
    1. DATABASE_URL / PGDSN (whole DSN)
    2. PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE, per key
    3. the config file `database` section (its `dsn` is used only when no
       PG* variable is set)
    4. libpq-style defaults (localhost:5432, postgres/postgres)

`.env` is loaded with override=True before resolution, so values in it beat
variables already present in the process environment.
"""

__all__ = [
    "resolve_dsn",
    "load_env_file",
    "db_connection",
]

logger = logging.getLogger(__name__)

PER_KEY_VARS = ("PGHOST", "PGPORT", "PGUSER", "PGPASSWORD", "PGDATABASE")


def load_env_file(path: Path = Path(".env"), override: bool = True) -> bool:
    """Load a dotenv file if it exists. Returns True when a file was read."""
    if not path.exists():
        return False
    load_dotenv(dotenv_path=path, override=override)
    logger.debug("loaded environment from %s", path)
    return True


def resolve_dsn(db_cfg: DatabaseConfig) -> str:
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN")
    if dsn:
        return dsn
    if db_cfg.dsn and not any(os.getenv(var) for var in PER_KEY_VARS):
        return db_cfg.dsn
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


@contextmanager
def db_connection(cfg: AppConfig, *, autocommit: bool = True) -> Iterator[Any]:
    """Yield a psycopg2 cursor on a fresh connection.

    With autocommit=True (the default) psycopg2 opens no implicit transaction,
    so the services own every boundary with explicit BEGIN / COMMIT /
    ROLLBACK. The connection is always closed on exit; any transaction still
    open at that point is discarded by the server.
    """
    try:
        conn = psycopg2.connect(resolve_dsn(cfg.database))
    except psycopg2.Error as e:
        raise PersistenceError(f"database connection failed: {e}") from e

    try:
        conn.autocommit = autocommit
        with conn.cursor() as cur:
            yield cur
    finally:
        conn.close()
