import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path

from .config import RECORD_STORE_TIMEOUT_SECONDS

DB_DIR = Path(os.getenv("DB_DIR", "./data"))
DB_DIR.mkdir(parents=True, exist_ok=True)
DB_PATH = DB_DIR / os.getenv("DB_FILE", "aerocore.sqlite")


def get_connection(path=None):
    # isolation_level=None: transactions are opened explicitly with BEGIN
    con = sqlite3.connect(
        path or DB_PATH,
        timeout=RECORD_STORE_TIMEOUT_SECONDS,
        check_same_thread=False,
        isolation_level=None,
    )
    con.row_factory = sqlite3.Row
    con.execute("PRAGMA foreign_keys = ON")
    return con


@contextmanager
def connect(path=None):
    con = get_connection(path)
    try:
        yield con
    finally:
        con.close()


@contextmanager
def write_transaction(path=None):
    """Immediate write transaction: commits on success, rolls back on any error."""
    with connect(path) as con:
        con.execute("BEGIN IMMEDIATE")
        try:
            yield con
        except BaseException:
            con.execute("ROLLBACK")
            raise
        con.execute("COMMIT")


def init_db(path=None) -> None:
    from .schema_sql import SCHEMA_SQL

    with connect(path) as con:
        con.executescript(SCHEMA_SQL)
