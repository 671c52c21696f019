import os
import sqlite3
from pathlib import Path

DB_ENV = "DB_PATH"
DEFAULT_DB_PATH = str(Path(__file__).resolve().parent.parent / "data" / "shared.db")
SCHEMA_PATH = Path(__file__).resolve().parent / "schema.sql"


def get_db_path() -> str:
    return os.environ.get(DB_ENV, DEFAULT_DB_PATH)


def connect(db_path: str | None = None) -> sqlite3.Connection:
    path = db_path or get_db_path()
    conn = sqlite3.connect(path, check_same_thread=False, timeout=5)
    conn.row_factory = sqlite3.Row
    # WAL lets the order and inventory services share one file.
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn


def init_db(db_path: str | None = None) -> None:
    path = db_path or get_db_path()
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = connect(path)
    try:
        # Every statement is IF NOT EXISTS, so this is safe on existing DBs.
        with open(SCHEMA_PATH, "r", encoding="utf-8") as handle:
            conn.executescript(handle.read())
        conn.commit()
    finally:
        conn.close()


def ping(db_path: str | None = None) -> bool:
    """Return True when the store answers a trivial query."""
    try:
        conn = connect(db_path)
    except sqlite3.Error:
        return False
    try:
        conn.execute("SELECT 1").fetchone()
        return True
    except sqlite3.Error:
        return False
    finally:
        conn.close()
