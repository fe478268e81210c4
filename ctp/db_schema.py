from __future__ import annotations

"""
ctp/db_schema.py
----------------
Idempotent SQLite schema for the local object store.

Design goals
- Behave like a key/timestamp-indexed object store: every stored object has a
  path key ('CTP/Config/Config', 'CTP/Calib/Scalers') and a validity interval
  in epoch milliseconds.
- Keep a small run index so operators can list retired runs without decoding
  payloads.
- Safe to call at every boot; recreate=True drops and rebuilds.
"""

import sqlite3
from pathlib import Path

# Bump when DDL changes in a way worth tracking (for future migrations).
LOCKED_USER_VERSION = 1

# ------------------------
# DDL: stored objects
# ------------------------
OBJECTS_DDL = """
CREATE TABLE IF NOT EXISTS objects (
    object_id     INTEGER PRIMARY KEY,
    path          TEXT    NOT NULL,         -- e.g. 'CTP/Config/Config'
    valid_from    INTEGER NOT NULL,         -- epoch ms, inclusive
    valid_until   INTEGER NOT NULL,         -- epoch ms, inclusive
    metadata_json TEXT    NOT NULL DEFAULT '{}',
    payload_json  TEXT    NOT NULL,
    created_ms    INTEGER NOT NULL          -- host epoch ms when stored
);
CREATE INDEX IF NOT EXISTS idx_objects_path_validity ON objects(path, valid_from, valid_until);
"""

# ------------------------
# DDL: retired runs
# ------------------------
RUNS_DDL = """
CREATE TABLE IF NOT EXISTS runs (
    run_number  INTEGER PRIMARY KEY,
    start_ms    INTEGER NOT NULL,
    end_ms      INTEGER NOT NULL,
    n_records   INTEGER NOT NULL DEFAULT 0  -- counter snapshots collected while live
);
"""


# ------------------------
# Helpers
# ------------------------
def _exec_script(conn: sqlite3.Connection, script: str) -> None:
    cur = conn.cursor()
    cur.executescript(script)
    conn.commit()


def _drop_everything(conn: sqlite3.Connection) -> None:
    cur = conn.cursor()
    cur.execute("DROP INDEX IF EXISTS idx_objects_path_validity")
    cur.execute("DROP TABLE IF EXISTS objects")
    cur.execute("DROP TABLE IF EXISTS runs")
    conn.commit()


def ensure_schema(db_path: str | Path, recreate: bool = False) -> None:
    """
    Create the store file (and its folder) on first use and apply the DDL.
    recreate=True drops objects and runs first.
    """
    p = Path(db_path)
    p.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(p)
    try:
        if recreate:
            _drop_everything(conn)
        _exec_script(conn, OBJECTS_DDL)
        _exec_script(conn, RUNS_DDL)

        cur = conn.cursor()
        cur.execute(f"PRAGMA user_version = {LOCKED_USER_VERSION}")
        conn.commit()
    finally:
        conn.close()
