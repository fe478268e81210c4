"""
ctp/store.py
------------
Durable persistence for retired runs.

Responsibilities
----------------
- Define the object store interface the run manager hands finished runs to.
- SQLite implementation (local, default) and HTTP implementation speaking a
  CCDB-style REST upload.
- Serialize configurations and counter histories into JSON payloads.

Every store is best-effort from the caller's point of view: `store()` returns
False (and logs) on failure; the run manager never retries.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import httpx

from .configuration import Configuration
from .db_schema import ensure_schema
from .scalers import RunScalers

CONFIG_PATH = "CTP/Config/Config"
SCALERS_PATH = "CTP/Calib/Scalers"

log = logging.getLogger("ctp.store")


class ObjectStore(Protocol):
    def store(self, payload: Dict[str, Any], path: str, valid_from: int, valid_until: int,
              metadata: Dict[str, str]) -> bool:
        ...


# ---------- payloads ----------
def config_payload(config: Configuration) -> Dict[str, Any]:
    return config.to_dict()


def scalers_payload(scalers: RunScalers, names: Optional[List[str]] = None) -> Dict[str, Any]:
    return scalers.to_dict(names)


# ---------- SQLite ----------
class SqliteObjectStore:
    def __init__(self, db_path: str | Path, recreate: bool = False):
        self.db_path = str(db_path)
        ensure_schema(self.db_path, recreate=recreate)

    def store(self, payload: Dict[str, Any], path: str, valid_from: int, valid_until: int,
              metadata: Dict[str, str]) -> bool:
        try:
            with sqlite3.connect(self.db_path) as cx:
                cx.execute("PRAGMA journal_mode=WAL;")
                cur = cx.cursor()
                cur.execute(
                    "INSERT INTO objects (path, valid_from, valid_until, metadata_json, payload_json, created_ms) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (path, int(valid_from), int(valid_until), json.dumps(metadata or {}),
                     json.dumps(payload), int(time.time() * 1000)),
                )
                run = (metadata or {}).get("runNumber")
                if run is not None and path == SCALERS_PATH:
                    cur.execute(
                        """
                        INSERT INTO runs (run_number, start_ms, end_ms, n_records) VALUES (?,?,?,?)
                        ON CONFLICT(run_number) DO UPDATE SET
                          start_ms  = excluded.start_ms,
                          end_ms    = excluded.end_ms,
                          n_records = excluded.n_records
                        """,
                        (int(run), int(valid_from), int(valid_until), len(payload.get("records") or [])),
                    )
                cx.commit()
        except sqlite3.Error as e:
            log.warning("sqlite_store_failed", extra={"path": path, "db": self.db_path, "err": str(e)})
            return False
        log.info("object stored: %s [%d, %d] %s", path, valid_from, valid_until, metadata)
        return True

    def retrieve(self, path: str, timestamp: int) -> Optional[Dict[str, Any]]:
        """Most recent object at `path` whose validity interval contains `timestamp`."""
        with sqlite3.connect(self.db_path) as cx:
            row = cx.execute(
                "SELECT payload_json FROM objects WHERE path=? AND valid_from<=? AND valid_until>=? "
                "ORDER BY created_ms DESC, object_id DESC LIMIT 1",
                (path, int(timestamp), int(timestamp)),
            ).fetchone()
        return json.loads(row[0]) if row else None

    def list_runs(self) -> List[Dict[str, int]]:
        with sqlite3.connect(self.db_path) as cx:
            rows = cx.execute(
                "SELECT run_number, start_ms, end_ms, n_records FROM runs ORDER BY run_number"
            ).fetchall()
        return [
            {"run_number": r[0], "start_ms": r[1], "end_ms": r[2], "n_records": r[3]} for r in rows
        ]


# ---------- HTTP ----------
class HttpObjectStore:
    """
    Uploads to `{base_url}/{path}/{valid_from}/{valid_until}/{key=value...}`
    as a multipart file, the way the CCDB REST API accepts objects.
    """
    def __init__(self, base_url: str, timeout_ms: int = 2000, client: Optional[httpx.Client] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout_ms / 1000.0
        self._client = client or httpx.Client(base_url=self.base_url, timeout=self.timeout)

    def _url(self, path: str, valid_from: int, valid_until: int, metadata: Dict[str, str]) -> str:
        parts = [path.strip("/"), str(int(valid_from)), str(int(valid_until))]
        parts += [f"{k}={v}" for k, v in sorted((metadata or {}).items())]
        return "/" + "/".join(parts)

    def store(self, payload: Dict[str, Any], path: str, valid_from: int, valid_until: int,
              metadata: Dict[str, str]) -> bool:
        url = self._url(path, valid_from, valid_until, metadata)
        body = json.dumps(payload).encode("utf-8")
        t0 = time.perf_counter()
        try:
            resp = self._client.post(url, files={"send": ("object.json", body, "application/json")})
        except httpx.HTTPError as e:
            log.warning("http_store_error", extra={"url": url, "err": str(e)})
            return False
        latency_ms = round((time.perf_counter() - t0) * 1000, 1)
        if not 200 <= resp.status_code < 300:
            log.warning("http_non_2xx", extra={"url": url, "status": resp.status_code, "latency_ms": latency_ms})
            return False
        log.info("http_stored", extra={"url": url, "status": resp.status_code, "latency_ms": latency_ms})
        return True

    def close(self) -> None:
        self._client.close()


def make_store(store_cfg: Dict[str, Any], db_path: Optional[Path] = None) -> ObjectStore:
    """Build the store selected by the `ctp.store` config block."""
    mode = str(store_cfg.get("mode", "sqlite")).lower()
    if mode == "sqlite":
        return SqliteObjectStore(db_path or store_cfg["sqlite_path"])
    if mode == "http":
        http_cfg = store_cfg.get("http", {}) or {}
        return HttpObjectStore(
            http_cfg.get("base_url", "http://127.0.0.1:8080"),
            timeout_ms=int(http_cfg.get("timeout_ms", 2000)),
        )
    raise ValueError(f"Unknown ctp.store.mode: {mode}")
