import json
import sqlite3
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Optional

from .log import json_log

SCHEMA = """
CREATE TABLE IF NOT EXISTS products (
  id INTEGER PRIMARY KEY,
  category_id INTEGER,
  barcode TEXT,
  row_json TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_products_barcode ON products(barcode);
CREATE INDEX IF NOT EXISTS idx_products_category ON products(category_id);

CREATE TABLE IF NOT EXISTS categories (
  id INTEGER PRIMARY KEY,
  row_json TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS branches (
  id INTEGER PRIMARY KEY,
  row_json TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS users (
  id INTEGER PRIMARY KEY,
  row_json TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sync_queue (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  kind TEXT NOT NULL,
  payload_json TEXT NOT NULL,
  created_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS local_settings (
  key TEXT PRIMARY KEY,
  value_json TEXT NOT NULL,
  updated_at INTEGER NOT NULL
);
"""

COLLECTIONS = ("products", "categories", "branches", "users")


class LocalStoreError(Exception):
    pass


@dataclass
class QueueEntry:
    id: int
    kind: str
    payload: dict
    created_at: int


def _now_ms() -> int:
    return int(time.time() * 1000)


class LocalStore:
    """
    On-device SQLite store: reference data mirrors plus the FIFO sync queue.

    Each method is one whole operation on its own connection, so callers can run
    them from worker threads without sharing connection state.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path

    @contextmanager
    def _connect(self):
        try:
            conn = sqlite3.connect(self.db_path, timeout=10)
        except sqlite3.Error as ex:
            raise LocalStoreError(str(ex)) from ex
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        except sqlite3.Error as ex:
            raise LocalStoreError(str(ex)) from ex
        finally:
            conn.close()

    def init_db(self):
        with self._connect() as conn:
            conn.executescript(SCHEMA)

    # ---- reference data mirrors ----

    def replace_collection(self, name: str, rows) -> int:
        if name not in COLLECTIONS:
            raise ValueError(f"unknown collection: {name}")
        rows = [r for r in (rows or []) if isinstance(r, dict) and r.get("id") is not None]
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(f"DELETE FROM {name}")
            if name == "products":
                cur.executemany(
                    "INSERT OR REPLACE INTO products (id, category_id, barcode, row_json) VALUES (?, ?, ?, ?)",
                    [
                        (int(r["id"]), r.get("category_id"), (str(r.get("barcode") or "").strip() or None), json.dumps(r))
                        for r in rows
                    ],
                )
            else:
                cur.executemany(
                    f"INSERT OR REPLACE INTO {name} (id, row_json) VALUES (?, ?)",
                    [(int(r["id"]), json.dumps(r)) for r in rows],
                )
        return len(rows)

    def list_collection(self, name: str) -> list:
        if name not in COLLECTIONS:
            raise ValueError(f"unknown collection: {name}")
        with self._connect() as conn:
            cur = conn.execute(f"SELECT row_json FROM {name} ORDER BY id")
            return [json.loads(r["row_json"]) for r in cur.fetchall()]

    def find_product_by_barcode(self, barcode: str) -> Optional[dict]:
        barcode = (barcode or "").strip()
        if not barcode:
            return None
        with self._connect() as conn:
            row = conn.execute("SELECT row_json FROM products WHERE barcode = ? LIMIT 1", (barcode,)).fetchone()
            return json.loads(row["row_json"]) if row else None

    # ---- sync queue ----

    def enqueue(self, kind: str, payload: dict) -> int:
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT INTO sync_queue (kind, payload_json, created_at) VALUES (?, ?, ?)",
                (kind, json.dumps(payload), _now_ms()),
            )
            entry_id = int(cur.lastrowid)
        json_log("info", "sync_queue.enqueued", entry_id=entry_id, kind=kind)
        return entry_id

    def peek_head(self) -> Optional[QueueEntry]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, kind, payload_json, created_at FROM sync_queue ORDER BY id ASC LIMIT 1"
            ).fetchone()
        return self._entry(row) if row else None

    def list_queue(self) -> list:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, kind, payload_json, created_at FROM sync_queue ORDER BY id ASC"
            ).fetchall()
        return [self._entry(r) for r in rows]

    def delete_entry(self, entry_id: int) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM sync_queue WHERE id = ?", (int(entry_id),))
            return cur.rowcount > 0

    def count_pending(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(1) AS n FROM sync_queue").fetchone()
            return int(row["n"] if row else 0)

    @staticmethod
    def _entry(row) -> QueueEntry:
        try:
            payload = json.loads(row["payload_json"])
        except ValueError:
            # Kept as-is; the sync engine refuses it and stops at this entry.
            payload = {"_raw": row["payload_json"]}
        return QueueEntry(id=int(row["id"]), kind=row["kind"], payload=payload, created_at=int(row["created_at"]))

    # ---- cached settings ----

    def get_setting(self, key: str, default=None):
        with self._connect() as conn:
            row = conn.execute("SELECT value_json FROM local_settings WHERE key = ?", (key,)).fetchone()
        if not row:
            return default
        return json.loads(row["value_json"])

    def set_setting(self, key: str, value):
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO local_settings (key, value_json, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                  value_json=excluded.value_json,
                  updated_at=excluded.updated_at
                """,
                (key, json.dumps(value), _now_ms()),
            )
