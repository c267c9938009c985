from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Any

from .models import ViewStateEntry, utc_now_iso
from .utils import ensure_dir


class ViewStateStore:
    """Host-owned key/value view state (camera, panel layout and the like).

    The simulation never reads this; hosts load and save it explicitly.
    """

    def __init__(self, db_path: Path):
        ensure_dir(db_path.parent)
        self._db_path = db_path
        self._lock = threading.Lock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS view_state (
                    key TEXT PRIMARY KEY,
                    value_json TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                """
            )

    def save(self, key: str, value: dict[str, Any]) -> ViewStateEntry:
        if not key:
            raise ValueError("view state key must not be empty")
        updated_at = utc_now_iso()
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO view_state(key, value_json, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value_json = excluded.value_json, updated_at = excluded.updated_at
                """,
                (key, json.dumps(value), updated_at),
            )
        return ViewStateEntry(key=key, value=value, updatedAt=updated_at)

    def load(self, key: str) -> ViewStateEntry | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM view_state WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        return ViewStateEntry(key=row["key"], value=json.loads(row["value_json"]), updatedAt=row["updated_at"])

    def delete(self, key: str) -> bool:
        with self._lock, self._connect() as conn:
            cursor = conn.execute("DELETE FROM view_state WHERE key = ?", (key,))
        return cursor.rowcount > 0

    def keys(self) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute("SELECT key FROM view_state ORDER BY key ASC").fetchall()
        return [row["key"] for row in rows]
