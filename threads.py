"""Thread store: conversation thread ids and history per owner.

One thread per owner key (assistant + room topic or contact name).
SQLite, WAL mode, single connection for the daemon's lifetime.
"""

from __future__ import annotations

import logging
import sqlite3
import time
import uuid
from pathlib import Path

log = logging.getLogger(__name__)


def ensure_schema(conn: sqlite3.Connection) -> None:
    """Create thread tables if they don't exist. Safe to call on every startup."""
    conn.execute("PRAGMA journal_mode=WAL")
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS thread (
            owner       TEXT PRIMARY KEY,
            thread_id   TEXT NOT NULL,
            created_at  INTEGER NOT NULL
        );

        CREATE TABLE IF NOT EXISTS messages (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            thread_id   TEXT NOT NULL,
            role        TEXT NOT NULL,
            content     TEXT NOT NULL,
            created_at  INTEGER NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_messages_thread ON messages(thread_id);
    """)
    conn.commit()


class ThreadStore:
    def __init__(self, db_path: str | Path = ":memory:"):
        if str(db_path) != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        ensure_schema(self.conn)

    def get_thread(self, owner: str) -> str | None:
        row = self.conn.execute(
            "SELECT thread_id FROM thread WHERE owner = ?", (owner,),
        ).fetchone()
        return row["thread_id"] if row else None

    def upsert_thread(self, owner: str, thread_id: str) -> None:
        self.conn.execute(
            "INSERT INTO thread (owner, thread_id, created_at) VALUES (?, ?, ?) "
            "ON CONFLICT(owner) DO UPDATE SET thread_id = excluded.thread_id",
            (owner, thread_id, int(time.time())),
        )
        self.conn.commit()

    def get_or_create_thread(self, owner: str) -> str:
        thread_id = self.get_thread(owner)
        if thread_id is None:
            thread_id = uuid.uuid4().hex
            self.upsert_thread(owner, thread_id)
            log.debug("Thread created for %s: %s", owner, thread_id)
        return thread_id

    def append(self, thread_id: str, role: str, content: str) -> None:
        self.conn.execute(
            "INSERT INTO messages (thread_id, role, content, created_at) VALUES (?, ?, ?, ?)",
            (thread_id, role, content, int(time.time())),
        )
        self.conn.commit()

    def history(self, thread_id: str, limit: int = 40) -> list[dict]:
        """Last ``limit`` messages of a thread, oldest first."""
        rows = self.conn.execute(
            "SELECT role, content FROM messages WHERE thread_id = ? "
            "ORDER BY id DESC LIMIT ?",
            (thread_id, limit),
        ).fetchall()
        return [{"role": r["role"], "content": r["content"]} for r in reversed(rows)]

    def close(self) -> None:
        self.conn.close()
