"""SQLite transcript store for relaybot.

Two tables:
    conversations — user/assistant messages per chat
    executions    — one row per queued request outcome
"""

from __future__ import annotations

import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from loguru import logger

EXECUTION_STATUSES = ("success", "error", "timeout", "cancelled")


class MemoryStore:
    """SQLite transcript — conversation log + execution history."""

    def __init__(self, db_path: str = "data/relaybot.db"):
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        logger.info(f"MemoryStore initialized: {db_path}")

    @contextmanager
    def _get_conn(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        try:
            yield conn
        finally:
            conn.close()

    def _init_db(self):
        with self._get_conn() as conn:
            conn.executescript(_SCHEMA)
            conn.commit()

    # ════════════════════════════════════════════════════════════
    # CONVERSATIONS
    # ════════════════════════════════════════════════════════════

    def add_message(
        self,
        channel: str,
        chat_id: str,
        role: str,
        content: str,
        timestamp: float | None = None,
    ) -> int:
        if role not in ("user", "assistant"):
            raise ValueError(f"Unknown role: {role}")
        with self._get_conn() as conn:
            cursor = conn.execute(
                """INSERT INTO conversations (role, content, channel, chat_id, timestamp)
                   VALUES (?, ?, ?, ?, ?)""",
                (role, content, channel, chat_id, timestamp or time.time()),
            )
            conn.commit()
            return cursor.lastrowid or 0

    def get_recent_messages(self, chat_id: str, limit: int = 20) -> list[dict[str, Any]]:
        """Last ``limit`` messages of a chat, oldest first."""
        with self._get_conn() as conn:
            rows = conn.execute(
                """SELECT role, content, channel, chat_id, timestamp
                   FROM conversations WHERE chat_id = ?
                   ORDER BY timestamp DESC, id DESC LIMIT ?""",
                (chat_id, limit),
            ).fetchall()
            return [dict(r) for r in reversed(rows)]

    # ════════════════════════════════════════════════════════════
    # EXECUTIONS
    # ════════════════════════════════════════════════════════════

    def log_execution(
        self,
        prompt: str,
        output: str,
        status: str,
        channel: str,
        chat_id: str,
        duration_ms: int = 0,
    ) -> int:
        if status not in EXECUTION_STATUSES:
            raise ValueError(f"Unknown execution status: {status}")
        with self._get_conn() as conn:
            cursor = conn.execute(
                """INSERT INTO executions
                   (prompt, output, status, channel, chat_id, timestamp, duration_ms)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (prompt, output, status, channel, chat_id, time.time(), duration_ms),
            )
            conn.commit()
            return cursor.lastrowid or 0

    def get_recent_executions(self, limit: int = 10) -> list[dict[str, Any]]:
        with self._get_conn() as conn:
            rows = conn.execute(
                """SELECT prompt, output, status, channel, chat_id, timestamp, duration_ms
                   FROM executions ORDER BY timestamp DESC, id DESC LIMIT ?""",
                (limit,),
            ).fetchall()
            return [dict(r) for r in rows]

    def prune(self, retention_days: int) -> int:
        """Delete rows older than ``retention_days``. Returns rows removed."""
        cutoff = time.time() - retention_days * 86400
        with self._get_conn() as conn:
            removed = conn.execute(
                "DELETE FROM conversations WHERE timestamp < ?", (cutoff,)
            ).rowcount
            removed += conn.execute(
                "DELETE FROM executions WHERE timestamp < ?", (cutoff,)
            ).rowcount
            conn.commit()
        if removed:
            logger.info(f"Pruned {removed} transcript rows older than {retention_days} days")
        return removed


_SCHEMA = """
CREATE TABLE IF NOT EXISTS conversations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    role TEXT NOT NULL CHECK(role IN ('user', 'assistant')),
    content TEXT NOT NULL,
    channel TEXT NOT NULL,
    chat_id TEXT NOT NULL,
    timestamp REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_conv_chat_ts ON conversations(chat_id, timestamp);

CREATE TABLE IF NOT EXISTS executions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    prompt TEXT NOT NULL,
    output TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL CHECK(status IN ('success', 'error', 'timeout', 'cancelled')),
    channel TEXT NOT NULL,
    chat_id TEXT NOT NULL,
    timestamp REAL NOT NULL,
    duration_ms INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_exec_ts ON executions(timestamp);
"""
