"""SQLite audit trail for approval lifecycle events."""

from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Any

from mailgate.approval.queue import PendingApproval


class EventStore:
    """Owns the SQLite connection and table lifecycle."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None

    @property
    def db_path(self) -> Path:
        return self._db_path

    def connect(self) -> sqlite3.Connection:
        if self._conn is None:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def initialize(self) -> None:
        conn = self.connect()
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS approval_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                event_type TEXT NOT NULL,
                approval_id TEXT,
                payload TEXT NOT NULL,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_approval_events_approval_id
            ON approval_events(approval_id);
            """
        )
        conn.commit()

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None


class ApprovalEventLog:
    """Append-only record of what happened to each approval request.

    Written from the IPC, poll and dashboard threads, so writes are serialized
    on a lock around the shared connection.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._lock = threading.Lock()

    def record(
        self,
        event_type: str,
        payload: dict[str, Any],
        *,
        approval_id: str | None = None,
    ) -> int:
        with self._lock:
            cursor = self._conn.execute(
                """
                INSERT INTO approval_events (event_type, approval_id, payload)
                VALUES (?, ?, ?)
                """,
                (event_type, approval_id, json.dumps(payload, ensure_ascii=True)),
            )
            self._conn.commit()
            return int(cursor.lastrowid)

    def latest(self, limit: int = 50) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT id, event_type, approval_id, payload, created_at
                FROM approval_events
                ORDER BY id DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()

        events: list[dict[str, Any]] = []
        for row in rows:
            event = dict(row)
            event["payload"] = json.loads(event["payload"])
            events.append(event)
        return events

    def on_transition(self, transition: str, pending: PendingApproval) -> None:
        """Queue listener: one audit row per state transition."""
        summary = pending.summary()
        summary.pop("id", None)
        self.record(f"approval_{transition}", summary, approval_id=pending.id)
