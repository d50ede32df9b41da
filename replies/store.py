from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import Any

from admission.models import ReplyTask


class DuplicateReplyTask(Exception):
    """A reply task already exists for this conversation."""

    def __init__(self, conversation_id: str):
        super().__init__(f"reply task already queued for conversation {conversation_id}")
        self.conversation_id = conversation_id


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _is_conversation_conflict(exc: sqlite3.IntegrityError) -> bool:
    text = str(exc).lower()
    return "unique" in text and "conversation_id" in text


def insert_reply_task_sync(conn: sqlite3.Connection, task: ReplyTask) -> int:
    cur = conn.cursor()
    try:
        cur.execute(
            """
            INSERT INTO reply_tasks (type, conversation_id, parent_event_id, content, created_at_utc)
            VALUES (?, ?, ?, ?, ?)
            """,
            (task.type, task.conversation_id, task.parent_event_id, task.content, _utc_now_iso()),
        )
    except sqlite3.IntegrityError as exc:
        conn.rollback()
        if _is_conversation_conflict(exc):
            raise DuplicateReplyTask(task.conversation_id) from exc
        raise
    conn.commit()
    return int(cur.lastrowid)


def fetch_reply_task_sync(conn: sqlite3.Connection, conversation_id: str) -> dict[str, Any] | None:
    cur = conn.cursor()
    cur.execute(
        """
        SELECT id, type, conversation_id, parent_event_id, content, created_at_utc
        FROM reply_tasks
        WHERE conversation_id = ?
        LIMIT 1
        """,
        (str(conversation_id),),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return {
        "id": int(row[0]),
        "type": row[1],
        "conversation_id": row[2],
        "parent_event_id": row[3],
        "content": row[4],
        "created_at_utc": row[5],
    }


def count_reply_tasks_sync(conn: sqlite3.Connection) -> int:
    cur = conn.cursor()
    cur.execute("SELECT COUNT(*) FROM reply_tasks")
    return int(cur.fetchone()[0])


def read_cursor_sync(conn: sqlite3.Connection, name: str) -> str | None:
    cur = conn.cursor()
    cur.execute("SELECT value FROM poll_cursors WHERE name = ? LIMIT 1", (str(name),))
    row = cur.fetchone()
    return str(row[0]) if row else None


def write_cursor_sync(conn: sqlite3.Connection, name: str, value: str) -> None:
    cur = conn.cursor()
    cur.execute(
        """
        INSERT INTO poll_cursors (name, value, updated_at_utc)
        VALUES (?, ?, ?)
        ON CONFLICT(name) DO UPDATE SET
            value=excluded.value,
            updated_at_utc=excluded.updated_at_utc
        """,
        (str(name), str(value), _utc_now_iso()),
    )
    conn.commit()
