from __future__ import annotations

import sqlite3


def upgrade(conn: sqlite3.Connection) -> None:
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS reply_tasks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            type TEXT NOT NULL,
            conversation_id TEXT NOT NULL,
            parent_event_id TEXT NOT NULL,
            content TEXT NOT NULL,
            created_at_utc TEXT NOT NULL
        )
        """
    )
    # One reply per conversation; a second insert is the duplicate signal.
    cur.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS ux_reply_tasks_conversation
        ON reply_tasks(conversation_id)
        """
    )
    conn.commit()
