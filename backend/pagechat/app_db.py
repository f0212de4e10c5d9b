from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .config import APP_DB_PATH
from .logging_utils import get_logger

log = get_logger(__name__)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _connect(db_path: Path = APP_DB_PATH) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn


def init_db(db_path: Path = APP_DB_PATH) -> None:
    conn = _connect(db_path)
    try:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS conversations (
              conversation_id TEXT PRIMARY KEY,
              title TEXT NOT NULL,
              created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS messages (
              message_id TEXT PRIMARY KEY,
              conversation_id TEXT NOT NULL,
              role TEXT NOT NULL CHECK(role IN ('system','user','assistant')),
              content TEXT NOT NULL,
              created_at TEXT NOT NULL,
              FOREIGN KEY(conversation_id) REFERENCES conversations(conversation_id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS settings (
              key TEXT PRIMARY KEY,
              value_json TEXT NOT NULL,
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_messages_conversation_created
              ON messages(conversation_id, created_at);
            """
        )
        conn.commit()
    finally:
        conn.close()


def _conversation_row(row: sqlite3.Row) -> dict[str, Any]:
    return {"id": row["conversation_id"], "title": row["title"], "created_at": row["created_at"]}


def _message_row(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "id": row["message_id"],
        "conversation_id": row["conversation_id"],
        "role": row["role"],
        "content": row["content"],
        "created_at": row["created_at"],
    }


def create_conversation(title: str, db_path: Path = APP_DB_PATH) -> dict[str, Any]:
    conversation_id = str(uuid.uuid4())
    created_at = _utc_now()

    conn = _connect(db_path)
    try:
        conn.execute(
            "INSERT INTO conversations(conversation_id, title, created_at) VALUES (?,?,?)",
            (conversation_id, title, created_at),
        )
        conn.commit()
    finally:
        conn.close()

    return {"id": conversation_id, "title": title, "created_at": created_at}


def get_conversation(conversation_id: str, db_path: Path = APP_DB_PATH) -> dict[str, Any] | None:
    conn = _connect(db_path)
    try:
        row = conn.execute(
            "SELECT conversation_id, title, created_at FROM conversations WHERE conversation_id = ?",
            (conversation_id,),
        ).fetchone()
    finally:
        conn.close()
    return _conversation_row(row) if row else None


def insert_message(conversation_id: str, role: str, content: str, db_path: Path = APP_DB_PATH) -> dict[str, Any]:
    message_id = str(uuid.uuid4())
    created_at = _utc_now()

    conn = _connect(db_path)
    try:
        conn.execute(
            "INSERT INTO messages(message_id, conversation_id, role, content, created_at) VALUES (?,?,?,?,?)",
            (message_id, conversation_id, role, content, created_at),
        )
        conn.commit()
    finally:
        conn.close()

    return {
        "id": message_id,
        "conversation_id": conversation_id,
        "role": role,
        "content": content,
        "created_at": created_at,
    }


def get_message(message_id: str, db_path: Path = APP_DB_PATH) -> dict[str, Any] | None:
    conn = _connect(db_path)
    try:
        row = conn.execute(
            """
            SELECT message_id, conversation_id, role, content, created_at
            FROM messages
            WHERE message_id = ?
            """,
            (message_id,),
        ).fetchone()
    finally:
        conn.close()
    return _message_row(row) if row else None


def list_recent_messages(conversation_id: str, limit: int = 10, db_path: Path = APP_DB_PATH) -> list[dict[str, Any]]:
    conn = _connect(db_path)
    try:
        # rowid breaks ties between messages stored within the same timestamp.
        rows = conn.execute(
            """
            SELECT message_id, conversation_id, role, content, created_at
            FROM messages
            WHERE conversation_id = ?
            ORDER BY created_at DESC, rowid DESC
            LIMIT ?
            """,
            (conversation_id, limit),
        ).fetchall()
    finally:
        conn.close()
    return [_message_row(r) for r in reversed(rows)]


def update_message_content(message_id: str, content: str, db_path: Path = APP_DB_PATH) -> bool:
    conn = _connect(db_path)
    try:
        cur = conn.execute("UPDATE messages SET content = ? WHERE message_id = ?", (content, message_id))
        conn.commit()
        return int(cur.rowcount or 0) > 0
    finally:
        conn.close()


def list_settings(db_path: Path = APP_DB_PATH) -> dict[str, Any]:
    conn = _connect(db_path)
    try:
        rows = conn.execute("SELECT key, value_json FROM settings ORDER BY key ASC").fetchall()
    finally:
        conn.close()
    out: dict[str, Any] = {}
    for r in rows:
        try:
            out[r["key"]] = json.loads(r["value_json"])
        except json.JSONDecodeError:
            log.warning("Ignoring undecodable setting %r", r["key"])
    return out


def set_settings(values: dict[str, Any], db_path: Path = APP_DB_PATH) -> None:
    now = _utc_now()
    rows = [(k, json.dumps(v, ensure_ascii=False), now, now) for k, v in values.items()]
    conn = _connect(db_path)
    try:
        conn.executemany(
            """
            INSERT INTO settings(key, value_json, created_at, updated_at)
            VALUES (?,?,?,?)
            ON CONFLICT(key) DO UPDATE SET value_json=excluded.value_json, updated_at=excluded.updated_at
            """,
            rows,
        )
        conn.commit()
    finally:
        conn.close()
