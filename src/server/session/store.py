from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional
from uuid import uuid4

from .models import MessageRecord, SessionRecord, SnapshotRecord

logger = logging.getLogger(__name__)


_SESSIONS_DDL = """
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    title TEXT,
    last_message_id TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    archived INTEGER NOT NULL DEFAULT 0
);
"""

_MESSAGES_DDL = """
CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    parent_message_id TEXT,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    model TEXT,
    tool_calls TEXT,
    seq INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    FOREIGN KEY(session_id) REFERENCES sessions(id) ON DELETE CASCADE
);
"""

_SNAPSHOTS_DDL = """
CREATE TABLE IF NOT EXISTS snapshots (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    message_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    FOREIGN KEY(session_id) REFERENCES sessions(id) ON DELETE CASCADE
);
"""

_CREATE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_sessions_updated ON sessions(updated_at DESC);",
    "CREATE INDEX IF NOT EXISTS idx_messages_session_seq ON messages(session_id, seq);",
]

_SESSION_COLUMNS = "id, title, last_message_id, created_at, updated_at, archived"
_MESSAGE_COLUMNS = "id, session_id, parent_message_id, role, content, model, tool_calls, seq, created_at"


def _ensure_pragmas(connection: sqlite3.Connection) -> None:
    connection.execute("PRAGMA foreign_keys = ON;")
    connection.execute("PRAGMA journal_mode = WAL;")


class SQLiteSessionStore:
    """SQLite-backed repository for chat sessions, their message trees and snapshots."""

    def __init__(self, db_path: str) -> None:
        path = Path(db_path)
        if not path.is_absolute():
            path = Path.cwd() / path
        if path.suffix != ".db":
            path = path.with_suffix(".db")
        self._db_path = str(path)
        self._write_lock = asyncio.Lock()

    @property
    def db_path(self) -> str:
        return self._db_path

    async def init(self) -> None:
        """Initialise database schema."""
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        def _init() -> None:
            with sqlite3.connect(self._db_path) as connection:
                _ensure_pragmas(connection)
                connection.execute(_SESSIONS_DDL)
                connection.execute(_MESSAGES_DDL)
                connection.execute(_SNAPSHOTS_DDL)
                for statement in _CREATE_INDEXES:
                    connection.execute(statement)
                connection.commit()

        await asyncio.to_thread(_init)
        logger.info("Session database initialised at %s", self._db_path)

    async def close(self) -> None:  # pragma: no cover - compatibility placeholder
        return None

    async def create_session(self, *, title: Optional[str] = None) -> SessionRecord:
        session_id = uuid4().hex
        now = _utc_now_str()

        async with self._write_lock:
            await asyncio.to_thread(
                self._execute,
                "INSERT INTO sessions (id, title, last_message_id, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                (session_id, title, None, now, now),
            )

        return SessionRecord(
            id=session_id,
            title=title,
            last_message_id=None,
            created_at=_parse_ts(now),
            updated_at=_parse_ts(now),
            archived=False,
        )

    async def list_sessions(self, *, include_archived: bool = False) -> list[SessionRecord]:
        condition = "" if include_archived else "WHERE archived = 0"
        query = f"SELECT {_SESSION_COLUMNS} FROM sessions {condition} ORDER BY updated_at DESC"
        rows = await asyncio.to_thread(self._fetchall, query)
        return [self._row_to_session(row) for row in rows]

    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE id = ?",
            (session_id,),
        )
        return self._row_to_session(row) if row else None

    async def get_messages(self, session_id: str) -> list[MessageRecord]:
        """Return every message of the session in insertion (chronological) order."""
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE session_id = ? ORDER BY seq ASC",
            (session_id,),
        )
        return [self._row_to_message(row) for row in rows]

    async def get_message(self, session_id: str, message_id: str) -> Optional[MessageRecord]:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE session_id = ? AND id = ?",
            (session_id, message_id),
        )
        return self._row_to_message(row) if row else None

    async def append_message(
        self,
        *,
        session_id: str,
        role: str,
        content: str,
        parent_message_id: Optional[str] = None,
        model: Optional[str] = None,
        tool_calls: Optional[Iterable[dict]] = None,
        message_id: Optional[str] = None,
    ) -> MessageRecord:
        """Insert a message and make it the session's last active message."""
        message_id = message_id or uuid4().hex
        now = _utc_now_str()
        tool_calls_json = json.dumps(list(tool_calls)) if tool_calls else None

        async with self._write_lock:
            def _insert() -> int:
                with sqlite3.connect(self._db_path) as connection:
                    connection.row_factory = sqlite3.Row
                    _ensure_pragmas(connection)

                    cursor = connection.execute(
                        "SELECT COALESCE(MAX(seq), 0) AS max_seq FROM messages WHERE session_id = ?",
                        (session_id,),
                    )
                    row = cursor.fetchone()
                    next_seq = int(row["max_seq"] or 0) + 1

                    connection.execute(
                        f"INSERT INTO messages ({_MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                        (
                            message_id,
                            session_id,
                            parent_message_id,
                            role,
                            content,
                            model,
                            tool_calls_json,
                            next_seq,
                            now,
                        ),
                    )
                    connection.execute(
                        "UPDATE sessions SET updated_at = ?, last_message_id = ? WHERE id = ?",
                        (now, message_id, session_id),
                    )
                    connection.commit()
                    return next_seq

            seq = await asyncio.to_thread(_insert)

        return MessageRecord(
            id=message_id,
            session_id=session_id,
            parent_message_id=parent_message_id,
            role=role,
            content=content,
            model=model,
            tool_calls=json.loads(tool_calls_json) if tool_calls_json else None,
            seq=seq,
            created_at=_parse_ts(now),
        )

    async def set_last_message(self, session_id: str, message_id: Optional[str]) -> None:
        async with self._write_lock:
            await asyncio.to_thread(
                self._execute,
                "UPDATE sessions SET last_message_id = ? WHERE id = ?",
                (message_id, session_id),
            )

    async def update_session_title(self, session_id: str, title: str) -> None:
        now = _utc_now_str()
        async with self._write_lock:
            await asyncio.to_thread(
                self._execute,
                "UPDATE sessions SET title = ?, updated_at = ? WHERE id = ?",
                (title, now, session_id),
            )

    async def rename_session(self, session_id: str, title: str) -> SessionRecord:
        await self.update_session_title(session_id, title)
        session = await self.get_session(session_id)
        if session is None:
            raise ValueError(f"Session {session_id} not found after rename")
        return session

    async def archive_session(self, session_id: str) -> None:
        async with self._write_lock:
            await asyncio.to_thread(
                self._execute,
                "UPDATE sessions SET archived = 1 WHERE id = ?",
                (session_id,),
            )

    async def unarchive_session(self, session_id: str) -> None:
        async with self._write_lock:
            await asyncio.to_thread(
                self._execute,
                "UPDATE sessions SET archived = 0 WHERE id = ?",
                (session_id,),
            )

    async def delete_session(self, session_id: str) -> None:
        async with self._write_lock:
            await asyncio.to_thread(
                self._execute,
                "DELETE FROM sessions WHERE id = ?",
                (session_id,),
            )

    async def session_has_title(self, session_id: str) -> bool:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT title FROM sessions WHERE id = ?",
            (session_id,),
        )
        return bool(row and row["title"])

    async def get_first_user_message(self, session_id: str) -> Optional[MessageRecord]:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE session_id = ? AND role = 'user' "
            "ORDER BY seq ASC LIMIT 1",
            (session_id,),
        )
        return self._row_to_message(row) if row else None

    async def create_snapshot(self, session_id: str, message_id: str) -> SnapshotRecord:
        """Pin the branch ending at ``message_id`` so it can be shared."""
        if await self.get_message(session_id, message_id) is None:
            raise ValueError(f"Message {message_id} does not belong to session {session_id}")

        snapshot_id = uuid4().hex
        now = _utc_now_str()
        async with self._write_lock:
            await asyncio.to_thread(
                self._execute,
                "INSERT INTO snapshots (id, session_id, message_id, created_at) VALUES (?, ?, ?, ?)",
                (snapshot_id, session_id, message_id, now),
            )
        return SnapshotRecord(
            id=snapshot_id,
            session_id=session_id,
            message_id=message_id,
            created_at=_parse_ts(now),
        )

    async def get_snapshot(self, snapshot_id: str) -> Optional[SnapshotRecord]:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT s.id, s.session_id, s.message_id, s.created_at FROM snapshots s "
            "INNER JOIN sessions c ON s.session_id = c.id WHERE s.id = ?",
            (snapshot_id,),
        )
        if row is None:
            return None
        return SnapshotRecord(
            id=row["id"],
            session_id=row["session_id"],
            message_id=row["message_id"],
            created_at=_parse_ts(row["created_at"]),
        )

    def _execute(self, query: str, params: tuple = ()) -> None:
        with sqlite3.connect(self._db_path) as connection:
            _ensure_pragmas(connection)
            connection.execute(query, params)
            connection.commit()

    def _fetchall(self, query: str, params: tuple = ()) -> list[sqlite3.Row]:
        with sqlite3.connect(self._db_path) as connection:
            connection.row_factory = sqlite3.Row
            _ensure_pragmas(connection)
            cursor = connection.execute(query, params)
            return cursor.fetchall()

    def _fetchone(self, query: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        with sqlite3.connect(self._db_path) as connection:
            connection.row_factory = sqlite3.Row
            _ensure_pragmas(connection)
            cursor = connection.execute(query, params)
            return cursor.fetchone()

    @staticmethod
    def _row_to_session(row: sqlite3.Row | None) -> Optional[SessionRecord]:
        if row is None:
            return None
        return SessionRecord(
            id=row["id"],
            title=row["title"],
            last_message_id=row["last_message_id"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
            archived=bool(row["archived"]),
        )

    @staticmethod
    def _row_to_message(row: sqlite3.Row) -> MessageRecord:
        return MessageRecord(
            id=row["id"],
            session_id=row["session_id"],
            parent_message_id=row["parent_message_id"],
            role=row["role"],
            content=row["content"],
            model=row["model"],
            tool_calls=json.loads(row["tool_calls"]) if row["tool_calls"] else None,
            seq=row["seq"],
            created_at=_parse_ts(row["created_at"]),
        )


def _utc_now_str() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0, tzinfo=None).isoformat() + "Z"


def _parse_ts(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1]
    return datetime.fromisoformat(value)
