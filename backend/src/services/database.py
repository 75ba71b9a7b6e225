"""SQLite database helpers for the chat, notes and tasks schema."""

from __future__ import annotations

from pathlib import Path
import sqlite3
from typing import Iterable

from .config import get_config

DDL_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS teams (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        owner_id TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS team_members (
        team_id TEXT NOT NULL REFERENCES teams(id) ON DELETE CASCADE,
        user_id TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'member',
        joined_at TEXT NOT NULL,
        PRIMARY KEY (team_id, user_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_team_members_user ON team_members(user_id)",
    """
    CREATE TABLE IF NOT EXISTS conversations (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        team_id TEXT REFERENCES teams(id) ON DELETE CASCADE,
        title TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_conversations_user ON conversations(user_id, updated_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_conversations_team ON conversations(team_id, updated_at DESC)",
    """
    CREATE TABLE IF NOT EXISTS messages (
        id TEXT PRIMARY KEY,
        conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
        parent_id TEXT REFERENCES messages(id) ON DELETE SET NULL,
        role TEXT NOT NULL CHECK (role IN ('user', 'assistant', 'system')),
        content TEXT NOT NULL DEFAULT '',
        message_type TEXT NOT NULL DEFAULT 'content'
            CHECK (message_type IN ('content', 'tool_call', 'tool_result')),
        metadata TEXT,
        "order" INTEGER NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    'CREATE UNIQUE INDEX IF NOT EXISTS idx_messages_order ON messages(conversation_id, "order")',
    """
    CREATE TABLE IF NOT EXISTS notes (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL DEFAULT 'Untitled',
        content TEXT NOT NULL DEFAULT '',
        searchable_content TEXT NOT NULL DEFAULT '',
        user_id TEXT NOT NULL,
        team_id TEXT REFERENCES teams(id) ON DELETE CASCADE,
        parent_id TEXT REFERENCES notes(id) ON DELETE CASCADE,
        "order" INTEGER NOT NULL DEFAULT 0,
        archived INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_notes_user ON notes(user_id, updated_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_notes_team ON notes(team_id, updated_at DESC)",
    """
    CREATE TABLE IF NOT EXISTS note_tags (
        note_id TEXT NOT NULL REFERENCES notes(id) ON DELETE CASCADE,
        tag TEXT NOT NULL,
        PRIMARY KEY (note_id, tag)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS task_stages (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        user_id TEXT NOT NULL,
        team_id TEXT REFERENCES teams(id) ON DELETE CASCADE,
        "order" INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tasks (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        notes TEXT,
        is_completed INTEGER NOT NULL DEFAULT 0,
        priority TEXT NOT NULL DEFAULT 'medium' CHECK (priority IN ('low', 'medium', 'high')),
        status_id TEXT REFERENCES task_stages(id) ON DELETE SET NULL,
        created_by_id TEXT NOT NULL,
        team_id TEXT REFERENCES teams(id) ON DELETE CASCADE,
        start_date TEXT,
        end_date TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_tasks_creator ON tasks(created_by_id, updated_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_team ON tasks(team_id, updated_at DESC)",
)


class DatabaseService:
    """Manage SQLite connections and schema initialization."""

    def __init__(self, db_path: str | Path | None = None):
        self.db_path = Path(db_path) if db_path else get_config().database_path

    def _ensure_directory(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def connect(self) -> sqlite3.Connection:
        """Return a sqlite3 connection with foreign keys enforced."""
        self._ensure_directory()
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def initialize(self, statements: Iterable[str] | None = None) -> Path:
        """Create all schema artifacts."""
        conn = self.connect()
        try:
            with conn:  # Transactional apply of DDL
                for statement in statements or DDL_STATEMENTS:
                    conn.execute(statement)
        finally:
            conn.close()
        return self.db_path


def init_database(db_path: str | Path | None = None) -> Path:
    """Convenience wrapper used at application startup."""
    return DatabaseService(db_path).initialize()


__all__ = ["DatabaseService", "init_database", "DDL_STATEMENTS"]
