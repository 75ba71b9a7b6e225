"""Note Service - read access to personal and team notes.

Notes are scoped the same way conversations are: without a team id only the
caller's personal notes are visible, with a team id the team's shared notes.
Callers are expected to have verified team membership beforehand.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .database import DatabaseService

logger = logging.getLogger(__name__)

EXCERPT_CHARS = 300


def _scope(user_id: str, team_id: Optional[str]) -> Tuple[str, Tuple[Any, ...]]:
    if team_id:
        return "n.team_id = ?", (team_id,)
    return "n.user_id = ? AND n.team_id IS NULL", (user_id,)


def _excerpt(text: str, query: Optional[str] = None) -> str:
    """Return up to EXCERPT_CHARS of text, centred on the first query hit."""
    if len(text) <= EXCERPT_CHARS:
        return text
    start = 0
    if query:
        hit = text.lower().find(query.lower())
        if hit > EXCERPT_CHARS // 2:
            start = hit - EXCERPT_CHARS // 2
    snippet = text[start : start + EXCERPT_CHARS]
    prefix = "..." if start > 0 else ""
    suffix = "..." if start + EXCERPT_CHARS < len(text) else ""
    return f"{prefix}{snippet}{suffix}"


class NoteService:
    """Query notes for chat tools and context hints."""

    def __init__(self, db_service: DatabaseService | None = None):
        self._db = db_service or DatabaseService()

    def create_note(
        self,
        user_id: str,
        title: str,
        content: str = "",
        team_id: Optional[str] = None,
        parent_id: Optional[str] = None,
        tags: Sequence[str] = (),
        order: int = 0,
    ) -> Dict[str, Any]:
        """Insert a note (used by seeding and tests)."""
        note_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc).isoformat()
        conn = self._db.connect()
        try:
            conn.execute(
                """
                INSERT INTO notes (id, title, content, searchable_content, user_id, team_id,
                                   parent_id, "order", created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (note_id, title, content, content, user_id, team_id, parent_id, order, now, now),
            )
            for tag in tags:
                conn.execute(
                    "INSERT OR IGNORE INTO note_tags (note_id, tag) VALUES (?, ?)",
                    (note_id, tag.strip().lower()),
                )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        return self.get_note(user_id, note_id, team_id=team_id) or {}

    def get_note(
        self, user_id: str, note_id: str, team_id: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """Fetch a single note with its tags, or None when not visible."""
        clause, params = _scope(user_id, team_id)
        conn = self._db.connect()
        try:
            row = conn.execute(
                f"""
                SELECT n.id, n.title, n.content, n.parent_id, n.created_at, n.updated_at
                FROM notes n
                WHERE n.id = ? AND n.archived = 0 AND {clause}
                """,
                (note_id, *params),
            ).fetchone()
            if row is None:
                return None
            tags = [
                r["tag"]
                for r in conn.execute(
                    "SELECT tag FROM note_tags WHERE note_id = ? ORDER BY tag", (note_id,)
                ).fetchall()
            ]
        finally:
            conn.close()
        note = dict(row)
        note["tags"] = tags
        return note

    def get_notes_by_ids(
        self, user_id: str, note_ids: Sequence[str], team_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Fetch visible notes in the order requested; unknown ids are skipped."""
        notes = []
        for note_id in note_ids:
            note = self.get_note(user_id, note_id, team_id=team_id)
            if note is not None:
                notes.append(note)
        return notes

    def search_notes(
        self,
        user_id: str,
        query: str,
        limit: int = 10,
        team_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Case-insensitive substring search over titles and content."""
        clause, params = _scope(user_id, team_id)
        pattern = f"%{query.strip()}%"
        conn = self._db.connect()
        try:
            rows = conn.execute(
                f"""
                SELECT n.id, n.title, n.searchable_content, n.updated_at,
                    CASE WHEN n.title LIKE ? THEN 1 ELSE 0 END AS title_hit
                FROM notes n
                WHERE n.archived = 0 AND {clause}
                    AND (n.title LIKE ? OR n.searchable_content LIKE ?)
                ORDER BY title_hit DESC, n.updated_at DESC
                LIMIT ?
                """,
                (pattern, *params, pattern, pattern, limit),
            ).fetchall()
        finally:
            conn.close()

        logger.debug(f"Note search '{query}' matched {len(rows)} note(s) for user {user_id}")
        return [
            {
                "id": row["id"],
                "title": row["title"],
                "excerpt": _excerpt(row["searchable_content"], query),
                "updated_at": row["updated_at"],
            }
            for row in rows
        ]

    def list_notes(
        self,
        user_id: str,
        parent_id: Optional[str] = None,
        limit: int = 50,
        team_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """List note metadata, optionally restricted to children of one note."""
        clause, params = _scope(user_id, team_id)
        sql = f"SELECT n.id, n.title, n.parent_id, n.updated_at FROM notes n WHERE n.archived = 0 AND {clause}"
        args: List[Any] = list(params)
        if parent_id:
            sql += " AND n.parent_id = ?"
            args.append(parent_id)
        sql += ' ORDER BY n."order" ASC, n.updated_at DESC LIMIT ?'
        args.append(limit)

        conn = self._db.connect()
        try:
            rows = conn.execute(sql, args).fetchall()
        finally:
            conn.close()
        return [dict(row) for row in rows]

    def get_recent_notes(
        self, user_id: str, limit: int = 10, team_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Most recently updated notes with a short excerpt each."""
        clause, params = _scope(user_id, team_id)
        conn = self._db.connect()
        try:
            rows = conn.execute(
                f"""
                SELECT n.id, n.title, n.searchable_content, n.updated_at
                FROM notes n
                WHERE n.archived = 0 AND {clause}
                ORDER BY n.updated_at DESC
                LIMIT ?
                """,
                (*params, min(limit, 50)),
            ).fetchall()
        finally:
            conn.close()
        return [
            {
                "id": row["id"],
                "title": row["title"],
                "excerpt": _excerpt(row["searchable_content"]),
                "updated_at": row["updated_at"],
            }
            for row in rows
        ]

    def get_note_hierarchy(
        self, user_id: str, note_id: str, team_id: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Return a note with its parent and its children.

        The parent is None for a root note (or one whose parent is not
        visible). Archived children are left out and the rest follow their
        sibling order. Returns None when the note itself is not visible.
        """
        clause, params = _scope(user_id, team_id)
        conn = self._db.connect()
        try:
            note = conn.execute(
                f"""
                SELECT n.id, n.title, n.parent_id, n.updated_at
                FROM notes n
                WHERE n.id = ? AND n.archived = 0 AND {clause}
                """,
                (note_id, *params),
            ).fetchone()
            if note is None:
                return None
            parent = None
            if note["parent_id"]:
                parent = conn.execute(
                    f"""
                    SELECT n.id, n.title
                    FROM notes n
                    WHERE n.id = ? AND n.archived = 0 AND {clause}
                    """,
                    (note["parent_id"], *params),
                ).fetchone()
            children = conn.execute(
                f"""
                SELECT n.id, n.title, n."order", n.updated_at
                FROM notes n
                WHERE n.parent_id = ? AND n.archived = 0 AND {clause}
                ORDER BY n."order" ASC, n.title ASC
                """,
                (note_id, *params),
            ).fetchall()
        finally:
            conn.close()

        return {
            "note": {"id": note["id"], "title": note["title"], "updated_at": note["updated_at"]},
            "parent": dict(parent) if parent is not None else None,
            "children": [dict(row) for row in children],
        }

    def get_notes_by_tag(
        self, user_id: str, tag: str, team_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        clause, params = _scope(user_id, team_id)
        conn = self._db.connect()
        try:
            rows = conn.execute(
                f"""
                SELECT n.id, n.title, n.searchable_content, n.updated_at
                FROM notes n JOIN note_tags t ON t.note_id = n.id
                WHERE t.tag = ? AND n.archived = 0 AND {clause}
                ORDER BY n.updated_at DESC
                """,
                (tag.strip().lower(), *params),
            ).fetchall()
        finally:
            conn.close()
        return [
            {
                "id": row["id"],
                "title": row["title"],
                "excerpt": _excerpt(row["searchable_content"]),
                "updated_at": row["updated_at"],
            }
            for row in rows
        ]


_note_service: Optional[NoteService] = None


def get_note_service() -> NoteService:
    """Get or create the note service singleton."""
    global _note_service
    if _note_service is None:
        _note_service = NoteService()
    return _note_service


__all__ = ["NoteService", "get_note_service", "EXCERPT_CHARS"]
