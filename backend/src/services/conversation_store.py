"""Conversation Store - persistence for conversations and their ordered messages."""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import TypeAdapter, ValidationError

from ..models.chat import (
    Conversation,
    ConversationDetail,
    ConversationListResponse,
    ConversationSummary,
    Message,
    MessageMetadata,
    MessagePage,
    MessageRole,
    MessageType,
)
from .database import DatabaseService

logger = logging.getLogger(__name__)

TITLE_MAX_CHARS = 50
PREVIEW_MAX_CHARS = 100

_metadata_adapter: TypeAdapter = TypeAdapter(MessageMetadata)


class ConversationNotFoundError(Exception):
    """Raised when a conversation is absent or outside the caller's scope."""

    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id


class StoreError(Exception):
    """Raised when the underlying database cannot complete an operation."""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def auto_title(first_message: str) -> str:
    """Derive a conversation title from the first user message."""
    text = " ".join(first_message.split())
    if len(text) > TITLE_MAX_CHARS:
        return text[:TITLE_MAX_CHARS] + "..."
    return text


def _preview(content: Optional[str]) -> Optional[str]:
    if content is None:
        return None
    if len(content) > PREVIEW_MAX_CHARS:
        return content[:PREVIEW_MAX_CHARS] + "..."
    return content


def _conversation_from_row(row: sqlite3.Row) -> Conversation:
    return Conversation(
        id=row["id"],
        user_id=row["user_id"],
        team_id=row["team_id"],
        title=row["title"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _message_from_row(row: sqlite3.Row) -> Message:
    raw: Dict[str, Any] = json.loads(row["metadata"]) if row["metadata"] else {}
    raw["message_type"] = row["message_type"]
    return Message(
        id=row["id"],
        conversation_id=row["conversation_id"],
        parent_id=row["parent_id"],
        role=row["role"],
        content=row["content"],
        message_type=row["message_type"],
        metadata=_metadata_adapter.validate_python(raw),
        order=row["order"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


_MESSAGE_COLUMNS = (
    'id, conversation_id, parent_id, role, content, message_type, metadata, "order", created_at'
)

# Owner, or member of the conversation's team.
_ACCESS_CLAUSE = """
    (c.user_id = :user_id OR (c.team_id IS NOT NULL AND EXISTS (
        SELECT 1 FROM team_members tm WHERE tm.team_id = c.team_id AND tm.user_id = :user_id
    )))
"""


class ConversationStore:
    """CRUD operations for conversations and messages."""

    def __init__(self, db_service: DatabaseService | None = None):
        self._db = db_service or DatabaseService()

    def create_conversation(
        self,
        user_id: str,
        team_id: Optional[str] = None,
        title: Optional[str] = None,
    ) -> Conversation:
        """Create an empty conversation."""
        conversation_id = str(uuid.uuid4())
        now = _now()
        conn = self._db.connect()
        try:
            conn.execute(
                """
                INSERT INTO conversations (id, user_id, team_id, title, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (conversation_id, user_id, team_id, title, now, now),
            )
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Failed to create conversation for user {user_id}: {e}")
            raise StoreError(f"Failed to create conversation: {e}") from e
        finally:
            conn.close()

        logger.info(
            f"Created conversation {conversation_id} for user {user_id}",
            extra={"team_id": team_id},
        )
        return Conversation(
            id=conversation_id,
            user_id=user_id,
            team_id=team_id,
            title=title,
            created_at=datetime.fromisoformat(now),
            updated_at=datetime.fromisoformat(now),
        )

    def _fetch_accessible(
        self, conn: sqlite3.Connection, conversation_id: str, user_id: str
    ) -> Conversation:
        row = conn.execute(
            f"""
            SELECT c.id, c.user_id, c.team_id, c.title, c.created_at, c.updated_at
            FROM conversations c
            WHERE c.id = :conversation_id AND {_ACCESS_CLAUSE}
            """,
            {"conversation_id": conversation_id, "user_id": user_id},
        ).fetchone()
        if row is None:
            raise ConversationNotFoundError(conversation_id)
        return _conversation_from_row(row)

    def get_header(self, conversation_id: str, user_id: str) -> Conversation:
        """Return the conversation header if the user can access it."""
        conn = self._db.connect()
        try:
            return self._fetch_accessible(conn, conversation_id, user_id)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to load conversation: {e}") from e
        finally:
            conn.close()

    def get_conversation(self, conversation_id: str, user_id: str) -> ConversationDetail:
        """Return a conversation with all messages sorted by order."""
        conn = self._db.connect()
        try:
            conversation = self._fetch_accessible(conn, conversation_id, user_id)
            rows = conn.execute(
                f'SELECT {_MESSAGE_COLUMNS} FROM messages WHERE conversation_id = ? ORDER BY "order" ASC',
                (conversation_id,),
            ).fetchall()
            return ConversationDetail(
                conversation=conversation,
                messages=[_message_from_row(row) for row in rows],
            )
        except sqlite3.Error as e:
            raise StoreError(f"Failed to load conversation: {e}") from e
        finally:
            conn.close()

    def list_conversations(
        self,
        user_id: str,
        team_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> ConversationListResponse:
        """
        List conversations in one scope, most recently updated first.

        Personal scope (no team_id) returns the user's conversations without a
        team. Team scope returns every conversation of that team the user can see.
        """
        if team_id:
            scope_sql = f"c.team_id = :team_id AND {_ACCESS_CLAUSE}"
        else:
            scope_sql = "c.user_id = :user_id AND c.team_id IS NULL"
        params = {"user_id": user_id, "team_id": team_id, "limit": limit, "offset": offset}

        conn = self._db.connect()
        try:
            total = conn.execute(
                f"SELECT COUNT(*) FROM conversations c WHERE {scope_sql}", params
            ).fetchone()[0]
            rows = conn.execute(
                f"""
                SELECT c.id, c.user_id, c.team_id, c.title, c.created_at, c.updated_at,
                    (SELECT COUNT(*) FROM messages m WHERE m.conversation_id = c.id) AS message_count,
                    (SELECT m.content FROM messages m
                        WHERE m.conversation_id = c.id AND m.message_type = 'content'
                        ORDER BY m."order" DESC LIMIT 1) AS last_content
                FROM conversations c
                WHERE {scope_sql}
                ORDER BY c.updated_at DESC
                LIMIT :limit OFFSET :offset
                """,
                params,
            ).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to list conversations: {e}") from e
        finally:
            conn.close()

        conversations = [
            ConversationSummary(
                **_conversation_from_row(row).model_dump(),
                message_count=row["message_count"],
                last_message_preview=_preview(row["last_content"]),
            )
            for row in rows
        ]
        return ConversationListResponse(
            conversations=conversations, total=total, limit=limit, offset=offset
        )

    def append_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        message_type: MessageType = "content",
        metadata: Optional[Dict[str, Any]] = None,
        parent_id: Optional[str] = None,
    ) -> Message:
        """
        Append a message, assigning ``order`` = max(order) + 1.

        The order read and the insert share one ``BEGIN IMMEDIATE`` transaction,
        so concurrent writers to the same conversation serialize on the write
        lock instead of producing duplicate order values.
        """
        payload = dict(metadata or {})
        payload["message_type"] = message_type
        try:
            validated = _metadata_adapter.validate_python(payload)
        except ValidationError as e:
            raise ValueError(f"Invalid metadata for {message_type} message: {e}") from e
        stored_metadata = validated.model_dump(exclude_none=True, exclude={"message_type"})

        message_id = str(uuid.uuid4())
        now = _now()
        conn = self._db.connect()
        conn.isolation_level = None
        try:
            conn.execute("BEGIN IMMEDIATE")
            order = conn.execute(
                'SELECT COALESCE(MAX("order"), -1) + 1 FROM messages WHERE conversation_id = ?',
                (conversation_id,),
            ).fetchone()[0]
            conn.execute(
                f"""
                INSERT INTO messages ({_MESSAGE_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    message_id,
                    conversation_id,
                    parent_id,
                    role,
                    content,
                    message_type,
                    json.dumps(stored_metadata),
                    order,
                    now,
                ),
            )
            conn.execute(
                "UPDATE conversations SET updated_at = ? WHERE id = ?",
                (now, conversation_id),
            )
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            logger.error(f"Failed to append message to {conversation_id}: {e}")
            raise StoreError(f"Failed to append message: {e}") from e
        finally:
            conn.close()

        logger.debug(
            f"Appended {message_type} message #{order} to conversation {conversation_id}",
            extra={"role": role},
        )
        return Message(
            id=message_id,
            conversation_id=conversation_id,
            parent_id=parent_id,
            role=role,
            content=content,
            message_type=message_type,
            metadata=validated,
            order=order,
            created_at=datetime.fromisoformat(now),
        )

    def get_messages(
        self,
        conversation_id: str,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> MessagePage:
        """Return one page of messages in ascending order."""
        conn = self._db.connect()
        try:
            self._fetch_accessible(conn, conversation_id, user_id)
            total = conn.execute(
                "SELECT COUNT(*) FROM messages WHERE conversation_id = ?", (conversation_id,)
            ).fetchone()[0]
            rows = conn.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS} FROM messages
                WHERE conversation_id = ?
                ORDER BY "order" ASC
                LIMIT ? OFFSET ?
                """,
                (conversation_id, limit, offset),
            ).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to load messages: {e}") from e
        finally:
            conn.close()

        return MessagePage(
            messages=[_message_from_row(row) for row in rows],
            total=total,
            has_more=offset + len(rows) < total,
        )

    def get_history(self, conversation_id: str, limit: int) -> List[Message]:
        """Return the most recent ``limit`` messages in ascending order."""
        conn = self._db.connect()
        try:
            rows = conn.execute(
                f"""
                SELECT * FROM (
                    SELECT {_MESSAGE_COLUMNS} FROM messages
                    WHERE conversation_id = ?
                    ORDER BY "order" DESC
                    LIMIT ?
                ) ORDER BY "order" ASC
                """,
                (conversation_id, limit),
            ).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to load history: {e}") from e
        finally:
            conn.close()
        return [_message_from_row(row) for row in rows]

    def update_title(self, conversation_id: str, title: str) -> None:
        """Set the conversation title."""
        conn = self._db.connect()
        try:
            conn.execute(
                "UPDATE conversations SET title = ?, updated_at = ? WHERE id = ?",
                (title, _now(), conversation_id),
            )
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreError(f"Failed to update title: {e}") from e
        finally:
            conn.close()

    def delete_conversation(self, conversation_id: str, user_id: str) -> bool:
        """Delete a conversation owned by the user; messages cascade."""
        conn = self._db.connect()
        try:
            cursor = conn.execute(
                "DELETE FROM conversations WHERE id = ? AND user_id = ?",
                (conversation_id, user_id),
            )
            conn.commit()
            deleted = cursor.rowcount > 0
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreError(f"Failed to delete conversation: {e}") from e
        finally:
            conn.close()

        if deleted:
            logger.info(f"Deleted conversation {conversation_id} for user {user_id}")
        return deleted


_conversation_store: Optional[ConversationStore] = None


def get_conversation_store() -> ConversationStore:
    """Get or create the conversation store singleton."""
    global _conversation_store
    if _conversation_store is None:
        _conversation_store = ConversationStore()
    return _conversation_store


__all__ = [
    "ConversationStore",
    "ConversationNotFoundError",
    "StoreError",
    "auto_title",
    "get_conversation_store",
]
