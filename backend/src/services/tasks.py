"""Task Service - task board records read by chat tools."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .database import DatabaseService

logger = logging.getLogger(__name__)

_TASK_SELECT = """
    SELECT t.id, t.title, t.notes, t.is_completed, t.priority, t.start_date, t.end_date,
           t.updated_at, s.name AS status
    FROM tasks t LEFT JOIN task_stages s ON s.id = t.status_id
"""


def _task_from_row(row) -> Dict[str, Any]:
    task = dict(row)
    task["is_completed"] = bool(task["is_completed"])
    return task


class TaskService:
    """Create and search tasks within a personal or team scope."""

    def __init__(self, db_service: DatabaseService | None = None):
        self._db = db_service or DatabaseService()

    def create_stage(
        self, user_id: str, name: str, team_id: Optional[str] = None, order: int = 0
    ) -> str:
        stage_id = str(uuid.uuid4())
        conn = self._db.connect()
        try:
            conn.execute(
                'INSERT INTO task_stages (id, name, user_id, team_id, "order") VALUES (?, ?, ?, ?, ?)',
                (stage_id, name, user_id, team_id, order),
            )
            conn.commit()
        finally:
            conn.close()
        return stage_id

    def create_task(
        self,
        user_id: str,
        title: str,
        *,
        notes: Optional[str] = None,
        priority: str = "medium",
        status_id: Optional[str] = None,
        team_id: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> Dict[str, Any]:
        task_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc).isoformat()
        conn = self._db.connect()
        try:
            conn.execute(
                """
                INSERT INTO tasks (id, title, notes, priority, status_id, created_by_id, team_id,
                                   start_date, end_date, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (task_id, title, notes, priority, status_id, user_id, team_id,
                 start_date, end_date, now, now),
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        logger.info(f"Created task {task_id} for user {user_id}")
        return self.get_task(user_id, task_id, team_id=team_id) or {}

    def get_task(
        self, user_id: str, task_id: str, team_id: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        scope, params = self._scope(user_id, team_id)
        conn = self._db.connect()
        try:
            row = conn.execute(
                f"{_TASK_SELECT} WHERE t.id = ? AND {scope}", (task_id, *params)
            ).fetchone()
        finally:
            conn.close()
        return _task_from_row(row) if row else None

    def search_tasks(
        self,
        user_id: str,
        query: Optional[str] = None,
        *,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        include_completed: bool = True,
        limit: int = 20,
        team_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Filter tasks by text, stage name, priority and completion."""
        scope, params = self._scope(user_id, team_id)
        clauses = [scope]
        args: List[Any] = list(params)
        if query:
            clauses.append("(t.title LIKE ? OR COALESCE(t.notes, '') LIKE ?)")
            args.extend([f"%{query}%", f"%{query}%"])
        if status:
            clauses.append("LOWER(s.name) = LOWER(?)")
            args.append(status)
        if priority:
            clauses.append("t.priority = ?")
            args.append(priority)
        if not include_completed:
            clauses.append("t.is_completed = 0")
        args.append(limit)

        conn = self._db.connect()
        try:
            rows = conn.execute(
                f"{_TASK_SELECT} WHERE {' AND '.join(clauses)} ORDER BY t.updated_at DESC LIMIT ?",
                args,
            ).fetchall()
        finally:
            conn.close()
        return [_task_from_row(row) for row in rows]

    @staticmethod
    def _scope(user_id: str, team_id: Optional[str]):
        if team_id:
            return "t.team_id = ?", (team_id,)
        return "t.created_by_id = ? AND t.team_id IS NULL", (user_id,)


_task_service: Optional[TaskService] = None


def get_task_service() -> TaskService:
    """Get or create the task service singleton."""
    global _task_service
    if _task_service is None:
        _task_service = TaskService()
    return _task_service


__all__ = ["TaskService", "get_task_service"]
