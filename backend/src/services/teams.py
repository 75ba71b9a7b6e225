"""Team Service - workspace membership lookups."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .database import DatabaseService

logger = logging.getLogger(__name__)


class TeamService:
    """Create teams and answer membership questions."""

    def __init__(self, db_service: DatabaseService | None = None):
        self._db = db_service or DatabaseService()

    def create_team(self, owner_id: str, name: str) -> Dict[str, Any]:
        """Create a team and enroll its owner."""
        team_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc).isoformat()
        conn = self._db.connect()
        try:
            conn.execute(
                "INSERT INTO teams (id, name, owner_id, created_at) VALUES (?, ?, ?, ?)",
                (team_id, name, owner_id, now),
            )
            conn.execute(
                "INSERT INTO team_members (team_id, user_id, role, joined_at) VALUES (?, ?, 'owner', ?)",
                (team_id, owner_id, now),
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        logger.info(f"Created team {team_id} owned by {owner_id}")
        return {"id": team_id, "name": name, "owner_id": owner_id, "created_at": now}

    def add_member(self, team_id: str, user_id: str, role: str = "member") -> None:
        conn = self._db.connect()
        try:
            conn.execute(
                """
                INSERT OR IGNORE INTO team_members (team_id, user_id, role, joined_at)
                VALUES (?, ?, ?, ?)
                """,
                (team_id, user_id, role, datetime.now(timezone.utc).isoformat()),
            )
            conn.commit()
        finally:
            conn.close()

    def get_team(self, team_id: str) -> Optional[Dict[str, Any]]:
        conn = self._db.connect()
        try:
            row = conn.execute(
                "SELECT id, name, owner_id, created_at FROM teams WHERE id = ?", (team_id,)
            ).fetchone()
            return dict(row) if row else None
        finally:
            conn.close()

    def is_member(self, team_id: str, user_id: str) -> bool:
        conn = self._db.connect()
        try:
            row = conn.execute(
                "SELECT 1 FROM team_members WHERE team_id = ? AND user_id = ?",
                (team_id, user_id),
            ).fetchone()
            return row is not None
        finally:
            conn.close()

    def list_teams(self, user_id: str) -> List[Dict[str, Any]]:
        conn = self._db.connect()
        try:
            rows = conn.execute(
                """
                SELECT t.id, t.name, t.owner_id, tm.role
                FROM teams t JOIN team_members tm ON tm.team_id = t.id
                WHERE tm.user_id = ?
                ORDER BY t.name
                """,
                (user_id,),
            ).fetchall()
            return [dict(row) for row in rows]
        finally:
            conn.close()


_team_service: Optional[TeamService] = None


def get_team_service() -> TeamService:
    """Get or create the team service singleton."""
    global _team_service
    if _team_service is None:
        _team_service = TeamService()
    return _team_service


__all__ = ["TeamService", "get_team_service"]
