"""FastMCP server exposing notes, tasks and chat history to external agents."""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from fastmcp import FastMCP
from pydantic import Field

load_dotenv()

from ..services.conversation_store import ConversationNotFoundError, get_conversation_store
from ..services.notes import get_note_service
from ..services.tasks import get_task_service

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "tasknotes",
    instructions=(
        "Read-only access to a TaskNotes workspace. STDIO acts as LOCAL_USER_ID (default "
        "'local-dev'). Notes and tasks are personal unless team_id is given. Conversations "
        "are chat transcripts; messages are returned in their stored order."
    ),
)


def _current_user_id() -> str:
    """Resolve the acting user ID (local mode defaults to local-dev)."""
    return os.getenv("LOCAL_USER_ID", "local-dev")


def _log_call(tool_name: str, user_id: str, start_time: float, **fields: Any) -> None:
    duration_ms = (time.time() - start_time) * 1000
    logger.info(
        "MCP tool called",
        extra={
            "tool_name": tool_name,
            "user_id": user_id,
            "duration_ms": f"{duration_ms:.2f}",
            **fields,
        },
    )


def _list_notes(
    user_id: str, parent_id: Optional[str] = None, limit: int = 50, team_id: Optional[str] = None
) -> List[Dict[str, Any]]:
    return get_note_service().list_notes(user_id, parent_id=parent_id, limit=limit, team_id=team_id)


def _get_note(user_id: str, note_id: str, team_id: Optional[str] = None) -> Dict[str, Any]:
    note = get_note_service().get_note(user_id, note_id, team_id=team_id)
    if note is None:
        raise ValueError(f"Note not found: {note_id}")
    return note


def _search_notes(
    user_id: str, query: str, limit: int = 10, team_id: Optional[str] = None
) -> List[Dict[str, Any]]:
    return get_note_service().search_notes(user_id, query, limit=limit, team_id=team_id)


def _list_tasks(
    user_id: str,
    query: Optional[str] = None,
    status: Optional[str] = None,
    include_completed: bool = True,
    limit: int = 50,
    team_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    return get_task_service().search_tasks(
        user_id,
        query,
        status=status,
        include_completed=include_completed,
        limit=limit,
        team_id=team_id,
    )


def _list_conversations(
    user_id: str, team_id: Optional[str] = None, limit: int = 20
) -> List[Dict[str, Any]]:
    page = get_conversation_store().list_conversations(user_id, team_id=team_id, limit=limit)
    return [c.model_dump(mode="json") for c in page.conversations]


def _get_conversation(user_id: str, conversation_id: str) -> Dict[str, Any]:
    try:
        detail = get_conversation_store().get_conversation(conversation_id, user_id)
    except ConversationNotFoundError as exc:
        raise ValueError(str(exc)) from exc
    return detail.model_dump(mode="json")


@mcp.tool(name="list_notes", description="List notes (ids and titles), optionally under a parent note.")
def list_notes(
    parent_id: Optional[str] = Field(default=None, description="Only list children of this note."),
    limit: int = Field(default=50, ge=1, le=100, description="Maximum notes to return."),
    team_id: Optional[str] = Field(default=None, description="Team workspace; omit for personal notes."),
) -> List[Dict[str, Any]]:
    start_time = time.time()
    user_id = _current_user_id()
    notes = _list_notes(user_id, parent_id=parent_id, limit=limit, team_id=team_id)
    _log_call("list_notes", user_id, start_time, result_count=len(notes))
    return notes


@mcp.tool(name="get_note", description="Read one note with its content and tags.")
def get_note(
    note_id: str = Field(..., description="Note identifier."),
    team_id: Optional[str] = Field(default=None, description="Team workspace; omit for personal notes."),
) -> Dict[str, Any]:
    start_time = time.time()
    user_id = _current_user_id()
    note = _get_note(user_id, note_id, team_id=team_id)
    _log_call("get_note", user_id, start_time, note_id=note_id)
    return note


@mcp.tool(name="search_notes", description="Search notes by title and content; returns excerpts.")
def search_notes(
    query: str = Field(..., min_length=1, description="Words to search for."),
    limit: int = Field(default=10, ge=1, le=50, description="Maximum results."),
    team_id: Optional[str] = Field(default=None, description="Team workspace; omit for personal notes."),
) -> List[Dict[str, Any]]:
    start_time = time.time()
    user_id = _current_user_id()
    results = _search_notes(user_id, query, limit=limit, team_id=team_id)
    _log_call("search_notes", user_id, start_time, query=query, result_count=len(results))
    return results


@mcp.tool(name="list_tasks", description="List tasks, optionally filtered by text or board column.")
def list_tasks(
    query: Optional[str] = Field(default=None, description="Words to search for in titles and notes."),
    status: Optional[str] = Field(default=None, description="Board column name."),
    include_completed: bool = Field(default=True, description="Include completed tasks."),
    limit: int = Field(default=50, ge=1, le=100, description="Maximum tasks to return."),
    team_id: Optional[str] = Field(default=None, description="Team workspace; omit for personal tasks."),
) -> List[Dict[str, Any]]:
    start_time = time.time()
    user_id = _current_user_id()
    tasks = _list_tasks(
        user_id,
        query=query,
        status=status,
        include_completed=include_completed,
        limit=limit,
        team_id=team_id,
    )
    _log_call("list_tasks", user_id, start_time, result_count=len(tasks))
    return tasks


@mcp.tool(name="list_conversations", description="List recent chat conversations with previews.")
def list_conversations(
    team_id: Optional[str] = Field(default=None, description="Team workspace; omit for personal chats."),
    limit: int = Field(default=20, ge=1, le=100, description="Maximum conversations to return."),
) -> List[Dict[str, Any]]:
    start_time = time.time()
    user_id = _current_user_id()
    conversations = _list_conversations(user_id, team_id=team_id, limit=limit)
    _log_call("list_conversations", user_id, start_time, result_count=len(conversations))
    return conversations


@mcp.tool(name="get_conversation", description="Read a chat conversation with all messages in order.")
def get_conversation(
    conversation_id: str = Field(..., description="Conversation identifier."),
) -> Dict[str, Any]:
    start_time = time.time()
    user_id = _current_user_id()
    detail = _get_conversation(user_id, conversation_id)
    _log_call("get_conversation", user_id, start_time, conversation_id=conversation_id)
    return detail


if __name__ == "__main__":
    transport = os.getenv("MCP_TRANSPORT", "stdio").strip().lower() or "stdio"

    if transport == "http":
        port = int(os.getenv("MCP_PORT", "8001"))
        host = os.getenv("MCP_HOST", "127.0.0.1")
        logger.info(
            "Starting MCP server",
            extra={"transport": transport, "host": host, "port": port},
        )
        mcp.run(transport=transport, host=host, port=port)
    else:
        logger.info("Starting MCP server", extra={"transport": transport})
        mcp.run(transport=transport)
