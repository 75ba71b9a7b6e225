"""Pydantic models for the chat event stream."""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from .chat import SourceCitation

EventType = Literal[
    "conversation",
    "content",
    "reasoning",
    "tool_call_start",
    "tool_call",
    "tool_result",
    "sources",
    "done",
    "error",
]


class ChatStreamEvent(BaseModel):
    """Server-sent event emitted while a turn runs."""
    type: EventType = Field(..., description="Event type")
    conversation_id: Optional[str] = Field(
        None, alias="conversationId", description="Conversation id (conversation/done events)"
    )
    delta: Optional[str] = Field(None, description="Incremental assistant text (content events)")
    reasoning: Optional[str] = Field(None, description="Cumulative reasoning text (reasoning events)")
    id: Optional[str] = Field(None, description="Tool call id (tool events)")
    name: Optional[str] = Field(None, description="Tool name (tool events)")
    args: Optional[Dict[str, Any]] = Field(None, description="Tool arguments (tool_call events)")
    result: Optional[str] = Field(None, description="Tool output (tool_result events)")
    error: Optional[str] = Field(None, description="Tool error (tool_result events)")
    sources: Optional[List[SourceCitation]] = Field(None, description="Citations (sources events)")
    message_id: Optional[str] = Field(
        None, alias="messageId", description="Persisted assistant message id (done event)"
    )
    message: Optional[str] = Field(None, description="Human-readable failure (error events)")

    model_config = {"populate_by_name": True}


__all__ = ["ChatStreamEvent", "EventType"]
