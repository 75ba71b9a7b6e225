"""Pydantic models for conversations, messages and chat requests."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ChatModel(str, Enum):
    """Closed set of model identifiers accepted by the chat endpoints."""

    O3_MINI = "o3-mini"
    GPT_4O = "gpt-4o"
    GPT_4O_MINI = "gpt-4o-mini"
    GPT_41 = "gpt-4.1"
    GPT_41_MINI = "gpt-4.1-mini"


class ChatMode(str, Enum):
    """Ask mode answers without tools; agent mode may call tools."""

    ASK = "ask"
    AGENT = "agent"


MessageRole = Literal["user", "assistant", "system"]
MessageType = Literal["content", "tool_call", "tool_result"]


class SourceCitation(BaseModel):
    """A note (or other record) the assistant drew on."""

    id: str
    title: str
    type: str = Field("note", description="Kind of record cited")


class ContentMetadata(BaseModel):
    """Metadata for plain content messages."""

    model_config = ConfigDict(extra="forbid")

    message_type: Literal["content"] = "content"
    model: Optional[str] = None
    reasoning: Optional[str] = None
    sources: Optional[List[SourceCitation]] = None


class ToolCallMetadata(BaseModel):
    """Metadata for a persisted tool invocation request."""

    model_config = ConfigDict(extra="forbid")

    message_type: Literal["tool_call"] = "tool_call"
    tool_name: str = Field(..., min_length=1)
    tool_call_id: Optional[str] = None
    tool_args: Dict[str, Any] = Field(default_factory=dict)


class ToolResultMetadata(BaseModel):
    """Metadata for the outcome of a tool invocation."""

    model_config = ConfigDict(extra="forbid")

    message_type: Literal["tool_result"] = "tool_result"
    tool_name: str = Field(..., min_length=1)
    tool_call_id: Optional[str] = None
    tool_args: Dict[str, Any] = Field(default_factory=dict)
    tool_result: Optional[str] = None
    error: Optional[str] = None


MessageMetadata = Annotated[
    Union[ContentMetadata, ToolCallMetadata, ToolResultMetadata],
    Field(discriminator="message_type"),
]


class Message(BaseModel):
    """A single persisted message in a conversation."""

    id: str
    conversation_id: str
    parent_id: Optional[str] = None
    role: MessageRole
    content: str = ""
    message_type: MessageType = "content"
    metadata: MessageMetadata
    order: int = Field(..., ge=0)
    created_at: datetime


class Conversation(BaseModel):
    """Conversation header."""

    id: str
    user_id: str
    team_id: Optional[str] = None
    title: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ConversationSummary(Conversation):
    """Conversation with derived list-view fields (never stored)."""

    message_count: int = 0
    last_message_preview: Optional[str] = None


class ConversationDetail(BaseModel):
    """Conversation with its ordered message list."""

    conversation: Conversation
    messages: List[Message] = Field(default_factory=list)


class ConversationListResponse(BaseModel):
    """Paginated list of conversations."""

    conversations: List[ConversationSummary]
    total: int
    limit: int
    offset: int


class MessagePage(BaseModel):
    """A page of messages ordered by ``order``."""

    messages: List[Message]
    total: int
    has_more: bool


class ChatContext(BaseModel):
    """Hints about what the user is looking at when sending a message."""

    model_config = ConfigDict(populate_by_name=True)

    route: Optional[str] = Field(None, max_length=500)
    note_ids: List[str] = Field(default_factory=list, alias="noteIds", max_length=20)
    team_id: Optional[str] = Field(None, alias="teamId")


class ChatRequest(BaseModel):
    """Body accepted by POST /api/chat/ask and /api/chat/agent."""

    model_config = ConfigDict(populate_by_name=True)

    conversation_id: Optional[str] = Field(None, alias="conversationId")
    message: str = Field(..., min_length=1, max_length=10000)
    model: ChatModel = Field(..., description="Model used for the turn")
    context: Optional[ChatContext] = None

    @field_validator("message")
    @classmethod
    def _reject_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message cannot be blank")
        return value

    @property
    def team_id(self) -> Optional[str]:
        return self.context.team_id if self.context else None


class ConversationCreate(BaseModel):
    """Body for explicit conversation creation."""

    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = Field(None, max_length=200)
    team_id: Optional[str] = Field(None, alias="teamId")


__all__ = [
    "ChatModel",
    "ChatMode",
    "MessageRole",
    "MessageType",
    "SourceCitation",
    "ContentMetadata",
    "ToolCallMetadata",
    "ToolResultMetadata",
    "MessageMetadata",
    "Message",
    "Conversation",
    "ConversationSummary",
    "ConversationDetail",
    "ConversationListResponse",
    "MessagePage",
    "ChatContext",
    "ChatRequest",
    "ConversationCreate",
]
