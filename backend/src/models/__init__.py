"""Pydantic models for data validation and serialization."""

from .auth import JWTPayload
from .chat import (
    ChatContext,
    ChatMode,
    ChatModel,
    ChatRequest,
    Conversation,
    ConversationCreate,
    ConversationDetail,
    ConversationListResponse,
    ConversationSummary,
    Message,
    MessagePage,
    SourceCitation,
)
from .events import ChatStreamEvent

__all__ = [
    "ChatContext",
    "ChatMode",
    "ChatModel",
    "ChatRequest",
    "ChatStreamEvent",
    "Conversation",
    "ConversationCreate",
    "ConversationDetail",
    "ConversationListResponse",
    "ConversationSummary",
    "Message",
    "MessagePage",
    "SourceCitation",
    "JWTPayload",
]
