"""Service layer for chat orchestration and its collaborators."""

from .auth import AuthError, AuthService
from .chat_orchestrator import ChatOrchestrator, TurnState, get_chat_orchestrator
from .config import AppConfig, get_config, reload_config
from .content_extraction import ExtractionError, FirecrawlExtractor, MistralOCRExtractor
from .conversation_store import (
    ConversationNotFoundError,
    ConversationStore,
    StoreError,
    get_conversation_store,
)
from .database import DatabaseService, init_database
from .model_client import ModelClient, ModelEvent, get_model_client
from .notes import NoteService, get_note_service
from .prompt_loader import PromptLoader, PromptLoaderError
from .tasks import TaskService, get_task_service
from .teams import TeamService, get_team_service
from .tool_registry import (
    InvalidToolError,
    ToolContext,
    ToolOutcome,
    ToolRegistry,
    get_tool_registry,
)

__all__ = [
    "AppConfig",
    "get_config",
    "reload_config",
    "DatabaseService",
    "init_database",
    "AuthService",
    "AuthError",
    "ConversationStore",
    "ConversationNotFoundError",
    "StoreError",
    "get_conversation_store",
    "ChatOrchestrator",
    "TurnState",
    "get_chat_orchestrator",
    "ModelClient",
    "ModelEvent",
    "get_model_client",
    "ToolRegistry",
    "ToolContext",
    "ToolOutcome",
    "InvalidToolError",
    "get_tool_registry",
    "FirecrawlExtractor",
    "MistralOCRExtractor",
    "ExtractionError",
    "NoteService",
    "get_note_service",
    "TaskService",
    "get_task_service",
    "TeamService",
    "get_team_service",
    "PromptLoader",
    "PromptLoaderError",
]
