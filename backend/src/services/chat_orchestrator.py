"""Chat Orchestrator - drives one chat turn from user message to final answer.

A turn moves through ``TurnState``:

    IDLE -> MODEL_CALL -> (TOOL_DISPATCH -> MODEL_CALL)* -> PERSISTING -> IDLE

with ``ERRORED`` reachable from any state. Model output is forwarded to the
caller as soon as it arrives. Tool calls requested in one model step run one
at a time in the order the model emitted them, and each produces a persisted
``tool_call`` message followed by its ``tool_result`` message.

The model context for every turn is rebuilt from persisted messages only, so
text streamed during a turn that later fails never reaches future turns.

Tool failures are data: they are stored on the ``tool_result`` message and fed
back to the model. Model and persistence failures end the turn with a single
``error`` event and nothing further is persisted.

Cancellation is bound to the request. When the client disconnects the
streaming response cancels this generator; ``asyncio.CancelledError`` then
propagates into the in-flight model stream or tool call and the turn stops
without persisting anything else.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional

from ..models.chat import ChatMode, ChatRequest, Conversation, Message, SourceCitation
from ..models.events import ChatStreamEvent
from .config import AppConfig, get_config
from .conversation_store import (
    ConversationNotFoundError,
    ConversationStore,
    StoreError,
    auto_title,
    get_conversation_store,
)
from .model_client import ModelClient, build_history, get_model_client
from .notes import NoteService, get_note_service
from .prompt_loader import PromptLoader, PromptLoaderError
from .teams import TeamService, get_team_service
from .tool_registry import (
    InvalidToolError,
    ToolContext,
    ToolOutcome,
    ToolRegistry,
    extract_sources,
    get_tool_registry,
)

logger = logging.getLogger(__name__)

CONTEXT_NOTE_MAX_CHARS = 4000


class TurnState(str, Enum):
    IDLE = "idle"
    MODEL_CALL = "model_call"
    TOOL_DISPATCH = "tool_dispatch"
    PERSISTING = "persisting"
    ERRORED = "errored"


class TurnError(Exception):
    """Turn-fatal failure reported to the client as an error event."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


@dataclass
class PendingToolCall:
    id: str
    name: str
    args: Dict[str, Any]
    args_error: Optional[str] = None


@dataclass
class TurnRun:
    """Mutable state of one turn."""
    user_id: str
    request: ChatRequest
    mode: ChatMode
    state: TurnState = TurnState.IDLE
    conversation: Optional[Conversation] = None
    user_message: Optional[Message] = None
    content_parts: List[str] = field(default_factory=list)
    reasoning: Optional[str] = None
    sources: List[SourceCitation] = field(default_factory=list)
    tool_rounds: int = 0

    def add_sources(self, citations: List[SourceCitation]) -> None:
        seen = {s.id for s in self.sources}
        for citation in citations:
            if citation.id not in seen:
                self.sources.append(citation)
                seen.add(citation.id)


class ChatOrchestrator:
    """Runs chat turns against the store, the model and the tool registry."""

    def __init__(
        self,
        store: Optional[ConversationStore] = None,
        model_client: Optional[ModelClient] = None,
        tool_registry: Optional[ToolRegistry] = None,
        note_service: Optional[NoteService] = None,
        team_service: Optional[TeamService] = None,
        prompt_loader: Optional[PromptLoader] = None,
        config: Optional[AppConfig] = None,
    ) -> None:
        self.config = config or get_config()
        self.store = store or get_conversation_store()
        self.model_client = model_client or get_model_client()
        self.tools = tool_registry or get_tool_registry()
        self.notes = note_service or get_note_service()
        self.teams = team_service or get_team_service()
        self.prompts = prompt_loader or PromptLoader()

    async def run_turn(
        self, user_id: str, request: ChatRequest, mode: ChatMode
    ) -> AsyncIterator[ChatStreamEvent]:
        """
        Run one turn and yield transport events in production order.

        The caller is expected to have checked team membership for
        ``request.context.teamId`` before starting the stream.
        """
        run = TurnRun(user_id=user_id, request=request, mode=mode)
        logger.info(
            f"Starting {mode.value} turn for user {user_id}",
            extra={"conversation_id": request.conversation_id, "model": request.model.value},
        )
        try:
            async for event in self._run(run):
                yield event
        except asyncio.CancelledError:
            logger.info(
                f"Turn cancelled in state {run.state.value}",
                extra={"conversation_id": run.conversation.id if run.conversation else None},
            )
            raise
        except ConversationNotFoundError as e:
            self._transition(run, TurnState.ERRORED)
            yield ChatStreamEvent(type="error", message=str(e))
        except TurnError as e:
            self._transition(run, TurnState.ERRORED)
            logger.warning(f"Turn failed: {e.message}")
            yield ChatStreamEvent(type="error", message=e.message)
        except StoreError as e:
            self._transition(run, TurnState.ERRORED)
            logger.error(f"Turn failed while persisting: {e}")
            yield ChatStreamEvent(type="error", message="Failed to save the conversation. Please try again.")
        except PromptLoaderError as e:
            self._transition(run, TurnState.ERRORED)
            logger.error(f"Turn failed while building the prompt: {e}")
            yield ChatStreamEvent(type="error", message="Failed to prepare the assistant prompt.")
        except Exception as e:
            self._transition(run, TurnState.ERRORED)
            logger.exception(f"Turn failed unexpectedly: {e}")
            yield ChatStreamEvent(type="error", message="Unexpected error while generating a response.")

    async def _run(self, run: TurnRun) -> AsyncIterator[ChatStreamEvent]:
        request = run.request

        if request.conversation_id:
            conversation = self.store.get_header(request.conversation_id, run.user_id)
        else:
            conversation = self.store.create_conversation(run.user_id, team_id=request.team_id)
            yield ChatStreamEvent(type="conversation", conversation_id=conversation.id)
        run.conversation = conversation

        # History is read before the new user message is stored so the window
        # limit applies to prior turns only.
        history = self.store.get_history(conversation.id, self.config.history_limit)
        run.user_message = self.store.append_message(
            conversation.id, "user", request.message, "content"
        )

        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": self._build_system_prompt(run)},
            *build_history(history),
            {"role": "user", "content": request.message},
        ]
        tools = self.tools.get_tool_schemas() if run.mode == ChatMode.AGENT else None
        tool_context = ToolContext(user_id=run.user_id, team_id=conversation.team_id)

        for _ in range(self.config.max_tool_rounds):
            self._transition(run, TurnState.MODEL_CALL)
            pending: List[PendingToolCall] = []
            step_error: Optional[str] = None
            step_start = len(run.content_parts)

            async for event in self.model_client.stream(messages, request.model.value, tools):
                if event.type == "content_delta":
                    run.content_parts.append(event.text or "")
                    yield ChatStreamEvent(type="content", delta=event.text)
                elif event.type == "reasoning":
                    run.reasoning = event.text
                    yield ChatStreamEvent(type="reasoning", reasoning=event.text)
                elif event.type in ("tool_call_start", "tool_call") and run.mode == ChatMode.ASK:
                    logger.warning(f"Ignoring {event.type} for {event.name} in ask mode")
                elif event.type == "tool_call_start":
                    yield ChatStreamEvent(type="tool_call_start", id=event.id, name=event.name)
                elif event.type == "tool_call":
                    pending.append(
                        PendingToolCall(
                            id=event.id or "",
                            name=event.name or "",
                            args=event.args or {},
                            args_error=event.args_error,
                        )
                    )
                    yield ChatStreamEvent(
                        type="tool_call", id=event.id, name=event.name, args=event.args or {}
                    )
                elif event.type == "error":
                    step_error = event.message or "Model invocation failed"

            if step_error is not None:
                raise TurnError(step_error)

            if not pending:
                async for event in self._finish(run):
                    yield event
                return

            self._transition(run, TurnState.TOOL_DISPATCH)
            run.tool_rounds += 1
            # Text streamed alongside the tool calls goes back to the model with the first call.
            step_text: Optional[str] = "".join(run.content_parts[step_start:]) or None
            for call in pending:
                async for event in self._dispatch(run, call, tool_context, messages, step_text):
                    yield event
                step_text = None

        raise TurnError(
            f"Stopped after {self.config.max_tool_rounds} model calls without a final answer"
        )

    async def _dispatch(
        self,
        run: TurnRun,
        call: PendingToolCall,
        tool_context: ToolContext,
        messages: List[Dict[str, Any]],
        step_text: Optional[str] = None,
    ) -> AsyncIterator[ChatStreamEvent]:
        """Persist, run and report one tool call, then extend the model context."""
        conversation_id = run.conversation.id
        parent_id = run.user_message.id if run.user_message else None

        self.store.append_message(
            conversation_id,
            "assistant",
            call.name,
            "tool_call",
            {"tool_name": call.name, "tool_call_id": call.id, "tool_args": call.args},
            parent_id=parent_id,
        )

        outcome = await self._invoke_tool(call, tool_context)
        content = outcome.as_model_content()

        self.store.append_message(
            conversation_id,
            "assistant",
            content,
            "tool_result",
            {
                "tool_name": call.name,
                "tool_call_id": call.id,
                "tool_args": call.args,
                "tool_result": outcome.result,
                "error": outcome.error,
            },
            parent_id=parent_id,
        )
        if outcome.ok and outcome.result:
            run.add_sources(extract_sources(call.name, outcome.result))

        yield ChatStreamEvent(
            type="tool_result",
            id=call.id,
            name=call.name,
            result=outcome.result,
            error=outcome.error,
        )

        messages.append(
            {
                "role": "assistant",
                "content": step_text,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": json.dumps(call.args)},
                    }
                ],
            }
        )
        messages.append({"role": "tool", "tool_call_id": call.id, "content": content})

    async def _invoke_tool(self, call: PendingToolCall, tool_context: ToolContext) -> ToolOutcome:
        if call.args_error:
            return ToolOutcome(error=call.args_error)
        try:
            return await self.tools.invoke(call.name, call.args, tool_context)
        except InvalidToolError as e:
            return ToolOutcome(error=str(e))

    async def _finish(self, run: TurnRun) -> AsyncIterator[ChatStreamEvent]:
        self._transition(run, TurnState.PERSISTING)
        conversation = run.conversation
        metadata: Dict[str, Any] = {
            "model": run.request.model.value,
            "reasoning": run.reasoning,
            "sources": [s.model_dump() for s in run.sources] or None,
        }
        assistant = self.store.append_message(
            conversation.id,
            "assistant",
            "".join(run.content_parts),
            "content",
            metadata,
            parent_id=run.user_message.id if run.user_message else None,
        )
        if not conversation.title:
            self.store.update_title(conversation.id, auto_title(run.request.message))

        if run.sources:
            yield ChatStreamEvent(type="sources", sources=run.sources)

        self._transition(run, TurnState.IDLE)
        logger.info(
            f"Turn complete for conversation {conversation.id}",
            extra={"tool_rounds": run.tool_rounds, "message_id": assistant.id},
        )
        yield ChatStreamEvent(type="done", conversation_id=conversation.id, message_id=assistant.id)

    def _build_system_prompt(self, run: TurnRun) -> str:
        context = run.request.context
        team_id = run.conversation.team_id if run.conversation else None
        team = self.teams.get_team(team_id) if team_id else None

        context_notes = []
        if context and context.note_ids:
            for note in self.notes.get_notes_by_ids(run.user_id, context.note_ids, team_id=team_id):
                context_notes.append(
                    {
                        "id": note["id"],
                        "title": note["title"],
                        "content": (note.get("content") or "")[:CONTEXT_NOTE_MAX_CHARS],
                    }
                )

        template = "chat/agent.md" if run.mode == ChatMode.AGENT else "chat/ask.md"
        return self.prompts.load(
            template,
            {
                "route": context.route if context else None,
                "team_name": team["name"] if team else None,
                "context_notes": context_notes,
            },
        )

    def _transition(self, run: TurnRun, state: TurnState) -> None:
        if run.state != state:
            logger.debug(f"Turn state {run.state.value} -> {state.value}")
            run.state = state


_orchestrator: Optional[ChatOrchestrator] = None


def get_chat_orchestrator() -> ChatOrchestrator:
    """Get or create the chat orchestrator singleton."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = ChatOrchestrator()
    return _orchestrator


__all__ = [
    "ChatOrchestrator",
    "PendingToolCall",
    "TurnError",
    "TurnRun",
    "TurnState",
    "get_chat_orchestrator",
]
