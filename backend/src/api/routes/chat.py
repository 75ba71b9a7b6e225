"""Chat API endpoints - streaming turns and conversation CRUD."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sse_starlette.sse import EventSourceResponse

from ..middleware import AuthContext, get_auth_context
from ...models.chat import (
    ChatMode,
    ChatRequest,
    Conversation,
    ConversationCreate,
    ConversationDetail,
    ConversationListResponse,
    MessagePage,
)
from ...services.chat_orchestrator import ChatOrchestrator, get_chat_orchestrator
from ...services.conversation_store import ConversationStore, get_conversation_store
from ...services.teams import TeamService, get_team_service
from ...services.transport import sse_payloads

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])


def _require_team_member(teams: TeamService, team_id: Optional[str], user_id: str) -> None:
    if team_id and not teams.is_member(team_id, user_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "forbidden", "message": "Not a member of this team"},
        )


def _start_turn(
    mode: ChatMode,
    request: ChatRequest,
    auth: AuthContext,
    orchestrator: ChatOrchestrator,
    store: ConversationStore,
    teams: TeamService,
) -> EventSourceResponse:
    # Everything that can be rejected synchronously is checked before the
    # stream opens, so the client gets a plain HTTP error instead of events.
    _require_team_member(teams, request.team_id, auth.user_id)
    if request.conversation_id:
        store.get_header(request.conversation_id, auth.user_id)

    logger.info(
        f"Chat {mode.value} request from user {auth.user_id}: {request.message[:100]}",
        extra={"conversation_id": request.conversation_id, "model": request.model.value},
    )
    return EventSourceResponse(
        sse_payloads(orchestrator.run_turn(auth.user_id, request, mode))
    )


@router.post("/ask")
async def chat_ask(
    request: ChatRequest,
    auth: AuthContext = Depends(get_auth_context),
    orchestrator: ChatOrchestrator = Depends(get_chat_orchestrator),
    store: ConversationStore = Depends(get_conversation_store),
    teams: TeamService = Depends(get_team_service),
):
    """
    Answer a message without tools (Server-Sent Events).

    **Request Body:**
    - `conversationId`: existing conversation to continue (omit to start one)
    - `message`: user message, 1-10000 characters
    - `model`: one of `o3-mini`, `gpt-4o`, `gpt-4o-mini`, `gpt-4.1`, `gpt-4.1-mini`
    - `context`: optional `{route, noteIds, teamId}` hints

    **Response:** SSE stream of JSON events ending with `done` or `error`.

    **Example event:**
    ```json
    data: {"type":"content","delta":"Here is"}
    ```
    """
    return _start_turn(ChatMode.ASK, request, auth, orchestrator, store, teams)


@router.post("/agent")
async def chat_agent(
    request: ChatRequest,
    auth: AuthContext = Depends(get_auth_context),
    orchestrator: ChatOrchestrator = Depends(get_chat_orchestrator),
    store: ConversationStore = Depends(get_conversation_store),
    teams: TeamService = Depends(get_team_service),
):
    """
    Answer a message, letting the model call tools (Server-Sent Events).

    Same body as `/ask`. In addition to content events the stream carries
    `tool_call_start`, `tool_call`, `tool_result` and `sources` events.
    """
    return _start_turn(ChatMode.AGENT, request, auth, orchestrator, store, teams)


@router.get("/conversations", response_model=ConversationListResponse)
async def list_conversations(
    team_id: Optional[str] = Query(None, alias="teamId"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    auth: AuthContext = Depends(get_auth_context),
    store: ConversationStore = Depends(get_conversation_store),
    teams: TeamService = Depends(get_team_service),
):
    """List conversations in the personal scope, or in one team's scope."""
    _require_team_member(teams, team_id, auth.user_id)
    return store.list_conversations(auth.user_id, team_id=team_id, limit=limit, offset=offset)


@router.post(
    "/conversations", response_model=Conversation, status_code=status.HTTP_201_CREATED
)
async def create_conversation(
    body: ConversationCreate,
    auth: AuthContext = Depends(get_auth_context),
    store: ConversationStore = Depends(get_conversation_store),
    teams: TeamService = Depends(get_team_service),
):
    """Create an empty conversation."""
    _require_team_member(teams, body.team_id, auth.user_id)
    return store.create_conversation(auth.user_id, team_id=body.team_id, title=body.title)


@router.get("/conversations/{conversation_id}", response_model=ConversationDetail)
async def get_conversation(
    conversation_id: str,
    auth: AuthContext = Depends(get_auth_context),
    store: ConversationStore = Depends(get_conversation_store),
):
    """Return a conversation with every message in order."""
    return store.get_conversation(conversation_id, auth.user_id)


@router.get("/conversations/{conversation_id}/messages", response_model=MessagePage)
async def get_conversation_messages(
    conversation_id: str,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    auth: AuthContext = Depends(get_auth_context),
    store: ConversationStore = Depends(get_conversation_store),
):
    """Return one page of a conversation's messages."""
    return store.get_messages(conversation_id, auth.user_id, limit=limit, offset=offset)


@router.delete("/conversations/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_conversation(
    conversation_id: str,
    auth: AuthContext = Depends(get_auth_context),
    store: ConversationStore = Depends(get_conversation_store),
):
    """Delete a conversation and its messages. Only the owner may delete."""
    conversation = store.get_header(conversation_id, auth.user_id)
    if conversation.user_id != auth.user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "forbidden", "message": "Only the owner can delete a conversation"},
        )
    store.delete_conversation(conversation_id, auth.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["router"]
