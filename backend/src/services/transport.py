"""Transport codec for chat events over Server-Sent Events.

The server side serializes each ``ChatStreamEvent`` as one JSON object per
SSE ``data:`` field. The decoder side turns a received line stream back into
events and folds them into a ``TurnAccumulator`` that mirrors what a client
renders while the turn is in flight.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Iterable, Iterator, List, Optional

from pydantic import ValidationError

from ..models.chat import SourceCitation
from ..models.events import ChatStreamEvent

logger = logging.getLogger(__name__)


class DecodeError(Exception):
    """Raised when a data payload is not a valid chat event."""


def encode_event(event: ChatStreamEvent) -> str:
    """Serialize an event as compact JSON (camelCase keys, no null fields)."""
    return json.dumps(event.model_dump(by_alias=True, exclude_none=True), separators=(",", ":"))


def decode_event(data: str) -> ChatStreamEvent:
    try:
        return ChatStreamEvent.model_validate(json.loads(data))
    except (json.JSONDecodeError, ValidationError) as e:
        raise DecodeError(f"Invalid chat event payload: {e}") from e


def iter_sse_data(lines: Iterable[str]) -> Iterator[str]:
    """
    Yield the data payload of each SSE event in ``lines``.

    Multi-line ``data:`` fields are joined with newlines, comments and other
    fields (``event:``, ``id:``, ``retry:``) are ignored.
    """
    buffer: List[str] = []
    for raw in lines:
        line = raw.rstrip("\r\n")
        if line == "":
            if buffer:
                yield "\n".join(buffer)
                buffer = []
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if name == "data":
            buffer.append(value[1:] if value.startswith(" ") else value)
    if buffer:
        yield "\n".join(buffer)


def decode_stream(lines: Iterable[str]) -> Iterator[ChatStreamEvent]:
    for data in iter_sse_data(lines):
        yield decode_event(data)


@dataclass
class ToolCallState:
    """Client-side view of one tool call."""
    id: str
    name: str
    status: str = "pending"  # pending -> running -> completed | failed
    args: Optional[Dict[str, Any]] = None
    result: Optional[str] = None
    error: Optional[str] = None


@dataclass
class TurnAccumulator:
    """Rebuilds cumulative turn state from events, strictly in arrival order."""
    conversation_id: Optional[str] = None
    text: str = ""
    reasoning: str = ""
    tool_calls: Dict[str, ToolCallState] = field(default_factory=dict)
    sources: List[SourceCitation] = field(default_factory=list)
    message_id: Optional[str] = None
    done: bool = False
    error: Optional[str] = None
    events: List[ChatStreamEvent] = field(default_factory=list)

    @property
    def finished(self) -> bool:
        return self.done or self.error is not None

    def apply(self, event: ChatStreamEvent) -> None:
        if self.finished:
            raise DecodeError(f"Received {event.type} event after the turn ended")
        self.events.append(event)

        if event.type == "conversation":
            self.conversation_id = event.conversation_id
        elif event.type == "content":
            self.text += event.delta or ""
        elif event.type == "reasoning":
            self.reasoning = event.reasoning or ""
        elif event.type == "tool_call_start":
            self.tool_calls[event.id or ""] = ToolCallState(id=event.id or "", name=event.name or "")
        elif event.type == "tool_call":
            call = self._call(event)
            call.args = event.args or {}
            call.status = "running"
        elif event.type == "tool_result":
            call = self._call(event)
            call.result = event.result
            call.error = event.error
            call.status = "failed" if event.error else "completed"
        elif event.type == "sources":
            self.sources = list(event.sources or [])
        elif event.type == "done":
            self.done = True
            self.message_id = event.message_id
            if event.conversation_id:
                self.conversation_id = event.conversation_id
        elif event.type == "error":
            self.error = event.message or "Unknown error"

    def _call(self, event: ChatStreamEvent) -> ToolCallState:
        key = event.id or ""
        if key not in self.tool_calls:
            self.tool_calls[key] = ToolCallState(id=key, name=event.name or "")
        return self.tool_calls[key]


def accumulate(lines: Iterable[str]) -> TurnAccumulator:
    """Decode a complete SSE body into its accumulated turn state."""
    state = TurnAccumulator()
    for event in decode_stream(lines):
        state.apply(event)
    return state


async def sse_payloads(events: AsyncIterator[ChatStreamEvent]) -> AsyncIterator[str]:
    """Encode an event stream for ``EventSourceResponse``."""
    async for event in events:
        logger.debug(f"Streaming {event.type} event")
        yield encode_event(event)


__all__ = [
    "DecodeError",
    "ToolCallState",
    "TurnAccumulator",
    "accumulate",
    "decode_event",
    "decode_stream",
    "encode_event",
    "iter_sse_data",
    "sse_payloads",
]
