"""Model Invocation Adapter - streams one chat completion as uniform events.

The adapter posts to an OpenAI-compatible ``/chat/completions`` endpoint with
``stream=true`` and translates the server-sent chunks into ``ModelEvent``s:

- ``content_delta``   incremental assistant text
- ``reasoning``       cumulative reasoning text, when the provider sends it
- ``tool_call_start`` a tool name is known, arguments still streaming
- ``tool_call``       arguments fully received (emitted after the step ends)
- ``done``            the inference step finished
- ``error``           the call failed; nothing else follows

Failures never raise out of ``stream``; they arrive as a single ``error``
event. The adapter never runs tools and performs no retries.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Literal, Optional

import httpx

from ..models.chat import Message
from .config import AppConfig, get_config

logger = logging.getLogger(__name__)

ModelEventType = Literal[
    "content_delta", "reasoning", "tool_call_start", "tool_call", "done", "error"
]


@dataclass
class ModelEvent:
    """One normalized event from a model call."""
    type: ModelEventType
    text: Optional[str] = None
    id: Optional[str] = None
    name: Optional[str] = None
    args: Optional[Dict[str, Any]] = None
    args_error: Optional[str] = None
    finish_reason: Optional[str] = None
    message: Optional[str] = None


def _new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


def _parse_arguments(raw: str) -> tuple[Dict[str, Any], Optional[str]]:
    """Decode streamed argument JSON; malformed input yields an error string."""
    if not raw.strip():
        return {}, None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        return {}, f"Malformed tool arguments: {e.msg}"
    if not isinstance(parsed, dict):
        return {}, "Tool arguments must be a JSON object"
    return parsed, None


class ModelClient:
    """Streams chat completions from the configured provider."""

    def __init__(
        self,
        config: AppConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or get_config()
        self._transport = transport

    async def stream(
        self,
        messages: List[Dict[str, Any]],
        model: str,
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> AsyncIterator[ModelEvent]:
        """Run one inference step. Omitting ``tools`` disables tool use."""
        if not self.config.llm_api_key:
            yield ModelEvent(type="error", message="Model API key is not configured")
            return

        payload: Dict[str, Any] = {"model": model, "messages": messages, "stream": True}
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"

        try:
            async with httpx.AsyncClient(
                timeout=self.config.llm_timeout_seconds, transport=self._transport
            ) as client:
                async with client.stream(
                    "POST",
                    f"{self.config.llm_base_url}/chat/completions",
                    headers={
                        "Authorization": f"Bearer {self.config.llm_api_key}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                ) as response:
                    if response.status_code >= 400:
                        body = await response.aread()
                        logger.error(
                            f"Model API error: {response.status_code} - "
                            f"{body.decode('utf-8', 'replace')[:500]}"
                        )
                        yield ModelEvent(
                            type="error", message=f"Model API error: {response.status_code}"
                        )
                        return

                    async for event in self._process_stream(response):
                        yield event
        except httpx.TimeoutException:
            logger.error("Model API timeout")
            yield ModelEvent(type="error", message="Model request timed out - please try again")
        except httpx.HTTPError as e:
            logger.error(f"Model API transport error: {e}")
            yield ModelEvent(type="error", message=f"Could not reach model API: {e}")

    async def _process_stream(self, response: httpx.Response) -> AsyncIterator[ModelEvent]:
        reasoning = ""
        tool_calls_buffer: Dict[int, Dict[str, Any]] = {}
        finish_reason = None
        completed = False

        async for line in response.aiter_lines():
            if not line.startswith("data:"):
                continue

            data_str = line[5:].strip()
            if data_str == "[DONE]":
                completed = True
                break

            try:
                data = json.loads(data_str)
            except json.JSONDecodeError:
                logger.debug(f"Skipping undecodable stream line: {data_str[:200]}")
                continue

            if not isinstance(data, dict):
                logger.debug(f"Skipping non-object stream payload: {data_str[:200]}")
                continue

            if data.get("error"):
                error = data["error"]
                message = error.get("message") if isinstance(error, dict) else str(error)
                logger.error(f"Model stream reported error: {message}")
                yield ModelEvent(type="error", message=f"Model error: {message}")
                return

            choices = data.get("choices") or []
            if not choices:
                continue

            choice = choices[0]
            delta = choice.get("delta") or {}
            finish_reason = choice.get("finish_reason") or finish_reason

            if delta.get("content"):
                yield ModelEvent(type="content_delta", text=delta["content"])

            piece = delta.get("reasoning") or delta.get("reasoning_content")
            if piece:
                reasoning += piece
                yield ModelEvent(type="reasoning", text=reasoning)

            for tc in delta.get("tool_calls") or []:
                idx = tc.get("index", 0)
                entry = tool_calls_buffer.setdefault(
                    idx, {"id": "", "name": "", "arguments": "", "started": False}
                )
                if tc.get("id") and not entry["id"]:
                    entry["id"] = tc["id"]
                function = tc.get("function") or {}
                if function.get("name"):
                    entry["name"] = function["name"]
                if function.get("arguments"):
                    entry["arguments"] += function["arguments"]

                if entry["name"] and not entry["started"]:
                    entry["id"] = entry["id"] or _new_call_id()
                    entry["started"] = True
                    yield ModelEvent(type="tool_call_start", id=entry["id"], name=entry["name"])

        if not completed and finish_reason is None:
            logger.error("Model stream ended without [DONE] or a finish reason")
            yield ModelEvent(type="error", message="Model stream ended unexpectedly")
            return

        for idx in sorted(tool_calls_buffer):
            entry = tool_calls_buffer[idx]
            if not entry["name"]:
                logger.warning(f"Dropping tool call #{idx} streamed without a name")
                continue
            args, args_error = _parse_arguments(entry["arguments"])
            yield ModelEvent(
                type="tool_call",
                id=entry["id"] or _new_call_id(),
                name=entry["name"],
                args=args,
                args_error=args_error,
            )

        yield ModelEvent(type="done", finish_reason=finish_reason)


def build_history(messages: List[Message]) -> List[Dict[str, Any]]:
    """
    Convert persisted messages into chat-completions messages.

    Each ``tool_call`` row becomes an assistant message carrying one
    ``tool_calls`` entry, and its ``tool_result`` row the matching ``tool``
    message. A call without its result (or a result without its call, e.g.
    cut off by the history window) is dropped, since the API rejects
    unpaired tool messages.
    """
    history: List[Dict[str, Any]] = []
    pending: Optional[Message] = None

    for message in messages:
        if message.message_type == "tool_call":
            pending = message
            continue

        if message.message_type == "tool_result":
            call, pending = pending, None
            if call is None:
                continue
            call_meta = call.metadata
            result_meta = message.metadata
            call_id = call_meta.tool_call_id or f"call_{call.id}"
            if result_meta.tool_call_id and result_meta.tool_call_id != call_id:
                continue
            history.append(
                {
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [
                        {
                            "id": call_id,
                            "type": "function",
                            "function": {
                                "name": call_meta.tool_name,
                                "arguments": json.dumps(call_meta.tool_args),
                            },
                        }
                    ],
                }
            )
            history.append(
                {
                    "role": "tool",
                    "tool_call_id": call_id,
                    "content": message.content,
                }
            )
            continue

        pending = None
        history.append({"role": message.role, "content": message.content})

    return history


_model_client: Optional[ModelClient] = None


def get_model_client() -> ModelClient:
    """Get or create the model client singleton."""
    global _model_client
    if _model_client is None:
        _model_client = ModelClient()
    return _model_client


__all__ = ["ModelClient", "ModelEvent", "build_history", "get_model_client"]
