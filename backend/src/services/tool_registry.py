"""Tool Registry - named, schema-validated actions the model may request.

Each tool couples a pydantic argument model with an async handler. The
registry validates arguments before calling the handler, bounds every call
with a timeout, and converts handler failures into an error outcome so a
failing tool never aborts the surrounding chat turn.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, Field, HttpUrl, ValidationError

from ..models.chat import SourceCitation
from .config import get_config
from .content_extraction import FirecrawlExtractor, MistralOCRExtractor
from .notes import NoteService
from .tasks import TaskService

logger = logging.getLogger(__name__)


class InvalidToolError(Exception):
    """Raised when the model asks for a tool that is not registered."""

    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


@dataclass
class ToolContext:
    """Caller scope handed to every tool handler."""
    user_id: str
    team_id: Optional[str] = None


@dataclass
class ToolOutcome:
    """Either a result string or an error string, never both."""
    result: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def as_model_content(self) -> str:
        """Text fed back to the model as the tool message content."""
        if self.error is not None:
            return json.dumps({"error": self.error})
        return self.result or ""


ToolHandler = Callable[[Any, ToolContext], Awaitable[Any]]


@dataclass
class ToolSpec:
    name: str
    description: str
    args_model: Type[BaseModel]
    handler: ToolHandler

    def to_openai_schema(self) -> Dict[str, Any]:
        parameters = self.args_model.model_json_schema()
        parameters.pop("title", None)
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "arguments"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


class ToolRegistry:
    """Registry of tools keyed by name."""

    def __init__(self, timeout_seconds: Optional[float] = None) -> None:
        self.timeout_seconds = timeout_seconds or get_config().tool_timeout_seconds
        self._tools: Dict[str, ToolSpec] = {}

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def names(self) -> List[str]:
        return list(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def get_tool_schemas(self) -> List[Dict[str, Any]]:
        """OpenAI function-calling schemas for every registered tool."""
        return [spec.to_openai_schema() for spec in self._tools.values()]

    async def invoke(
        self, name: str, args: Dict[str, Any], context: ToolContext
    ) -> ToolOutcome:
        """
        Validate arguments and run a tool.

        Raises:
            InvalidToolError: If no tool with this name is registered.
        """
        spec = self._tools.get(name)
        if spec is None:
            logger.warning(f"Unknown tool requested: {name}")
            raise InvalidToolError(name)

        try:
            parsed = spec.args_model.model_validate(args)
        except ValidationError as e:
            logger.warning(f"Tool {name} validation error: {e}")
            return ToolOutcome(error=f"Invalid arguments: {_format_validation_error(e)}")

        start = time.monotonic()
        logger.info(
            f"Executing tool: {name}",
            extra={"user_id": context.user_id, "tool": name, "args_keys": list(args.keys())},
        )
        try:
            result = await asyncio.wait_for(
                spec.handler(parsed, context), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning(f"Tool {name} timed out after {self.timeout_seconds}s")
            return ToolOutcome(error=f"Tool timed out after {self.timeout_seconds:g} seconds")
        except Exception as e:
            logger.exception(f"Tool {name} execution failed: {e}")
            return ToolOutcome(error=f"Tool execution failed: {e}")

        duration_ms = (time.monotonic() - start) * 1000
        logger.info(
            f"Tool {name} finished",
            extra={"tool": name, "duration_ms": f"{duration_ms:.2f}"},
        )
        if isinstance(result, str):
            return ToolOutcome(result=result)
        return ToolOutcome(result=json.dumps(result, default=str))


# =========================================================================
# Tool argument schemas
# =========================================================================


class UrlArgs(BaseModel):
    url: HttpUrl = Field(..., description="Absolute http(s) URL to fetch")


class SearchNotesArgs(BaseModel):
    query: str = Field(..., min_length=1, description="Words to look for in note titles and content")
    limit: int = Field(10, ge=1, le=50, description="Maximum number of notes to return")


class GetNoteArgs(BaseModel):
    note_id: str = Field(..., min_length=1, description="Identifier of the note to fetch")


class ListNotesArgs(BaseModel):
    parent_id: Optional[str] = Field(None, description="Only list children of this note")
    limit: int = Field(50, ge=1, le=100, description="Maximum number of notes to return")


class RecentNotesArgs(BaseModel):
    limit: int = Field(10, ge=1, le=50, description="Maximum number of notes to return")


class NoteHierarchyArgs(BaseModel):
    note_id: str = Field(..., min_length=1, description="Note whose parent and children to fetch")


class NotesByTagArgs(BaseModel):
    tag_name: str = Field(..., min_length=1, description="Tag to filter by")


class SearchTasksArgs(BaseModel):
    query: Optional[str] = Field(None, description="Words to look for in task titles and notes")
    status: Optional[str] = Field(None, description="Board column name, e.g. 'In Progress'")
    priority: Optional[Literal["low", "medium", "high"]] = Field(None, description="Task priority")
    include_completed: bool = Field(True, description="Include tasks already marked complete")
    limit: int = Field(20, ge=1, le=100, description="Maximum number of tasks to return")


# =========================================================================
# Tool implementations
# =========================================================================


class ChatTools:
    """Handlers backing the chat assistant's tools."""

    def __init__(
        self,
        note_service: Optional[NoteService] = None,
        task_service: Optional[TaskService] = None,
        web_extractor: Optional[FirecrawlExtractor] = None,
        pdf_extractor: Optional[MistralOCRExtractor] = None,
    ) -> None:
        self.notes = note_service or NoteService()
        self.tasks = task_service or TaskService()
        self.web = web_extractor or FirecrawlExtractor()
        self.pdf = pdf_extractor or MistralOCRExtractor()

    async def web_scraper(self, args: UrlArgs, ctx: ToolContext) -> str:
        page = await self.web.scrape(str(args.url))
        return page.to_markdown()

    async def pdf_scraper(self, args: UrlArgs, ctx: ToolContext) -> str:
        document = await self.pdf.ocr(str(args.url))
        return document.to_markdown() or "No content extracted from the PDF."

    async def search_notes(self, args: SearchNotesArgs, ctx: ToolContext) -> Dict[str, Any]:
        results = self.notes.search_notes(
            ctx.user_id, args.query, limit=args.limit, team_id=ctx.team_id
        )
        return {"query": args.query, "count": len(results), "results": results}

    async def get_note_by_id(self, args: GetNoteArgs, ctx: ToolContext) -> Dict[str, Any]:
        note = self.notes.get_note(ctx.user_id, args.note_id, team_id=ctx.team_id)
        if note is None:
            raise LookupError(f"Note not found: {args.note_id}")
        return note

    async def list_notes(self, args: ListNotesArgs, ctx: ToolContext) -> Dict[str, Any]:
        notes = self.notes.list_notes(
            ctx.user_id, parent_id=args.parent_id, limit=args.limit, team_id=ctx.team_id
        )
        return {"count": len(notes), "notes": notes}

    async def get_recent_notes(self, args: RecentNotesArgs, ctx: ToolContext) -> Dict[str, Any]:
        notes = self.notes.get_recent_notes(ctx.user_id, limit=args.limit, team_id=ctx.team_id)
        return {"count": len(notes), "results": notes}

    async def get_note_hierarchy(
        self, args: NoteHierarchyArgs, ctx: ToolContext
    ) -> Dict[str, Any]:
        hierarchy = self.notes.get_note_hierarchy(ctx.user_id, args.note_id, team_id=ctx.team_id)
        if hierarchy is None:
            raise LookupError(f"Note not found: {args.note_id}")
        return hierarchy

    async def get_notes_by_tag(self, args: NotesByTagArgs, ctx: ToolContext) -> Dict[str, Any]:
        notes = self.notes.get_notes_by_tag(ctx.user_id, args.tag_name, team_id=ctx.team_id)
        return {"tag": args.tag_name, "count": len(notes), "results": notes}

    async def search_tasks(self, args: SearchTasksArgs, ctx: ToolContext) -> Dict[str, Any]:
        tasks = self.tasks.search_tasks(
            ctx.user_id,
            args.query,
            status=args.status,
            priority=args.priority,
            include_completed=args.include_completed,
            limit=args.limit,
            team_id=ctx.team_id,
        )
        return {"count": len(tasks), "tasks": tasks}

    def specs(self) -> List[ToolSpec]:
        return [
            ToolSpec(
                "web_scraper",
                "Scrape a web page and return its content as markdown with a "
                "title/description/language header.",
                UrlArgs,
                self.web_scraper,
            ),
            ToolSpec(
                "pdf_scraper",
                "Extract the text of a remote PDF document as markdown using OCR.",
                UrlArgs,
                self.pdf_scraper,
            ),
            ToolSpec(
                "search_notes",
                "Search the user's notes by title and content. Returns ids, titles and excerpts.",
                SearchNotesArgs,
                self.search_notes,
            ),
            ToolSpec(
                "get_note_by_id",
                "Fetch the full content and tags of one note by id.",
                GetNoteArgs,
                self.get_note_by_id,
            ),
            ToolSpec(
                "list_notes",
                "List the user's notes (ids and titles), optionally under a parent note.",
                ListNotesArgs,
                self.list_notes,
            ),
            ToolSpec(
                "get_recent_notes",
                "List the most recently updated notes with a short excerpt of each.",
                RecentNotesArgs,
                self.get_recent_notes,
            ),
            ToolSpec(
                "get_note_hierarchy",
                "Show where a note sits in the tree: its parent and its child notes.",
                NoteHierarchyArgs,
                self.get_note_hierarchy,
            ),
            ToolSpec(
                "get_notes_by_tag",
                "List notes carrying a given tag.",
                NotesByTagArgs,
                self.get_notes_by_tag,
            ),
            ToolSpec(
                "search_tasks",
                "Search tasks on the user's board by text, column, priority or completion.",
                SearchTasksArgs,
                self.search_tasks,
            ),
        ]


NOTE_SOURCE_TOOLS = {"search_notes", "get_note_by_id", "get_notes_by_tag", "get_recent_notes"}


def extract_sources(tool_name: str, result: str) -> List[SourceCitation]:
    """Derive note citations from a note tool's JSON result."""
    if tool_name not in NOTE_SOURCE_TOOLS:
        return []
    try:
        data = json.loads(result)
    except (TypeError, json.JSONDecodeError):
        return []
    if not isinstance(data, dict):
        return []

    if tool_name == "get_note_by_id":
        records = [data]
    else:
        records = data.get("results", [])[:5]
    return [
        SourceCitation(id=str(r["id"]), title=r.get("title") or "Untitled", type="note")
        for r in records
        if isinstance(r, dict) and r.get("id")
    ]


def create_tool_registry(
    tools: Optional[ChatTools] = None, timeout_seconds: Optional[float] = None
) -> ToolRegistry:
    registry = ToolRegistry(timeout_seconds=timeout_seconds)
    for spec in (tools or ChatTools()).specs():
        registry.register(spec)
    return registry


_tool_registry: Optional[ToolRegistry] = None


def get_tool_registry() -> ToolRegistry:
    """Get or create the tool registry singleton."""
    global _tool_registry
    if _tool_registry is None:
        _tool_registry = create_tool_registry()
    return _tool_registry


__all__ = [
    "ChatTools",
    "InvalidToolError",
    "ToolContext",
    "ToolOutcome",
    "ToolRegistry",
    "ToolSpec",
    "create_tool_registry",
    "extract_sources",
    "get_tool_registry",
]
