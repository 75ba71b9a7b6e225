"""Unit tests for ToolRegistry dispatch and the chat tool handlers."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import BaseModel

from backend.src.services.content_extraction import ExtractionError, OCRDocument, ScrapedPage
from backend.src.services.tool_registry import (
    ChatTools,
    InvalidToolError,
    SearchNotesArgs,
    ToolContext,
    ToolOutcome,
    ToolRegistry,
    ToolSpec,
    create_tool_registry,
    extract_sources,
)

CTX = ToolContext(user_id="alice")


class EchoArgs(BaseModel):
    text: str


@pytest.fixture
def registry() -> ToolRegistry:
    registry = ToolRegistry(timeout_seconds=0.2)

    async def echo(args: EchoArgs, ctx: ToolContext):
        return {"echo": args.text, "user": ctx.user_id}

    async def plain(args: EchoArgs, ctx: ToolContext):
        return args.text.upper()

    async def slow(args: EchoArgs, ctx: ToolContext):
        await asyncio.sleep(5)

    async def broken(args: EchoArgs, ctx: ToolContext):
        raise RuntimeError("disk on fire")

    for name, handler in [("echo", echo), ("plain", plain), ("slow", slow), ("broken", broken)]:
        registry.register(ToolSpec(name, f"{name} tool", EchoArgs, handler))
    return registry


@pytest.fixture
def mock_services():
    notes = MagicMock()
    tasks = MagicMock()
    web = MagicMock()
    web.scrape = AsyncMock()
    pdf = MagicMock()
    pdf.ocr = AsyncMock()
    return {
        "note_service": notes,
        "task_service": tasks,
        "web_extractor": web,
        "pdf_extractor": pdf,
    }


@pytest.fixture
def chat_registry(mock_services) -> ToolRegistry:
    return create_tool_registry(ChatTools(**mock_services), timeout_seconds=1)


class TestToolRegistryInvoke:
    @pytest.mark.asyncio
    async def test_dict_results_are_serialized_as_json(self, registry: ToolRegistry) -> None:
        outcome = await registry.invoke("echo", {"text": "hi"}, CTX)

        assert outcome.ok
        assert json.loads(outcome.result) == {"echo": "hi", "user": "alice"}

    @pytest.mark.asyncio
    async def test_string_results_pass_through(self, registry: ToolRegistry) -> None:
        outcome = await registry.invoke("plain", {"text": "hi"}, CTX)

        assert outcome.result == "HI"
        assert outcome.as_model_content() == "HI"

    @pytest.mark.asyncio
    async def test_unknown_tool_raises(self, registry: ToolRegistry) -> None:
        with pytest.raises(InvalidToolError, match="Unknown tool: nope"):
            await registry.invoke("nope", {}, CTX)

    @pytest.mark.asyncio
    async def test_invalid_arguments_become_error_outcome(self, registry: ToolRegistry) -> None:
        outcome = await registry.invoke("echo", {"wrong": 1}, CTX)

        assert not outcome.ok
        assert outcome.error.startswith("Invalid arguments: text:")

    @pytest.mark.asyncio
    async def test_timeout_becomes_error_outcome(self, registry: ToolRegistry) -> None:
        outcome = await registry.invoke("slow", {"text": "x"}, CTX)

        assert outcome.error == "Tool timed out after 0.2 seconds"

    @pytest.mark.asyncio
    async def test_handler_exception_becomes_error_outcome(self, registry: ToolRegistry) -> None:
        outcome = await registry.invoke("broken", {"text": "x"}, CTX)

        assert outcome.error == "Tool execution failed: disk on fire"
        assert json.loads(outcome.as_model_content()) == {"error": "Tool execution failed: disk on fire"}


class TestToolRegistrySchemas:
    def test_duplicate_registration_rejected(self, registry: ToolRegistry) -> None:
        spec = ToolSpec("echo", "again", EchoArgs, AsyncMock())

        with pytest.raises(ValueError):
            registry.register(spec)

    def test_chat_tools_are_registered(self, chat_registry: ToolRegistry) -> None:
        assert chat_registry.names() == [
            "web_scraper",
            "pdf_scraper",
            "search_notes",
            "get_note_by_id",
            "list_notes",
            "get_recent_notes",
            "get_note_hierarchy",
            "get_notes_by_tag",
            "search_tasks",
        ]
        assert "search_notes" in chat_registry
        assert "vault_read" not in chat_registry

    def test_schemas_are_openai_functions(self, chat_registry: ToolRegistry) -> None:
        schemas = {s["function"]["name"]: s for s in chat_registry.get_tool_schemas()}

        search = schemas["search_notes"]
        assert search["type"] == "function"
        params = search["function"]["parameters"]
        assert params["type"] == "object"
        assert params["required"] == ["query"]
        assert "title" not in params
        assert schemas["web_scraper"]["function"]["parameters"]["properties"]["url"]["format"] == "uri"


class TestChatTools:
    @pytest.mark.asyncio
    async def test_search_notes_passes_scope(self, chat_registry, mock_services) -> None:
        mock_services["note_service"].search_notes.return_value = [
            {"id": "n1", "title": "Wifi", "excerpt": "password", "updated_at": "2024"}
        ]

        outcome = await chat_registry.invoke(
            "search_notes", {"query": "wifi"}, ToolContext("alice", "team-1")
        )

        mock_services["note_service"].search_notes.assert_called_once_with(
            "alice", "wifi", limit=10, team_id="team-1"
        )
        assert json.loads(outcome.result)["count"] == 1

    @pytest.mark.asyncio
    async def test_get_note_missing_is_error(self, chat_registry, mock_services) -> None:
        mock_services["note_service"].get_note.return_value = None

        outcome = await chat_registry.invoke("get_note_by_id", {"note_id": "n9"}, CTX)

        assert outcome.error == "Tool execution failed: Note not found: n9"

    @pytest.mark.asyncio
    async def test_get_recent_notes_passes_scope(self, chat_registry, mock_services) -> None:
        mock_services["note_service"].get_recent_notes.return_value = [
            {"id": "n2", "title": "Standup", "excerpt": "notes", "updated_at": "2024-05-02"}
        ]

        outcome = await chat_registry.invoke(
            "get_recent_notes", {"limit": 3}, ToolContext("alice", "team-1")
        )

        mock_services["note_service"].get_recent_notes.assert_called_once_with(
            "alice", limit=3, team_id="team-1"
        )
        assert json.loads(outcome.result)["results"][0]["id"] == "n2"

    @pytest.mark.asyncio
    async def test_get_recent_notes_limit_is_capped(self, chat_registry, mock_services) -> None:
        outcome = await chat_registry.invoke("get_recent_notes", {"limit": 51}, CTX)

        assert outcome.error.startswith("Invalid arguments: limit:")
        mock_services["note_service"].get_recent_notes.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_note_hierarchy(self, chat_registry, mock_services) -> None:
        hierarchy = {
            "note": {"id": "n2", "title": "Child", "updated_at": "2024"},
            "parent": {"id": "n1", "title": "Root"},
            "children": [],
        }
        mock_services["note_service"].get_note_hierarchy.return_value = hierarchy

        outcome = await chat_registry.invoke("get_note_hierarchy", {"note_id": "n2"}, CTX)

        mock_services["note_service"].get_note_hierarchy.assert_called_once_with(
            "alice", "n2", team_id=None
        )
        assert json.loads(outcome.result) == hierarchy

    @pytest.mark.asyncio
    async def test_get_note_hierarchy_missing_is_error(self, chat_registry, mock_services) -> None:
        mock_services["note_service"].get_note_hierarchy.return_value = None

        outcome = await chat_registry.invoke("get_note_hierarchy", {"note_id": "n9"}, CTX)

        assert outcome.error == "Tool execution failed: Note not found: n9"

    @pytest.mark.asyncio
    async def test_search_tasks_rejects_unknown_priority(self, chat_registry) -> None:
        outcome = await chat_registry.invoke("search_tasks", {"priority": "urgent"}, CTX)

        assert outcome.error.startswith("Invalid arguments: priority:")

    @pytest.mark.asyncio
    async def test_search_tasks_forwards_filters(self, chat_registry, mock_services) -> None:
        mock_services["task_service"].search_tasks.return_value = []

        outcome = await chat_registry.invoke(
            "search_tasks", {"status": "Done", "include_completed": False}, CTX
        )

        mock_services["task_service"].search_tasks.assert_called_once_with(
            "alice",
            None,
            status="Done",
            priority=None,
            include_completed=False,
            limit=20,
            team_id=None,
        )
        assert json.loads(outcome.result) == {"count": 0, "tasks": []}

    @pytest.mark.asyncio
    async def test_web_scraper_renders_header(self, chat_registry, mock_services) -> None:
        mock_services["web_extractor"].scrape.return_value = ScrapedPage(
            markdown="Body", title="Example", url="https://example.com"
        )

        outcome = await chat_registry.invoke("web_scraper", {"url": "https://example.com"}, CTX)

        assert "# Title: Example" in outcome.result
        assert "## Language: N/A" in outcome.result
        assert outcome.result.endswith("Body")

    @pytest.mark.asyncio
    async def test_web_scraper_rejects_non_url(self, chat_registry, mock_services) -> None:
        outcome = await chat_registry.invoke("web_scraper", {"url": "not a url"}, CTX)

        assert outcome.error.startswith("Invalid arguments: url:")
        mock_services["web_extractor"].scrape.assert_not_called()

    @pytest.mark.asyncio
    async def test_web_scraper_extraction_failure(self, chat_registry, mock_services) -> None:
        mock_services["web_extractor"].scrape.side_effect = ExtractionError("Scraping API error: 402")

        outcome = await chat_registry.invoke("web_scraper", {"url": "https://example.com"}, CTX)

        assert outcome.error == "Tool execution failed: Scraping API error: 402"

    @pytest.mark.asyncio
    async def test_pdf_scraper_empty_document(self, chat_registry, mock_services) -> None:
        mock_services["pdf_extractor"].ocr.return_value = OCRDocument(pages=[])

        outcome = await chat_registry.invoke("pdf_scraper", {"url": "https://example.com/a.pdf"}, CTX)

        assert outcome.result == "No content extracted from the PDF."


class TestExtractSources:
    def test_search_results_capped_at_five(self) -> None:
        results = [{"id": f"n{i}", "title": f"Note {i}"} for i in range(8)]

        sources = extract_sources("search_notes", json.dumps({"results": results}))

        assert [s.id for s in sources] == ["n0", "n1", "n2", "n3", "n4"]
        assert all(s.type == "note" for s in sources)

    def test_single_note(self) -> None:
        sources = extract_sources("get_note_by_id", json.dumps({"id": "n1", "title": ""}))

        assert sources[0].title == "Untitled"

    def test_recent_notes_are_cited(self) -> None:
        payload = {"count": 1, "results": [{"id": "n3", "title": "Retro"}]}

        sources = extract_sources("get_recent_notes", json.dumps(payload))

        assert [(s.id, s.title) for s in sources] == [("n3", "Retro")]

    def test_other_tools_and_bad_json_yield_nothing(self) -> None:
        assert extract_sources("search_tasks", json.dumps({"results": [{"id": "t1"}]})) == []
        assert extract_sources("search_notes", "not json") == []


def test_outcome_defaults() -> None:
    assert ToolOutcome(result=None).as_model_content() == ""
    assert SearchNotesArgs(query="x").limit == 10
