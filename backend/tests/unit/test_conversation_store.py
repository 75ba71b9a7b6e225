"""Unit tests for ConversationStore ordering, scoping and metadata handling."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from backend.src.models.chat import ContentMetadata, ToolCallMetadata, ToolResultMetadata
from backend.src.services.conversation_store import (
    ConversationNotFoundError,
    ConversationStore,
    auto_title,
)
from backend.src.services.database import DatabaseService
from backend.src.services.teams import TeamService


@pytest.fixture
def store(db: DatabaseService) -> ConversationStore:
    return ConversationStore(db)


@pytest.fixture
def teams(db: DatabaseService) -> TeamService:
    return TeamService(db)


def test_auto_title_truncates_and_collapses_whitespace() -> None:
    assert auto_title("  Plan   the\nlaunch ") == "Plan the launch"
    assert auto_title("x" * 60) == "x" * 50 + "..."
    assert auto_title("y" * 50) == "y" * 50


def test_append_assigns_gap_free_orders(store: ConversationStore) -> None:
    conversation = store.create_conversation("alice")

    user = store.append_message(conversation.id, "user", "hi")
    call = store.append_message(
        conversation.id,
        "assistant",
        "search_notes",
        message_type="tool_call",
        metadata={"tool_name": "search_notes", "tool_args": {"query": "wifi"}},
        parent_id=user.id,
    )
    result = store.append_message(
        conversation.id,
        "assistant",
        '{"count": 0}',
        message_type="tool_result",
        metadata={"tool_name": "search_notes", "tool_result": '{"count": 0}'},
        parent_id=user.id,
    )
    answer = store.append_message(conversation.id, "assistant", "Nothing found.")

    assert [m.order for m in (user, call, result, answer)] == [0, 1, 2, 3]
    detail = store.get_conversation(conversation.id, "alice")
    assert [m.order for m in detail.messages] == [0, 1, 2, 3]
    assert [m.message_type for m in detail.messages] == [
        "content",
        "tool_call",
        "tool_result",
        "content",
    ]


def test_orders_are_independent_per_conversation(store: ConversationStore) -> None:
    first = store.create_conversation("alice")
    second = store.create_conversation("alice")

    store.append_message(first.id, "user", "one")
    store.append_message(first.id, "assistant", "two")
    message = store.append_message(second.id, "user", "other")

    assert message.order == 0


def test_concurrent_appends_never_share_an_order(store: ConversationStore) -> None:
    conversation = store.create_conversation("alice")

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(
            pool.map(
                lambda i: store.append_message(conversation.id, "user", f"message {i}"),
                range(24),
            )
        )

    orders = [m.order for m in store.get_conversation(conversation.id, "alice").messages]
    assert orders == list(range(24))


def test_metadata_round_trips_as_typed_variants(store: ConversationStore) -> None:
    conversation = store.create_conversation("alice")
    store.append_message(
        conversation.id,
        "assistant",
        "answer",
        metadata={
            "model": "gpt-4o-mini",
            "sources": [{"id": "n1", "title": "Wifi"}],
        },
    )
    store.append_message(
        conversation.id,
        "assistant",
        "get_note_by_id",
        message_type="tool_call",
        metadata={"tool_name": "get_note_by_id", "tool_call_id": "call_1", "tool_args": {"note_id": "n1"}},
    )
    store.append_message(
        conversation.id,
        "assistant",
        '{"error": "boom"}',
        message_type="tool_result",
        metadata={"tool_name": "get_note_by_id", "tool_call_id": "call_1", "error": "boom"},
    )

    content, call, result = store.get_conversation(conversation.id, "alice").messages

    assert isinstance(content.metadata, ContentMetadata)
    assert content.metadata.sources[0].title == "Wifi"
    assert isinstance(call.metadata, ToolCallMetadata)
    assert call.metadata.tool_args == {"note_id": "n1"}
    assert isinstance(result.metadata, ToolResultMetadata)
    assert result.metadata.error == "boom"


def test_metadata_not_matching_message_type_is_rejected(store: ConversationStore) -> None:
    conversation = store.create_conversation("alice")

    with pytest.raises(ValueError):
        store.append_message(
            conversation.id,
            "assistant",
            "oops",
            message_type="tool_call",
            metadata={"model": "gpt-4o"},
        )
    with pytest.raises(ValueError):
        store.append_message(
            conversation.id, "assistant", "oops", metadata={"tool_name": "search_notes"}
        )

    assert store.get_conversation(conversation.id, "alice").messages == []


def test_get_conversation_enforces_access(store: ConversationStore) -> None:
    conversation = store.create_conversation("alice")

    with pytest.raises(ConversationNotFoundError):
        store.get_conversation(conversation.id, "bob")
    with pytest.raises(ConversationNotFoundError):
        store.get_header("missing", "alice")


def test_team_members_can_read_team_conversations(
    store: ConversationStore, teams: TeamService
) -> None:
    team = teams.create_team("alice", "Platform")
    teams.add_member(team["id"], "bob")
    conversation = store.create_conversation("alice", team_id=team["id"])

    assert store.get_header(conversation.id, "bob").team_id == team["id"]
    with pytest.raises(ConversationNotFoundError):
        store.get_header(conversation.id, "carol")


def test_list_separates_personal_and_team_scopes(
    store: ConversationStore, teams: TeamService
) -> None:
    team = teams.create_team("alice", "Platform")
    personal = store.create_conversation("alice", title="Personal")
    shared = store.create_conversation("alice", team_id=team["id"], title="Shared")
    store.create_conversation("bob", title="Bob's")

    personal_page = store.list_conversations("alice")
    team_page = store.list_conversations("alice", team_id=team["id"])

    assert [c.id for c in personal_page.conversations] == [personal.id]
    assert personal_page.total == 1
    assert [c.id for c in team_page.conversations] == [shared.id]


def test_list_includes_count_and_preview_of_last_content(store: ConversationStore) -> None:
    conversation = store.create_conversation("alice")
    store.append_message(conversation.id, "user", "question")
    store.append_message(conversation.id, "assistant", "a" * 150)
    store.append_message(
        conversation.id,
        "assistant",
        "search_notes",
        message_type="tool_call",
        metadata={"tool_name": "search_notes"},
    )

    summary = store.list_conversations("alice").conversations[0]

    assert summary.message_count == 3
    assert summary.last_message_preview == "a" * 100 + "..."


def test_list_orders_by_recent_activity_and_paginates(store: ConversationStore) -> None:
    older = store.create_conversation("alice", title="older")
    newer = store.create_conversation("alice", title="newer")
    store.append_message(older.id, "user", "bump")

    page = store.list_conversations("alice", limit=1)
    rest = store.list_conversations("alice", limit=1, offset=1)

    assert page.total == 2
    assert page.conversations[0].id == older.id
    assert rest.conversations[0].id == newer.id


def test_get_messages_paginates(store: ConversationStore) -> None:
    conversation = store.create_conversation("alice")
    for i in range(5):
        store.append_message(conversation.id, "user", f"m{i}")

    page = store.get_messages(conversation.id, "alice", limit=2, offset=2)

    assert [m.content for m in page.messages] == ["m2", "m3"]
    assert page.total == 5
    assert page.has_more is True
    last = store.get_messages(conversation.id, "alice", limit=2, offset=4)
    assert last.has_more is False


def test_get_history_returns_latest_messages_ascending(store: ConversationStore) -> None:
    conversation = store.create_conversation("alice")
    for i in range(6):
        store.append_message(conversation.id, "user", f"m{i}")

    history = store.get_history(conversation.id, limit=3)

    assert [m.content for m in history] == ["m3", "m4", "m5"]


def test_update_title(store: ConversationStore) -> None:
    conversation = store.create_conversation("alice")

    store.update_title(conversation.id, "Renamed")

    assert store.get_header(conversation.id, "alice").title == "Renamed"


def test_delete_cascades_to_messages(store: ConversationStore, db: DatabaseService) -> None:
    conversation = store.create_conversation("alice")
    store.append_message(conversation.id, "user", "hi")

    assert store.delete_conversation(conversation.id, "bob") is False
    assert store.delete_conversation(conversation.id, "alice") is True

    conn = db.connect()
    try:
        remaining = conn.execute(
            "SELECT COUNT(*) FROM messages WHERE conversation_id = ?", (conversation.id,)
        ).fetchone()[0]
    finally:
        conn.close()
    assert remaining == 0
    with pytest.raises(ConversationNotFoundError):
        store.get_header(conversation.id, "alice")
