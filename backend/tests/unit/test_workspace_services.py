"""Unit tests for the note, task and team services used by chat tools."""

import pytest

from backend.src.services.database import DatabaseService
from backend.src.services.notes import NoteService
from backend.src.services.tasks import TaskService
from backend.src.services.teams import TeamService


@pytest.fixture
def notes(db: DatabaseService) -> NoteService:
    return NoteService(db)


@pytest.fixture
def tasks(db: DatabaseService) -> TaskService:
    return TaskService(db)


@pytest.fixture
def teams(db: DatabaseService) -> TeamService:
    return TeamService(db)


class TestTeamService:
    def test_owner_is_enrolled(self, teams: TeamService) -> None:
        team = teams.create_team("alice", "Platform")

        assert teams.is_member(team["id"], "alice")
        assert not teams.is_member(team["id"], "bob")
        assert teams.list_teams("alice")[0]["role"] == "owner"

    def test_add_member_is_idempotent(self, teams: TeamService) -> None:
        team = teams.create_team("alice", "Platform")

        teams.add_member(team["id"], "bob")
        teams.add_member(team["id"], "bob")

        assert [t["id"] for t in teams.list_teams("bob")] == [team["id"]]
        assert teams.get_team(team["id"])["name"] == "Platform"
        assert teams.get_team("missing") is None


class TestNoteService:
    def test_create_and_get_with_tags(self, notes: NoteService) -> None:
        note = notes.create_note("alice", "Wifi", "password is hunter2", tags=["Home ", "network"])

        assert note["tags"] == ["home", "network"]
        assert notes.get_note("bob", note["id"]) is None

    def test_search_ranks_title_hits_first(self, notes: NoteService) -> None:
        body_hit = notes.create_note("alice", "Router setup", "the wifi channel is 6")
        title_hit = notes.create_note("alice", "Wifi", "see router")
        notes.create_note("bob", "Wifi", "bob's wifi")

        results = notes.search_notes("alice", "wifi")

        assert [r["id"] for r in results] == [title_hit["id"], body_hit["id"]]
        assert set(results[0]) == {"id", "title", "excerpt", "updated_at"}

    def test_search_excerpt_is_bounded(self, notes: NoteService) -> None:
        notes.create_note("alice", "Long", "x" * 500 + " needle " + "y" * 500)

        excerpt = notes.search_notes("alice", "needle")[0]["excerpt"]

        assert "needle" in excerpt
        assert excerpt.startswith("...") and excerpt.endswith("...")
        assert len(excerpt) <= 306

    def test_team_scope_is_separate(self, notes: NoteService, teams: TeamService) -> None:
        team = teams.create_team("alice", "Platform")
        shared = notes.create_note("bob", "Runbook", team_id=team["id"])
        notes.create_note("alice", "Private runbook")

        assert [n["id"] for n in notes.list_notes("alice", team_id=team["id"])] == [shared["id"]]
        assert len(notes.list_notes("alice")) == 1

    def test_list_children_and_tag_lookup(self, notes: NoteService) -> None:
        parent = notes.create_note("alice", "Projects")
        child = notes.create_note("alice", "Launch", parent_id=parent["id"], tags=["q3"])

        assert [n["id"] for n in notes.list_notes("alice", parent_id=parent["id"])] == [child["id"]]
        assert [n["id"] for n in notes.get_notes_by_tag("alice", "Q3")] == [child["id"]]

    def test_get_notes_by_ids_skips_unknown(self, notes: NoteService) -> None:
        first = notes.create_note("alice", "A")
        second = notes.create_note("alice", "B")

        found = notes.get_notes_by_ids("alice", [second["id"], "missing", first["id"]])

        assert [n["title"] for n in found] == ["B", "A"]

    def test_recent_notes_newest_first(self, notes: NoteService, db: DatabaseService) -> None:
        old = notes.create_note("alice", "Old", "from last year")
        new = notes.create_note("alice", "New", "y" * 400)
        notes.create_note("bob", "Not mine")
        conn = db.connect()
        try:
            conn.execute(
                "UPDATE notes SET updated_at = ? WHERE id = ?",
                ("2023-01-01T00:00:00+00:00", old["id"]),
            )
            conn.commit()
        finally:
            conn.close()

        recent = notes.get_recent_notes("alice")

        assert [n["id"] for n in recent] == [new["id"], old["id"]]
        assert recent[0]["excerpt"].endswith("...")
        assert [n["id"] for n in notes.get_recent_notes("alice", limit=1)] == [new["id"]]

    def test_recent_notes_limit_is_capped(self, notes: NoteService) -> None:
        for i in range(55):
            notes.create_note("alice", f"Note {i}")

        assert len(notes.get_recent_notes("alice", limit=500)) == 50

    def test_hierarchy_lists_parent_and_ordered_children(
        self, notes: NoteService, db: DatabaseService
    ) -> None:
        root = notes.create_note("alice", "Projects")
        launch = notes.create_note("alice", "Launch", parent_id=root["id"])
        second = notes.create_note("alice", "Budget", parent_id=launch["id"], order=2)
        first = notes.create_note("alice", "Timeline", parent_id=launch["id"], order=1)
        hidden = notes.create_note("alice", "Old draft", parent_id=launch["id"], order=0)
        conn = db.connect()
        try:
            conn.execute("UPDATE notes SET archived = 1 WHERE id = ?", (hidden["id"],))
            conn.commit()
        finally:
            conn.close()

        hierarchy = notes.get_note_hierarchy("alice", launch["id"])

        assert hierarchy["note"]["id"] == launch["id"]
        assert hierarchy["parent"] == {"id": root["id"], "title": "Projects"}
        assert [c["id"] for c in hierarchy["children"]] == [first["id"], second["id"]]
        assert notes.get_note_hierarchy("alice", root["id"])["parent"] is None

    def test_hierarchy_requires_access(self, notes: NoteService, teams: TeamService) -> None:
        team = teams.create_team("bob", "Ops")
        shared = notes.create_note("bob", "Ops root", team_id=team["id"])

        assert notes.get_note_hierarchy("alice", shared["id"]) is None
        assert notes.get_note_hierarchy("alice", "missing") is None
        visible = notes.get_note_hierarchy("bob", shared["id"], team_id=team["id"])
        assert visible["note"]["title"] == "Ops root"


class TestTaskService:
    def test_search_filters(self, tasks: TaskService, db: DatabaseService) -> None:
        doing = tasks.create_stage("alice", "In Progress")
        active = tasks.create_task("alice", "Write launch post", priority="high", status_id=doing)
        done = tasks.create_task("alice", "Book venue", notes="for the launch")
        conn = db.connect()
        try:
            conn.execute("UPDATE tasks SET is_completed = 1 WHERE id = ?", (done["id"],))
            conn.commit()
        finally:
            conn.close()

        assert active["status"] == "In Progress"
        assert active["is_completed"] is False
        assert {t["id"] for t in tasks.search_tasks("alice", "launch")} == {active["id"], done["id"]}
        assert [t["id"] for t in tasks.search_tasks("alice", status="in progress")] == [active["id"]]
        assert [t["id"] for t in tasks.search_tasks("alice", priority="high")] == [active["id"]]
        assert [t["id"] for t in tasks.search_tasks("alice", include_completed=False)] == [active["id"]]

    def test_tasks_are_scoped_to_creator(self, tasks: TaskService) -> None:
        tasks.create_task("alice", "Mine")

        assert tasks.search_tasks("bob") == []
