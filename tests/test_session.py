"""Tests for session state, persistence and the session manager."""

import os
from datetime import UTC, datetime, timedelta

import pytest
from conftest import ScriptedProvider

from bazinga.errors import SessionError
from bazinga.models.llm import Message
from bazinga.models.session import Session, generate_session_id
from bazinga.services.session_manager import SessionManager
from bazinga.services.storage import MAX_PERSISTED_MESSAGES, SessionStorage, truncate_history


@pytest.fixture
def storage(tmp_path):
    return SessionStorage(tmp_path / "sessions")


class TestSessionStorage:
    """Tests for SessionStorage."""

    def test_truncate_history_keeps_newest(self):
        """Test that at most 50 messages are persisted, newest last."""
        history = [{"role": "user", "content": str(i)} for i in range(80)]

        kept = truncate_history(history)

        assert len(kept) == MAX_PERSISTED_MESSAGES
        assert kept[-1]["content"] == "79"

    def test_truncate_history_sheds_large_payloads(self):
        """Test that oversized histories shrink but keep a floor of ten messages."""
        history = [{"role": "user", "content": "x" * 20_000} for _ in range(20)]

        assert len(truncate_history(history)) == 10

    def test_load_missing(self, storage):
        """Test that unknown ids raise."""
        with pytest.raises(SessionError, match="session not found: nope"):
            storage.load("nope")

    def test_list_skips_unreadable(self, storage):
        """Test that corrupt documents are skipped."""
        storage.save({"id": "good", "history": []})
        (storage.base_dir / "bad.json").write_text("{broken")

        assert [doc["id"] for doc in storage.list_sessions()] == ["good"]

    def test_cleanup_old_sessions(self, storage):
        """Test that only sessions past the retention window are removed."""
        old = (datetime.now(UTC) - timedelta(days=40)).isoformat()
        fresh = datetime.now(UTC).isoformat()
        storage.save({"id": "old", "updated_at": old, "history": []})
        storage.save({"id": "fresh", "updated_at": fresh, "history": []})

        assert storage.cleanup_old_sessions(days=30) == 1
        assert [doc["id"] for doc in storage.list_sessions()] == ["fresh"]

    def test_delete_missing(self, storage):
        """Test that deleting an unknown session raises."""
        with pytest.raises(SessionError):
            storage.delete("ghost")


class TestSession:
    """Tests for Session state operations."""

    def test_generated_ids_sort_by_creation(self):
        """Test the timestamp prefix of session ids."""
        first, second = generate_session_id(), generate_session_id()

        assert first.split("-")[0] <= second.split("-")[0]
        assert len(first.split("-")[0]) == 13
        assert first != second

    def test_add_file_twice_fails(self, make_session, project_dir):
        """Test that adding the same file twice adds it once."""
        session = make_session(ScriptedProvider())
        (project_dir / "a.py").write_text("")

        added = session.add_file("a.py")

        assert added == str((project_dir / "a.py").resolve())
        assert session.watcher.is_watching(added)
        with pytest.raises(SessionError, match="file already in session"):
            session.add_file(str(project_dir / "a.py"))
        assert session.files == [added]

    def test_add_missing_file(self, make_session):
        """Test that nonexistent files are rejected."""
        session = make_session(ScriptedProvider())

        with pytest.raises(SessionError, match="file does not exist"):
            session.add_file("ghost.py")

    def test_remove_file(self, make_session, project_dir):
        """Test that removal unwatches and a second removal fails."""
        session = make_session(ScriptedProvider())
        (project_dir / "a.py").write_text("")
        added = session.add_file("a.py")

        session.remove_file("a.py")

        assert session.files == []
        assert not session.watcher.is_watching(added)
        with pytest.raises(SessionError, match="file not in session"):
            session.remove_file("a.py")

    def test_poll_file_changes(self, make_session, project_dir):
        """Test that edits to session files on disk are reported once."""
        session = make_session(ScriptedProvider())
        target = project_dir / "a.py"
        target.write_text("v1")
        added = session.add_file("a.py")

        assert session.poll_file_changes() == []

        os.utime(target, (1_000_000, 1_000_000))
        events = session.poll_file_changes()

        assert [(event.path, event.operation) for event in events] == [(added, "modify")]
        assert session.poll_file_changes() == []

    def test_set_provider(self, make_session):
        """Test that switching to an unknown provider leaves the session unchanged."""
        session = make_session(ScriptedProvider(name="one"), ScriptedProvider(name="two"))

        session.set_provider("two")
        assert session.provider == "two"

        with pytest.raises(SessionError, match="provider not available"):
            session.set_provider("three")
        with pytest.raises(SessionError, match="provider name cannot be empty"):
            session.set_provider("")
        assert session.provider == "two"
        assert session.list_available_providers() == ["one", "two"]

    def test_scan_for_more_files(self, make_session, project_dir):
        """Test that a rescan adds new relevant files once."""
        session = make_session(ScriptedProvider())
        for name in ("README.md", "notes.txt", "logo.png"):
            (project_dir / name).write_text("x")

        assert session.scan_for_more_files() == 2
        assert sorted(os.path.basename(path) for path in session.files) == ["README.md", "notes.txt"]
        assert session.scan_for_more_files() == 0

    def test_model_and_mode(self, make_session):
        """Test model switching and the terminator flag."""
        session = make_session(ScriptedProvider(), terminator=True)

        session.set_model("bigger-model")

        assert session.model == "bigger-model"
        assert session.is_terminator_mode()
        assert [model.id for model in session.list_available_models()["fake"]] == ["fake-model"]

    def test_quick_memory_reloads(self, make_session):
        """Test that a quick note is visible in the session memory right away."""
        session = make_session(ScriptedProvider())

        target = session.add_quick_memory("Always run make lint.")

        assert target.name == "MEMORY.md"
        assert "Always run make lint." in session.memory_content.project_memory

    def test_invalid_history_entries_skipped(self):
        """Test that from_dict drops history entries that fail validation."""
        session = Session.from_dict(
            {
                "id": "s1",
                "name": "demo",
                "root_path": "/work",
                "history": [{"role": "user", "content": "ok"}, {"role": "robot", "content": "bad"}],
            }
        )

        assert session.history == [Message(role="user", content="ok")]

    def test_save_without_storage(self, tmp_path):
        """Test that saving an unwired session fails and the quiet variant reports it."""
        session = Session(id="s1", name="demo", root_path=str(tmp_path))

        with pytest.raises(SessionError, match="session storage not available"):
            session.save()
        assert session.save_quietly("test") is False

    @pytest.mark.asyncio
    async def test_dry_run_commit(self, make_session):
        """Test that dry-run sessions never commit."""
        session = make_session(ScriptedProvider(), dry_run=True)

        assert await session.commit_changes("chore: nothing") == "dry run: no commit created"

    @pytest.mark.asyncio
    async def test_git_info_outside_repository(self, make_session, tmp_path, monkeypatch):
        """Test the message shown when the root is not a repository."""
        monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path))
        session = make_session(ScriptedProvider())

        assert await session.get_branch_info() == "No git repository"
        assert await session.get_commit_history() == "No git repository"


class TestSessionManager:
    """Tests for creating, saving and restoring sessions."""

    def test_round_trip(self, make_session, project_dir):
        """Test that a saved session reloads with the same observable fields."""
        for name in ("f1.py", "f2.py"):
            (project_dir / name).write_text("")
        session = make_session(ScriptedProvider(), name="S", files=["f1.py", "f2.py"], tags=["demo"])
        for i in range(60):
            session.add_message(Message(role="user" if i % 2 == 0 else "assistant", content=f"m{i}"))
        session.save()

        manager = _manager_for(session)
        loaded = manager.load_session(session.id)

        assert loaded.name == "S"
        assert loaded.files == session.files
        assert loaded.files == [str((project_dir / "f1.py").resolve()), str((project_dir / "f2.py").resolve())]
        assert (loaded.id, loaded.root_path, loaded.provider, loaded.model, loaded.tags) == (
            session.id, session.root_path, session.provider, session.model, session.tags,
        )  # fmt: skip
        assert len(loaded.history) == 50
        assert loaded.history[-1] == session.history[-1]
        assert all(loaded.watcher.is_watching(path) for path in loaded.files)

    def test_default_name_and_provider(self, make_session):
        """Test the defaults for a new session."""
        session = make_session(ScriptedProvider(name="first"), ScriptedProvider(name="second"))

        assert session.name == f"session-{session.id}"
        assert session.provider == "first"
        assert session.model == "fake-model"
        assert session.context_manager is not None
        assert session.tools.has_tool("read_file")

    def test_explicit_file_must_exist(self, make_session):
        """Test that creation fails when a requested file is missing."""
        with pytest.raises(SessionError, match="file does not exist"):
            make_session(ScriptedProvider(), files=["missing.py"])

    def test_auto_detected_files(self, make_session, project_dir):
        """Test that project files are preloaded when auto detection is on."""
        (project_dir / "go.mod").write_text("module demo\n")
        (project_dir / "main.go").write_text("package main\n")
        (project_dir / "main_test.go").write_text("package main\n")

        session = make_session(ScriptedProvider(), auto_detect_files=True)

        names = [os.path.basename(path) for path in session.files]
        assert names == ["go.mod", "main.go"]
        assert "Project: project (go)" in session.get_project_summary()

    def test_load_replaces_missing_provider(self, make_session):
        """Test that a session saved with a provider that is no longer registered falls back."""
        session = make_session(ScriptedProvider())
        session.provider = "retired"
        session.save()

        loaded = _manager_for(session).load_session(session.id)

        assert loaded.provider == "fake"

    def test_find_and_delete(self, make_session, project_dir):
        """Test lookup by root path and deletion."""
        session = make_session(ScriptedProvider())
        manager = _manager_for(session)

        assert [doc["id"] for doc in manager.find_sessions_by_root_path(str(project_dir))] == [session.id]

        manager.delete_session(session.id)
        assert manager.list_saved_sessions() == []


def _manager_for(session: Session) -> SessionManager:
    return SessionManager(session.config, session.provider_manager, session.storage)
