"""Tests for the polling file watcher."""

import os

from bazinga.services.watcher import FileWatcher


class TestFileWatcher:
    """Tests for FileWatcher."""

    def test_reports_create_modify_delete(self, tmp_path):
        """Test that each change is reported once."""
        path = tmp_path / "a.py"
        watcher = FileWatcher()
        watcher.add_file(str(path))

        assert watcher.poll() == []

        path.write_text("v1")
        assert [event.operation for event in watcher.poll()] == ["create"]
        assert watcher.poll() == []

        os.utime(path, (1_000_000, 1_000_000))
        events = watcher.poll()
        assert [(event.path, event.operation) for event in events] == [(str(path), "modify")]

        path.unlink()
        assert [event.operation for event in watcher.poll()] == ["delete"]

    def test_remove_and_close(self, tmp_path):
        """Test that removed files are forgotten and a closed watcher ignores additions."""
        watcher = FileWatcher()
        watcher.add_file(str(tmp_path / "a.py"))
        watcher.add_file(str(tmp_path / "b.py"))

        watcher.remove_file(str(tmp_path / "a.py"))
        assert watcher.watched_files() == [str(tmp_path / "b.py")]

        watcher.close()
        watcher.add_file(str(tmp_path / "c.py"))
        assert watcher.watched_files() == []
        assert not watcher.is_watching(str(tmp_path / "c.py"))
