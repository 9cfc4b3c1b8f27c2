"""Tests for the interactive chat commands and rendering."""

import io
import os

import pytest
from conftest import ScriptedProvider
from rich.console import Console

from bazinga.main import ChatCLI, render_file_change
from bazinga.services.orchestrator import StreamOrchestrator
from bazinga.tools.base import FileChange


@pytest.fixture
def console():
    return Console(file=io.StringIO(), width=200, color_system=None)


@pytest.fixture
def make_cli(make_session, console):
    def factory(*providers, **options):
        session = make_session(*(providers or (ScriptedProvider(),)), **options)
        return ChatCLI(session, StreamOrchestrator(), console)

    return factory


def _output(console: Console) -> str:
    return console.file.getvalue()


class TestFileChangeDisplay:
    """Tests for diffs of tool file mutations."""

    def test_render_unified_diff(self, console):
        """Test that an edit renders as a unified diff."""
        console.print(render_file_change(FileChange("app.py", "edit", "a = 1\nb = 2\n", "a = 1\nb = 3\n")))

        output = _output(console)
        assert "edit: app.py" in output
        assert "-b = 2" in output
        assert "+b = 3" in output

    def test_cli_receives_tool_changes(self, make_cli, console):
        """Test that the chat registers itself for file changes made by tools."""
        cli = make_cli()

        assert cli.session.tools.context.on_file_change == cli.show_file_change
        cli.session.tools.context.notify(FileChange("notes.txt", "create", "", "hello\n"))

        assert "+hello" in _output(console)


class TestCommands:
    """Tests for slash commands."""

    @pytest.mark.asyncio
    async def test_commit_with_message(self, make_cli, console):
        """Test that /commit with text commits with that message instead of asking the model."""
        cli = make_cli(dry_run=True)

        await cli._handle_command("/commit fix: typo")

        assert "dry run: no commit created" in _output(console)

    @pytest.mark.asyncio
    async def test_init_creates_project_memory_once(self, make_cli, console, project_dir):
        """Test that /init writes the project template and refuses to overwrite it."""
        cli = make_cli()

        await cli._handle_command("/init")
        await cli._handle_command("/init")

        assert (project_dir / "MEMORY.md").exists()
        assert "Memory file already exists" in _output(console)

    @pytest.mark.asyncio
    async def test_memory_without_note_lists_paths(self, make_cli, console):
        """Test that /memory alone shows where memory files live."""
        cli = make_cli()

        await cli._handle_command("/memory")

        output = _output(console)
        assert "Memory Files" in output
        assert "MEMORY.md" in output
        assert "(not created)" in output

    @pytest.mark.asyncio
    async def test_branch_and_log_outside_repository(self, make_cli, console, tmp_path, monkeypatch):
        """Test the git info commands in a directory that is not a repository."""
        monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path))
        cli = make_cli()

        await cli._handle_command("/branch")
        await cli._handle_command("/log 5")

        assert _output(console).count("No git repository") == 2

    @pytest.mark.asyncio
    async def test_config_summary(self, make_cli, console, bazinga_home):
        """Test that /config shows the config file and active settings."""
        cli = make_cli()

        await cli._handle_command("/config")

        output = _output(console)
        assert "config.yaml" in output
        assert "Terminator mode: off" in output


class TestStatusDisplay:
    """Tests for the banner, prompt and file change notices."""

    def test_terminator_mode_is_visible(self, make_cli):
        """Test that terminator mode is flagged in the banner and the prompt."""
        cli = make_cli(terminator=True)

        assert "TERMINATOR MODE" in cli.banner()
        assert "⚡" in cli.prompt_label()

    def test_normal_mode_has_no_indicator(self, make_cli):
        """Test that the indicator is absent by default."""
        cli = make_cli()

        assert "TERMINATOR" not in cli.banner()
        assert "⚡" not in cli.prompt_label()

    def test_reports_files_changed_on_disk(self, make_cli, console, project_dir):
        """Test that external edits to session files are announced before the prompt."""
        cli = make_cli()
        target = project_dir / "a.py"
        target.write_text("v1")
        cli.session.add_file("a.py")

        os.utime(target, (1_000_000, 1_000_000))
        cli.report_file_changes()

        assert "a.py changed on disk (modify)" in _output(console)
