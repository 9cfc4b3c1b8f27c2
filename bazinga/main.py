"""Interactive terminal chat for the coding assistant."""

import argparse
import asyncio
import difflib
import sys

from rich.console import Console, RenderableType
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.syntax import Syntax
from rich.text import Text

from bazinga import __version__
from bazinga.clients.manager import ProviderManager, build_provider_manager
from bazinga.errors import BazingaError
from bazinga.models.events import (
    ContentDelta,
    EventChannel,
    PermissionRequired,
    TaskGroupStarted,
    ToolCallCompleted,
    ToolCallStarted,
    TurnError,
)
from bazinga.models.session import CreateOptions, Session
from bazinga.services.orchestrator import StreamOrchestrator
from bazinga.services.permissions import RISK_ICONS
from bazinga.services.session_manager import SessionManager
from bazinga.services.todos import format_todo_list
from bazinga.tools.base import FileChange
from bazinga.utils.config import get_config_path, load_config
from bazinga.utils.logging import close_logging, get_logger, setup_logging

logger = get_logger(__name__)

HELP_TEXT = """
[bold]Available Commands:[/bold]
• /help - Show this help message
• /files - List files in the session
• /add <path> - Add a file to the session
• /remove <path> - Remove a file from the session
• /scan - Add project files not yet in the session
• /provider <name> - Switch provider
• /model <name> - Switch model
• /todos - Show the project todo list
• /init [user] - Create a project (or user) MEMORY.md from the template
• /memory - Show the memory file locations
• /memory <note> - Add a note to the project MEMORY.md
• /commit - Commit all changes with an AI-written message
• /commit <message> - Commit all changes with the given message
• /branch - Show the current branch and all branches
• /log [count] - Show recent commits
• /config - Show the active configuration
• /quit or /exit - Exit the chat

[bold]Permission prompts:[/bold]
• y - approve once
• n - deny
• a - approve and remember for this session
"""

RESULT_PREVIEW_LINES = 6
MAX_DIFF_LINES = 80


def _preview(text: str) -> str:
    lines = text.splitlines()
    if len(lines) <= RESULT_PREVIEW_LINES:
        return text
    return "\n".join(lines[:RESULT_PREVIEW_LINES] + [f"... ({len(lines) - RESULT_PREVIEW_LINES} more lines)"])


def render_file_change(change: FileChange) -> RenderableType:
    """Unified diff panel for a tool's file mutation."""
    if change.operation in ("move", "copy"):
        return Text(f"{change.operation}: {change.file_path}", style="dim")

    diff_lines = list(
        difflib.unified_diff(
            change.old_content.splitlines(),
            change.new_content.splitlines(),
            fromfile=f"a/{change.file_path}",
            tofile=f"b/{change.file_path}",
            lineterm="",
        )
    )
    if len(diff_lines) > MAX_DIFF_LINES:
        hidden = len(diff_lines) - MAX_DIFF_LINES
        diff_lines = diff_lines[:MAX_DIFF_LINES] + [f"... ({hidden} more diff lines)"]
    body = Syntax("\n".join(diff_lines), "diff") if diff_lines else Text("(no changes)", style="dim")
    return Panel(body, title=f"{change.operation}: {change.file_path}", border_style="cyan")


class ChatCLI:
    """Interactive chat interface bound to one session."""

    def __init__(self, session: Session, orchestrator: StreamOrchestrator, console: Console | None = None):
        self.session = session
        self.orchestrator = orchestrator
        self.console = console or Console()
        if session.tools is not None:
            session.tools.context.on_file_change = self.show_file_change

    def show_file_change(self, change: FileChange) -> None:
        self.console.print(render_file_change(change))

    def banner(self) -> str:
        lines = [
            f"[bold blue]bazinga {__version__}[/bold blue]",
            f"Session: {self.session.name} ({self.session.id})",
            f"Project: {self.session.root_path}",
            f"Provider: {self.session.provider or 'none'}  Model: {self.session.model or 'default'}",
        ]
        if self.session.is_terminator_mode():
            lines.append("[bold red]⚡ TERMINATOR MODE: tool calls run without asking[/bold red]")
        lines.append("Commands: /help, /files, /quit")
        return "\n".join(lines)

    def prompt_label(self) -> str:
        if self.session.is_terminator_mode():
            return "\n[bold red]⚡[/bold red] [bold cyan]You[/bold cyan]"
        return "\n[bold cyan]You[/bold cyan]"

    def report_file_changes(self) -> None:
        for event in self.session.poll_file_changes():
            self.console.print(f"[dim]↻ {event.path} changed on disk ({event.operation})[/dim]")

    async def start(self) -> None:
        """Run the chat loop until the user quits."""
        border_style = "red" if self.session.is_terminator_mode() else "blue"
        self.console.print(Panel.fit(self.banner(), border_style=border_style))

        while True:
            self.report_file_changes()
            user_input = (await asyncio.to_thread(Prompt.ask, self.prompt_label())).strip()
            if not user_input:
                continue
            if user_input.lower() in ("/quit", "/exit", "quit", "exit"):
                break
            if user_input.startswith("/"):
                await self._handle_command(user_input)
                continue

            channel = await self.orchestrator.process_message_stream(self.session, user_input)
            await self._render(channel)

    async def _render(self, channel: EventChannel) -> None:
        streaming = False
        async for event in channel:
            match event:
                case ContentDelta(text=text):
                    if not streaming:
                        self.console.print("\n[bold green]bazinga[/bold green]")
                        streaming = True
                    self.console.print(text, end="", markup=False, highlight=False)
                case TaskGroupStarted(task_name=task_name):
                    streaming = False
                    self.console.print(f"\n\n[bold magenta]▶ {task_name}[/bold magenta]")
                case ToolCallStarted():
                    streaming = False
                    self.console.print(f"\n[dim]⚙ {event.tool_name} {event.args}[/dim]")
                case ToolCallCompleted(state="complete"):
                    self.console.print(f"[green]✓ {event.tool_name}[/green]")
                    self.console.print(_preview(event.result), markup=False, style="dim")
                case ToolCallCompleted():
                    self.console.print(f"✗ {event.tool_name}: {event.error}", markup=False, style="red")
                case PermissionRequired():
                    streaming = False
                    await self._ask_permission(event)
                case TurnError(message=message):
                    self.console.print(f"\n[red]❌ {message}[/red]")
        self.console.print()

    async def _ask_permission(self, event: PermissionRequired) -> None:
        title = f"{RISK_ICONS.get(event.risk, '')} Permission required"
        if event.total_queued > 1:
            title += f" ({event.queue_position}/{event.total_queued})"
        self.console.print(Panel(event.prompt, title=title, border_style="yellow"))

        answer = await asyncio.to_thread(Prompt.ask, "Allow?", choices=["y", "n", "a"], default="n")
        queue = self.session.tool_queue
        try:
            if answer == "n":
                queue.deny_tool(event.tool_id)
            else:
                queue.approve_tool(event.tool_id, remember=answer == "a")
        except BazingaError as e:
            self.console.print(f"[yellow]Decision not applied: {e}[/yellow]")

    async def _handle_command(self, line: str) -> None:
        command, _, arg = line.partition(" ")
        arg = arg.strip()
        try:
            match command.lower():
                case "/help":
                    self.console.print(Panel(HELP_TEXT.strip(), title="[cyan]❓ Help[/cyan]", border_style="cyan"))
                case "/files":
                    files = "\n".join(f"• {path}" for path in self.session.files) or "No files in session"
                    self.console.print(Panel(files, title="Session Files", border_style="blue"))
                case "/add":
                    self.console.print(f"[green]Added {self.session.add_file(arg)}[/green]")
                case "/remove":
                    self.console.print(f"[yellow]Removed {self.session.remove_file(arg)}[/yellow]")
                case "/scan":
                    self.console.print(f"[green]Added {self.session.scan_for_more_files()} files[/green]")
                case "/provider":
                    self.session.set_provider(arg)
                    self.console.print(f"[green]Provider set to {arg}[/green]")
                case "/model":
                    self.session.set_model(arg)
                    self.console.print(f"[green]Model set to {arg}[/green]")
                case "/todos":
                    store = self.session.tools.context.todo_store
                    self.console.print(Markdown(format_todo_list(store.load()) if store else "Todo storage unavailable"))
                case "/init":
                    self._init_memory(user=arg.lower() == "user")
                case "/memory" if not arg:
                    user_path, project_path = self.session.get_memory_file_paths()
                    lines = [
                        f"User: {user_path}{'' if user_path.exists() else ' (not created)'}",
                        f"Project: {project_path}{'' if project_path.exists() else ' (not created)'}",
                    ]
                    self.console.print(Panel("\n".join(lines), title="Memory Files", border_style="blue"))
                case "/memory":
                    path = self.session.add_quick_memory(arg)
                    self.console.print(f"[green]Saved note to {path}[/green]")
                case "/commit" if arg:
                    self.console.print(await self.session.commit_changes(arg), markup=False)
                case "/commit":
                    self.console.print(await self.session.commit_with_ai(), markup=False)
                case "/branch":
                    self.console.print(await self.session.get_branch_info(), markup=False)
                case "/log":
                    limit = int(arg) if arg.isdigit() else 10
                    self.console.print(await self.session.get_commit_history(limit), markup=False)
                case "/config":
                    self.console.print(Panel(self._config_summary(), title="Configuration", border_style="blue"))
                case _:
                    self.console.print(f"[yellow]Unknown command {command}. Type /help for commands.[/yellow]")
        except BazingaError as e:
            self.console.print(f"[red]❌ {e}[/red]")

    def _init_memory(self, user: bool) -> None:
        user_path, project_path = self.session.get_memory_file_paths()
        target = user_path if user else project_path
        if target.exists():
            self.console.print(f"[yellow]Memory file already exists: {target}[/yellow]")
            return
        self.console.print(f"[green]Created {self.session.create_memory_file(user=user)}[/green]")

    def _config_summary(self) -> Text:
        config = self.session.config
        providers = config.providers
        enabled = [name for name, provider in providers if provider.enabled]
        lines = [
            f"Config file: {get_config_path()}",
            f"Default provider: {config.llm.default_provider}",
            f"Default model: {config.llm.default_model or '(provider default)'}",
            f"Enabled providers: {', '.join(enabled) or 'none'}",
            f"Max tokens: {config.llm.max_tokens}  Temperature: {config.llm.temperature}",
            f"Context window: {config.llm.context_window}",
            f"Terminator mode: {'on' if config.security.terminator else 'off'}",
            f"Log level: {config.logging.level}  Output: {config.logging.output}",
        ]
        return Text("\n".join(lines))


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="bazinga", description="Terminal AI coding assistant")
    parser.add_argument("--provider", default="", help="LLM provider to use")
    parser.add_argument("--model", default="", help="model to use")
    parser.add_argument("--session", default="", help="resume a saved session by id")
    parser.add_argument("--name", default="", help="name for a new session")
    parser.add_argument("--no-auto-files", action="store_true", help="do not preload project files")
    parser.add_argument("--dry-run", action="store_true", help="never create commits")
    parser.add_argument("files", nargs="*", help="files to add to a new session")
    return parser.parse_args(argv)


def open_session(args: argparse.Namespace, manager: SessionManager) -> Session:
    if args.session:
        session = manager.load_session(args.session)
        if args.provider:
            session.set_provider(args.provider)
        if args.model:
            session.set_model(args.model)
        return session
    return manager.create_session(
        CreateOptions(
            name=args.name,
            files=args.files,
            dry_run=args.dry_run,
            auto_detect_files=not args.no_auto_files,
            provider=args.provider,
            model=args.model,
        )
    )


async def run(args: argparse.Namespace) -> int:
    config = load_config()
    setup_logging(config.logging)
    provider_manager: ProviderManager = build_provider_manager(config)
    console = Console()

    if not provider_manager.list_providers():
        console.print("[red]❌ No LLM providers are enabled. Configure one in ~/.bazinga/config.yaml.[/red]")
        return 1

    session = None
    try:
        session = open_session(args, SessionManager(config, provider_manager))
        logger.info(f"Starting chat for session {session.id} in {session.root_path}")
        await ChatCLI(session, StreamOrchestrator(), console).start()
    except BazingaError as e:
        console.print(f"[red]❌ {e}[/red]")
        return 1
    finally:
        if session is not None:
            session.close()
        await provider_manager.close()
        console.print("\n[yellow]👋 Goodbye![/yellow]")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the chat CLI."""
    args = parse_args(argv)
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return 130
    finally:
        close_logging()


if __name__ == "__main__":
    sys.exit(main())
