"""Session state and the operations a live session supports."""

import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from cuid2 import cuid_wrapper

from bazinga.errors import ProviderNotFoundError, ResourceError, SessionError
from bazinga.models.llm import Message, ModelInfo
from bazinga.models.memory import MemoryContent
from bazinga.models.project import Project
from bazinga.services import git, memory
from bazinga.services.project import ProjectDetector
from bazinga.utils.config import Config
from bazinga.utils.logging import get_logger

if TYPE_CHECKING:
    from bazinga.clients.manager import ProviderManager
    from bazinga.services.context import ContextManager
    from bazinga.services.permissions import PermissionManager
    from bazinga.services.storage import SessionStorage
    from bazinga.services.tool_queue import ToolQueue
    from bazinga.services.watcher import FileEvent, FileWatcher
    from bazinga.tools.registry import ToolsRegistry

logger = get_logger(__name__)

cuid = cuid_wrapper()


def generate_session_id() -> str:
    """Millisecond timestamp prefix keeps ids sortable by creation time."""
    return f"{time.time_ns() // 1_000_000:013d}-{cuid()}"


@dataclass
class CreateOptions:
    """Options for creating a new session."""

    name: str = ""
    root_path: str = ""
    tags: list[str] = field(default_factory=list)
    files: list[str] = field(default_factory=list)
    dry_run: bool = False
    no_auto_commit: bool = False
    auto_detect_files: bool = True
    provider: str = ""
    model: str = ""


@dataclass
class Session:
    """An active coding session.

    The persisted fields round-trip through ``as_dict``/``from_dict``. The runtime
    collaborators are wired by the session manager and never serialized.
    """

    id: str
    name: str
    root_path: str
    provider: str = ""
    model: str = ""
    files: list[str] = field(default_factory=list)
    history: list[Message] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    tags: list[str] = field(default_factory=list)
    dry_run: bool = False
    no_auto_commit: bool = False

    config: Config = field(default_factory=Config, repr=False, compare=False)
    provider_manager: "ProviderManager | None" = field(default=None, repr=False, compare=False)
    storage: "SessionStorage | None" = field(default=None, repr=False, compare=False)
    watcher: "FileWatcher | None" = field(default=None, repr=False, compare=False)
    memory_content: MemoryContent | None = field(default=None, repr=False, compare=False)
    project: Project | None = field(default=None, repr=False, compare=False)
    tools: "ToolsRegistry | None" = field(default=None, repr=False, compare=False)
    tool_queue: "ToolQueue | None" = field(default=None, repr=False, compare=False)
    permissions: "PermissionManager | None" = field(default=None, repr=False, compare=False)
    context_manager: "ContextManager | None" = field(default=None, repr=False, compare=False)

    def as_dict(self) -> dict[str, Any]:
        """Return the persisted fields as a JSON-ready dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "root_path": self.root_path,
            "provider": self.provider,
            "model": self.model,
            "files": list(self.files),
            "history": [message.model_dump(exclude_none=True) for message in self.history],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "tags": list(self.tags),
            "dry_run": self.dry_run,
            "no_auto_commit": self.no_auto_commit,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        """Rebuild the persisted fields; history entries that fail validation are skipped."""
        history = []
        for raw in data.get("history") or []:
            try:
                history.append(Message.model_validate(raw))
            except ValueError as e:
                logger.warning(f"Skipping invalid history message in session {data.get('id')}: {e}")

        now = datetime.now(UTC)
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            root_path=data.get("root_path", ""),
            provider=data.get("provider", ""),
            model=data.get("model", ""),
            files=list(data.get("files") or []),
            history=history,
            created_at=datetime.fromisoformat(data["created_at"]) if data.get("created_at") else now,
            updated_at=datetime.fromisoformat(data["updated_at"]) if data.get("updated_at") else now,
            tags=list(data.get("tags") or []),
            dry_run=bool(data.get("dry_run", False)),
            no_auto_commit=bool(data.get("no_auto_commit", False)),
        )

    def touch(self) -> None:
        self.updated_at = datetime.now(UTC)

    # Persistence

    def save(self) -> None:
        """Write the session to storage.

        Raises:
            SessionError: If there is no storage or the write fails
        """
        if self.storage is None:
            raise SessionError("session storage not available")
        self.touch()
        self.storage.save(self.as_dict())

    def save_quietly(self, reason: str) -> bool:
        """Save, logging rather than raising on failure. Used after implicit mutations."""
        try:
            self.save()
        except SessionError as e:
            logger.warning(f"Failed to auto-save session {self.id} after {reason}: {e}")
            return False
        return True

    def close(self) -> None:
        if self.storage is not None:
            try:
                self.save()
            except SessionError as e:
                logger.error(f"Failed to save session {self.id} on close: {e}")
        if self.watcher is not None:
            self.watcher.close()
        logger.info(f"Closed session {self.id}")

    # Files

    def resolve_path(self, file_path: str) -> str:
        path = Path(file_path).expanduser()
        if not path.is_absolute():
            path = Path(self.root_path) / path
        return str(path.resolve())

    def add_file(self, file_path: str) -> str:
        """Add a file to the session and watch it.

        Returns:
            The absolute path that was added

        Raises:
            SessionError: If the file is missing or already in the session
        """
        abs_path = self.resolve_path(file_path)
        if not Path(abs_path).exists():
            raise SessionError(f"file does not exist: {abs_path}")
        if abs_path in self.files:
            raise SessionError(f"file already in session: {abs_path}")

        self.files.append(abs_path)
        self.touch()
        if self.watcher is not None:
            self.watcher.add_file(abs_path)
        self.save_quietly("adding file")
        logger.debug(f"Added file {abs_path} to session {self.id}")
        return abs_path

    def remove_file(self, file_path: str) -> str:
        """Remove a file from the session and stop watching it.

        Raises:
            SessionError: If the file is not in the session
        """
        abs_path = self.resolve_path(file_path)
        if abs_path not in self.files:
            raise SessionError(f"file not in session: {abs_path}")

        self.files.remove(abs_path)
        self.touch()
        if self.watcher is not None:
            self.watcher.remove_file(abs_path)
        self.save_quietly("removing file")
        logger.debug(f"Removed file {abs_path} from session {self.id}")
        return abs_path

    def scan_for_more_files(self) -> int:
        """Rescan the project and add every relevant file not yet in the session.

        Raises:
            SessionError: If no project was detected or the rescan fails
        """
        if self.project is None:
            raise SessionError("no project detected")
        try:
            project = ProjectDetector().detect_project(self.root_path)
        except ResourceError as e:
            raise SessionError(f"failed to rescan project: {e}") from e

        added = 0
        for rel_path in project.files:
            full_path = str(Path(project.root) / rel_path)
            if full_path in self.files:
                continue
            try:
                self.add_file(full_path)
            except SessionError as e:
                logger.debug(f"Skipping {full_path}: {e}")
                continue
            added += 1

        self.project = project
        logger.info(f"Scanned project and added {added} new files")
        return added

    def poll_file_changes(self) -> list["FileEvent"]:
        """Session files created, modified or deleted on disk since the last poll."""
        if self.watcher is None:
            return []
        events = self.watcher.poll()
        for event in events:
            logger.info(f"Session file {event.operation}: {event.path}")
        return events

    # Provider and model

    def set_provider(self, name: str) -> None:
        """Switch the session's provider; unknown names leave the session unchanged.

        Raises:
            SessionError: If the name is empty or the provider is not registered
        """
        if not name:
            raise SessionError("provider name cannot be empty")
        if self.provider_manager is None:
            raise SessionError(f"provider not available: {name}")
        try:
            self.provider_manager.get_provider(name)
        except ProviderNotFoundError as e:
            raise SessionError(f"provider not available: {e}") from e

        self.provider = name
        self.touch()
        logger.debug(f"Session {self.id} provider changed to {name}")

    def set_model(self, model: str) -> None:
        self.model = model
        self.touch()
        logger.debug(f"Session {self.id} model changed to {model}")

    def list_available_providers(self) -> list[str]:
        return self.provider_manager.list_providers() if self.provider_manager else []

    def list_available_models(self) -> dict[str, list[ModelInfo]]:
        return self.provider_manager.get_available_models() if self.provider_manager else {}

    def is_terminator_mode(self) -> bool:
        return self.config.security.terminator

    # History

    def add_message(self, message: Message) -> None:
        self.history.append(message)
        self.touch()

    def add_system_message(self, text: str) -> None:
        self.add_message(Message(role="system", content=text))

    # Project and memory

    def get_project_summary(self) -> str:
        return self.project.get_summary() if self.project is not None else ""

    def reload_memory(self) -> MemoryContent:
        self.memory_content = memory.load_memory(self.root_path)
        return self.memory_content

    def create_memory_file(self, user: bool = False) -> Path:
        user_path, project_path = memory.get_memory_file_paths(self.root_path)
        target = user_path if user else project_path
        memory.create_memory_file(target, user)
        self.reload_memory()
        return target

    def add_quick_memory(self, note: str, user: bool = False) -> Path:
        target = memory.add_quick_memory(self.root_path, note, user)
        self.reload_memory()
        return target

    def get_memory_file_paths(self) -> tuple[Path, Path]:
        return memory.get_memory_file_paths(self.root_path)

    # Git

    async def _author(self) -> tuple[str, str]:
        return await git.resolve_author(self.root_path, self.config.git.author_name, self.config.git.author_email)

    async def commit_changes(self, message: str) -> str:
        """Commit every change with a fixed message; in dry-run mode only logs.

        Raises:
            GitCommandError: If the tree is clean or git fails
        """
        if self.dry_run:
            logger.info(f"Dry run: would commit changes in {self.root_path} with message: {message}")
            return "dry run: no commit created"
        name, email = await self._author()
        return await git.commit_all(self.root_path, message, name, email)

    async def commit_with_ai(self) -> str:
        """Commit every change with a message written by the session's provider.

        Raises:
            ProviderError: If no provider is available
            GitCommandError: If there is nothing to commit or git fails
        """
        if self.provider_manager is None:
            raise SessionError("provider manager not available")
        generator = git.CommitGenerator(self.provider_manager.get_provider(self.provider), self.model)
        if self.dry_run:
            message = await generator.generate_commit_message(self.root_path)
            logger.info(f"Dry run: would commit with message: {message}")
            return f"Dry run: would commit with message: {message}"
        name, email = await self._author()
        return await generator.commit_with_ai(self.root_path, name, email)

    async def get_branch_info(self) -> str:
        if not await git.is_git_repo(self.root_path):
            return "No git repository"
        return await git.get_branch_info(self.root_path)

    async def get_commit_history(self, limit: int = 10) -> str:
        if not await git.is_git_repo(self.root_path):
            return "No git repository"
        return await git.get_commit_history(self.root_path, limit)
