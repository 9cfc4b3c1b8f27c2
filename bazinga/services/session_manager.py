"""Session creation, restoration and persistence."""

import os
from pathlib import Path
from typing import Any

from bazinga.clients.manager import ProviderManager
from bazinga.errors import ProviderNotFoundError, ResourceError, SessionError
from bazinga.models.session import CreateOptions, Session, generate_session_id
from bazinga.services.context import ContextManager
from bazinga.services.memory import load_memory
from bazinga.services.permissions import PermissionManager
from bazinga.services.project import ProjectDetector, select_session_files
from bazinga.services.storage import SessionStorage
from bazinga.services.todos import TodoStore, todo_file_for
from bazinga.services.tool_queue import ToolQueue
from bazinga.services.watcher import FileWatcher
from bazinga.tools.base import ToolContext
from bazinga.tools.registry import ToolsRegistry
from bazinga.utils.config import Config, get_config_dir
from bazinga.utils.logging import get_logger

logger = get_logger(__name__)


class SessionManager:
    """Creates and restores sessions and wires their per-session collaborators."""

    def __init__(self, config: Config, provider_manager: ProviderManager, storage: SessionStorage | None = None):
        """Initialize session manager.

        Args:
            config: Application configuration
            provider_manager: Registered LLM providers
            storage: Session persistence (defaults to ``<config-dir>/sessions``)
        """
        self.config = config
        self.provider_manager = provider_manager
        self.storage = storage or SessionStorage()

    def _default_provider(self) -> str:
        providers = self.provider_manager.list_providers()
        if self.config.llm.default_provider in providers:
            return self.config.llm.default_provider
        return providers[0] if providers else ""

    def _default_model(self, provider_name: str) -> str:
        if self.config.llm.default_model:
            return self.config.llm.default_model
        if not provider_name:
            return ""
        try:
            return self.provider_manager.get_provider(provider_name).get_default_model()
        except ProviderNotFoundError:
            return ""

    def _wire(self, session: Session) -> None:
        """Attach watcher, tool stack, permission gate and context manager."""
        session.config = self.config
        session.provider_manager = self.provider_manager
        session.storage = self.storage
        session.watcher = FileWatcher()

        queue = ToolQueue()
        session.tool_queue = queue
        session.permissions = PermissionManager(queue, terminator=self.config.security.terminator)
        todo_store = TodoStore(todo_file_for(get_config_dir(), session.root_path))
        session.tools = ToolsRegistry(ToolContext(root_path=session.root_path, todo_store=todo_store))
        session.context_manager = ContextManager(max_tokens=self.config.llm.context_window)

    def _detect_project(self, session: Session) -> None:
        try:
            session.project = ProjectDetector().detect_project(session.root_path)
        except ResourceError as e:
            logger.warning(f"Project detection failed for {session.root_path}: {e}")

    def create_session(self, opts: CreateOptions | None = None) -> Session:
        """Create a session rooted at opts.root_path (or the working directory).

        Raises:
            SessionError: If an explicitly requested file cannot be added
        """
        opts = opts or CreateOptions()
        root_path = str(Path(opts.root_path or os.getcwd()).resolve())
        provider = opts.provider or self._default_provider()
        session_id = generate_session_id()

        session = Session(
            id=session_id,
            name=opts.name or f"session-{session_id}",
            root_path=root_path,
            provider=provider,
            model=opts.model or self._default_model(provider),
            tags=list(opts.tags),
            dry_run=opts.dry_run,
            no_auto_commit=opts.no_auto_commit,
        )
        self._wire(session)
        session.reload_memory()
        self._detect_project(session)

        if session.project is not None and (opts.auto_detect_files or not opts.files):
            for rel_path in select_session_files(session.project):
                try:
                    session.add_file(str(Path(session.project.root) / rel_path))
                except SessionError as e:
                    logger.warning(f"Could not auto-add {rel_path}: {e}")

        for file_path in opts.files:
            if session.resolve_path(file_path) in session.files:
                continue
            session.add_file(file_path)

        session.save_quietly("creation")
        logger.info(
            f"Created session {session.id} ({session.name}) at {root_path} "
            f"with provider {session.provider or 'none'} and {len(session.files)} files"
        )
        return session

    def load_session(self, session_id: str) -> Session:
        """Restore a saved session and re-attach its runtime collaborators.

        Raises:
            SessionError: If the session does not exist or cannot be parsed
        """
        session = Session.from_dict(self.storage.load(session_id))
        self._wire(session)

        available = self.provider_manager.list_providers()
        if session.provider not in available:
            fallback = self._default_provider()
            logger.warning(f"Provider {session.provider or 'none'} unavailable for session {session_id}, using {fallback}")
            session.provider = fallback

        for file_path in session.files:
            if Path(file_path).exists():
                session.watcher.add_file(file_path)
            else:
                logger.warning(f"Session file no longer exists: {file_path}")

        session.reload_memory()
        self._detect_project(session)
        logger.info(f"Loaded session {session.id} ({len(session.history)} messages, {len(session.files)} files)")
        return session

    def save_session(self, session: Session) -> None:
        session.save()

    def list_saved_sessions(self) -> list[dict[str, Any]]:
        return self.storage.list_sessions()

    def find_sessions_by_root_path(self, root_path: str) -> list[dict[str, Any]]:
        return self.storage.find_by_root_path(str(Path(root_path).resolve()))

    def delete_session(self, session_id: str) -> None:
        self.storage.delete(session_id)

    def cleanup_old_sessions(self, days: int = 30) -> int:
        return self.storage.cleanup_old_sessions(days)
