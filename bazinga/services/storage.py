"""JSON persistence for session documents."""

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from bazinga.errors import SessionError
from bazinga.utils.config import get_config_dir
from bazinga.utils.logging import get_logger

logger = get_logger(__name__)

MAX_PERSISTED_MESSAGES = 50
MAX_HISTORY_BYTES = 100_000
MIN_PERSISTED_MESSAGES = 10


def truncate_history(history: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Keep the newest messages, then shed the oldest while the payload is too large."""
    history = history[-MAX_PERSISTED_MESSAGES:]
    while len(history) > MIN_PERSISTED_MESSAGES and len(json.dumps(history).encode()) > MAX_HISTORY_BYTES:
        history = history[1:]
    return history


class SessionStorage:
    """One ``<id>.json`` document per session under ``<config-dir>/sessions``."""

    def __init__(self, base_dir: Path | None = None):
        self.base_dir = base_dir or get_config_dir() / "sessions"

    def path_for(self, session_id: str) -> Path:
        return self.base_dir / f"{session_id}.json"

    def save(self, data: dict[str, Any]) -> Path:
        """Write a session document, truncating its history.

        Raises:
            SessionError: If the document cannot be written
        """
        document = dict(data)
        document["history"] = truncate_history(document.get("history", []))
        path = self.path_for(document["id"])
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(".json.tmp")
            tmp_path.write_text(json.dumps(document, indent=2), encoding="utf-8")
            tmp_path.replace(path)
        except OSError as e:
            raise SessionError(f"failed to save session {document['id']}: {e}") from e
        logger.debug(f"Saved session {document['id']} ({len(document['history'])} messages)")
        return path

    def load(self, session_id: str) -> dict[str, Any]:
        """Read a session document.

        Raises:
            SessionError: If the session does not exist or cannot be parsed
        """
        path = self.path_for(session_id)
        if not path.exists():
            raise SessionError(f"session not found: {session_id}")
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise SessionError(f"failed to load session {session_id}: {e}") from e

    def list_sessions(self) -> list[dict[str, Any]]:
        """All readable session documents; unreadable ones are skipped with a warning."""
        if not self.base_dir.exists():
            return []
        documents = []
        for path in sorted(self.base_dir.glob("*.json")):
            try:
                documents.append(json.loads(path.read_text(encoding="utf-8")))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Skipping unreadable session file {path}: {e}")
        return documents

    def delete(self, session_id: str) -> None:
        path = self.path_for(session_id)
        try:
            path.unlink()
        except FileNotFoundError as e:
            raise SessionError(f"session not found: {session_id}") from e
        except OSError as e:
            raise SessionError(f"failed to delete session {session_id}: {e}") from e
        logger.info(f"Deleted session {session_id}")

    def find_by_root_path(self, root_path: str) -> list[dict[str, Any]]:
        """Sessions for a project directory, most recently updated first."""
        matches = [doc for doc in self.list_sessions() if doc.get("root_path") == root_path]
        return sorted(matches, key=lambda doc: doc.get("updated_at", ""), reverse=True)

    def cleanup_old_sessions(self, days: int = 30) -> int:
        """Delete sessions not updated within the retention window; returns the count removed."""
        cutoff = datetime.now(UTC) - timedelta(days=days)
        removed = 0
        for document in self.list_sessions():
            try:
                updated_at = datetime.fromisoformat(document["updated_at"])
            except (KeyError, ValueError):
                logger.warning(f"Session {document.get('id')} has no valid updated_at, skipping cleanup")
                continue
            if updated_at < cutoff:
                self.delete(document["id"])
                removed += 1
        if removed:
            logger.info(f"Cleaned up {removed} sessions older than {days} days")
        return removed
