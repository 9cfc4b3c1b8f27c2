"""Polling file watcher for session files."""

import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal

from bazinga.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class FileEvent:
    path: str
    operation: Literal["create", "modify", "delete"]
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


def _mtime(path: str) -> float | None:
    try:
        return Path(path).stat().st_mtime
    except OSError:
        return None


class FileWatcher:
    """Tracks modification times of subscribed files; ``poll`` reports what changed."""

    def __init__(self):
        self._lock = threading.Lock()
        self._files: dict[str, float | None] = {}
        self._closed = False

    def add_file(self, path: str) -> None:
        with self._lock:
            if self._closed:
                return
            self._files[path] = _mtime(path)
        logger.debug(f"Watching {path}")

    def remove_file(self, path: str) -> None:
        with self._lock:
            self._files.pop(path, None)

    def is_watching(self, path: str) -> bool:
        with self._lock:
            return path in self._files

    def watched_files(self) -> list[str]:
        with self._lock:
            return list(self._files)

    def poll(self) -> list[FileEvent]:
        events = []
        with self._lock:
            for path, previous in self._files.items():
                current = _mtime(path)
                if current == previous:
                    continue
                if previous is None:
                    events.append(FileEvent(path, "create"))
                elif current is None:
                    events.append(FileEvent(path, "delete"))
                else:
                    events.append(FileEvent(path, "modify"))
                self._files[path] = current
        return events

    def close(self) -> None:
        with self._lock:
            self._files.clear()
            self._closed = True
