"""Per-project todo persistence and display formatting."""

import json
import threading
from datetime import UTC, datetime
from pathlib import Path

from pydantic import ValidationError

from bazinga.errors import ResourceError, ToolValidationError
from bazinga.models.todo import TodoItem
from bazinga.utils.logging import get_logger

logger = get_logger(__name__)

STATUS_ORDER = {"in_progress": 0, "pending": 1, "completed": 2, "canceled": 3}
PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}

STATUS_LABELS = {
    "in_progress": "◈ In Progress",
    "pending": "◉ Pending",
    "completed": "✓ Completed",
    "canceled": "✗ Canceled",
}
PRIORITY_ICONS = {"high": "▸", "medium": "•", "low": "▫"}

EMPTY_MESSAGE = "No todos found. Use todo_write to create some!"


def todo_file_for(config_dir: Path, root_path: str) -> Path:
    """Todo file location for a project: ``<config-dir>/todos/<project>_todos.json``."""
    project_name = Path(root_path).name or "default"
    return config_dir / "todos" / f"{project_name}_todos.json"


class TodoStore:
    """JSON-backed todo list for one project. Safe to share across threads."""

    def __init__(self, path: Path):
        self.path = path
        self._lock = threading.Lock()

    def load(self) -> list[TodoItem]:
        with self._lock:
            return self._load()

    def _load(self) -> list[TodoItem]:
        if not self.path.exists():
            return []
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise ResourceError(f"failed to read todo file: {e}") from e
        if not raw.strip():
            return []
        try:
            return [TodoItem.model_validate(item) for item in json.loads(raw)]
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            raise ResourceError(f"failed to parse todo file: {e}") from e

    def _save(self, items: list[TodoItem]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            payload = [item.model_dump(mode="json", exclude_none=True) for item in items]
            self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as e:
            raise ResourceError(f"failed to write todo file: {e}") from e

    def write(self, todos_json: str) -> list[TodoItem]:
        """Replace the todo list with the items in todos_json.

        Existing items keep their created_at; completed_at is stamped on the
        transition to completed.

        Raises:
            ToolValidationError: If the JSON is malformed or an item is invalid
        """
        try:
            raw_items = json.loads(todos_json)
        except json.JSONDecodeError as e:
            raise ToolValidationError(f"failed to parse todos JSON: {e}") from e
        if not isinstance(raw_items, list):
            raise ToolValidationError("failed to parse todos JSON: expected an array of todo items")

        with self._lock:
            existing = {item.id: item for item in self._load()}
            now = datetime.now(UTC)
            items = []

            for raw in raw_items:
                if not isinstance(raw, dict):
                    raise ToolValidationError("todo item must be an object")
                if not raw.get("id"):
                    raise ToolValidationError("todo item missing required field: id")
                if not raw.get("content"):
                    raise ToolValidationError("todo item missing required field: content")

                try:
                    item = TodoItem(
                        id=str(raw["id"]),
                        content=raw["content"],
                        status=raw.get("status") or "pending",
                        priority=raw.get("priority") or "medium",
                    )
                except ValidationError as e:
                    problems = "; ".join(
                        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
                    )
                    raise ToolValidationError(f"invalid todo item {raw['id']}: {problems}") from e

                previous = existing.get(item.id)
                if previous is not None:
                    item.created_at = previous.created_at
                    item.updated_at = now
                    if item.status == "completed" and previous.status != "completed":
                        item.completed_at = now
                    else:
                        item.completed_at = previous.completed_at
                else:
                    item.created_at = now
                    item.updated_at = now
                    if item.status == "completed":
                        item.completed_at = now
                items.append(item)

            self._save(items)
            return items

    def read_display(self) -> str:
        """Grouped, human-readable todo list."""
        items = self.load()
        if not items:
            return EMPTY_MESSAGE

        ordered = sorted(items, key=lambda i: (STATUS_ORDER[i.status], PRIORITY_ORDER[i.priority]))
        lines = ["📋 Todo List:", ""]
        for status in ("in_progress", "pending", "completed", "canceled"):
            group = [item for item in ordered if item.status == status]
            if not group:
                continue
            lines.append(f"{STATUS_LABELS[status]}:")
            for item in group:
                stamp = item.completed_at or item.created_at
                when = stamp.strftime("%m/%d") if stamp else ""
                lines.append(f"  {PRIORITY_ICONS[item.priority]} {item.content} [{item.id[:8]}] ({when})")
            lines.append("")

        pending = sum(1 for item in items if item.status == "pending")
        completed = sum(1 for item in items if item.status == "completed")
        lines.append(f"◉ Summary: {len(items)} total, {pending} pending, {completed} completed")
        return "\n".join(lines) + "\n"


def _status_display(status: str) -> tuple[str, str]:
    match status:
        case "completed":
            return "x", "✅"
        case "in_progress":
            return " ", "⏳"
        case "canceled":
            return " ", "❌"
        case _:
            return " ", "⭕"


def _priority_indicator(priority: str) -> str:
    return {"high": "🔥 ", "low": "💫 "}.get(priority, "")


def format_todo_list(items: list[TodoItem]) -> str:
    """Checkbox rendering with a progress line, for the terminal UI."""
    if not items:
        return EMPTY_MESSAGE

    lines = ["📋 **Task Breakdown:**", ""]
    for item in items:
        checkbox, icon = _status_display(item.status)
        lines.append(f"- [{checkbox}] {icon} {_priority_indicator(item.priority)}{item.content}")

    completed = sum(1 for item in items if item.status == "completed")
    percentage = int(completed / len(items) * 100)
    lines.append("")
    lines.append(f"**Progress:** {completed}/{len(items)} tasks completed ({percentage}%)")
    return "\n".join(lines)


def quick_summary(items: list[TodoItem]) -> str:
    if not items:
        return ""
    completed = sum(1 for item in items if item.status == "completed")
    if completed == len(items):
        return "✨ All tasks completed!"
    return f"📋 Progress: {completed}/{len(items)} tasks ({int(completed / len(items) * 100)}%)"
