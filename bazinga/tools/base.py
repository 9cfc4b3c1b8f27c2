"""Base types and definitions for tools."""

import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import BaseModel, ValidationError

from bazinga.errors import ToolValidationError

if TYPE_CHECKING:
    from bazinga.services.todos import TodoStore


@dataclass
class FileChange:
    """A file mutation performed by a tool, reported for diff display."""

    file_path: str
    operation: str
    old_content: str = ""
    new_content: str = ""


FileChangeCallback = Callable[[FileChange], None]


@dataclass
class ToolContext:
    """Per-session state shared by tool handlers."""

    root_path: str
    todo_store: "TodoStore | None" = None
    on_file_change: FileChangeCallback | None = None
    env: dict[str, str] = field(default_factory=dict)
    http_transport: httpx.AsyncBaseTransport | None = None

    def resolve(self, path: str) -> Path:
        """Resolve a tool-supplied path against the session root."""
        expanded = Path(os.path.expanduser(path))
        if expanded.is_absolute():
            return expanded
        return Path(self.root_path) / expanded

    def display_path(self, path: Path) -> str:
        """Path relative to the root when possible."""
        try:
            return str(path.resolve().relative_to(Path(self.root_path).resolve()))
        except ValueError:
            return str(path)

    def notify(self, change: FileChange) -> None:
        if self.on_file_change is not None:
            self.on_file_change(change)


ToolHandler = Callable[[Any, ToolContext], Awaitable[str]]


@dataclass
class ToolDefinition:
    """Definition of a tool available to the AI assistant."""

    name: str
    description: str
    input_schema_class: type[BaseModel]
    handler: ToolHandler

    def get_json_schema(self) -> dict[str, Any]:
        """Get JSON schema for this tool's input."""
        return self.input_schema_class.model_json_schema()

    def parse_input(self, raw_input: dict[str, Any]) -> BaseModel:
        """Parse and validate tool input.

        Raises:
            ToolValidationError: If required fields are missing or mistyped
        """
        try:
            return self.input_schema_class.model_validate(raw_input)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(part) for part in err['loc']) or 'input'}: {err['msg']}" for err in e.errors()
            )
            raise ToolValidationError(f"invalid input for {self.name}: {problems}") from e
