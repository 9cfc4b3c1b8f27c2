"""Detected project metadata."""

from dataclasses import dataclass, field
from enum import StrEnum


class ProjectType(StrEnum):
    GO = "go"
    JAVASCRIPT = "javascript"
    TYPESCRIPT = "typescript"
    PYTHON = "python"
    RUST = "rust"
    JAVA = "java"
    GENERIC = "generic"


@dataclass
class Project:
    """A scanned project rooted at ``root``. Paths in files/directories are relative to it."""

    type: ProjectType
    root: str
    name: str
    files: list[str] = field(default_factory=list)
    directories: list[str] = field(default_factory=list)
    gitignore_patterns: list[str] = field(default_factory=list)

    def get_summary(self) -> str:
        summary = f"Project: {self.name} ({self.type})\n"
        summary += f"Root: {self.root}\n"
        summary += f"Files: {len(self.files)} relevant files found\n"
        summary += f"Directories: {len(self.directories)}\n"
        if self.gitignore_patterns:
            summary += f"GitIgnore: {len(self.gitignore_patterns)} patterns loaded\n"
        return summary
