"""Memory (MEMORY.md) content model."""

from dataclasses import dataclass, field


@dataclass
class MemoryContent:
    """User and project memory with ``@path`` imports already resolved."""

    user_memory: str = ""
    project_memory: str = ""
    imported_files: list[str] = field(default_factory=list)
    full_content: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.user_memory and not self.project_memory
