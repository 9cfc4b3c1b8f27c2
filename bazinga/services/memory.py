"""MEMORY.md loading with transitive ``@path`` imports."""

import re
from pathlib import Path

from bazinga.errors import ResourceError
from bazinga.models.memory import MemoryContent
from bazinga.utils.config import get_config_dir
from bazinga.utils.logging import get_logger

logger = get_logger(__name__)

MEMORY_FILE_NAME = "MEMORY.md"
IMPORT_PATTERN = re.compile(r"@([^\s]+)")

USER_MEMORY_TEMPLATE = """# User Memory

Personal preferences and instructions that apply to every project.

## Coding Preferences
- Preferred programming style
- Patterns and libraries to favour

## Communication Style
- How detailed answers should be
- Preferred output formats

## Custom Instructions
Add global instructions here.
"""

PROJECT_MEMORY_TEMPLATE = """# Project Memory

Project-specific context and instructions for this codebase.

## Project Overview
What this project does.

## Architecture
Key architectural decisions and patterns.

## Development Guidelines
- Coding standards for this project
- Testing requirements
- Release procedures

## Important Context
Anything the assistant must know before changing code here.

## File Structure
Key files and directories.
"""


def user_memory_path() -> Path:
    return get_config_dir() / MEMORY_FILE_NAME


def find_project_memory(working_dir: str | Path) -> Path | None:
    """Walk up from working_dir looking for MEMORY.md, stopping before the filesystem root."""
    current = Path(working_dir).resolve()
    while True:
        candidate = current / MEMORY_FILE_NAME
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current or parent == Path("/"):
            return None
        current = parent


def _read(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        logger.debug(f"Could not read memory file {path}: {e}")
        return None


def resolve_imports(text: str, base_dir: Path, imported_files: list[str]) -> str:
    """Replace each ``@path`` token with that file's content, recursively.

    Paths are relative to the file that mentions them. A file already in
    imported_files is never read again, so cycles terminate with the token left
    in place. Unreadable paths are left untouched.
    """
    result = []
    position = 0
    for match in IMPORT_PATTERN.finditer(text):
        full_path = str((base_dir / match.group(1)).resolve())
        if full_path in imported_files:
            logger.debug(f"Skipping repeated memory import: {full_path}")
            continue
        content = _read(Path(full_path))
        if content is None:
            continue

        imported_files.append(full_path)
        logger.debug(f"Imported memory file: {full_path}")
        result.append(text[position : match.start()])
        result.append(resolve_imports(content, Path(full_path).parent, imported_files))
        position = match.end()

    result.append(text[position:])
    return "".join(result)


def load_memory(working_dir: str | Path) -> MemoryContent:
    """Load user memory and the nearest project memory, resolving imports."""
    content = MemoryContent()

    user_path = user_memory_path()
    if (user_text := _read(user_path) if user_path.is_file() else None) is not None:
        content.user_memory = resolve_imports(user_text, user_path.parent, content.imported_files)

    project_path = find_project_memory(working_dir)
    if project_path is not None and (project_text := _read(project_path)) is not None:
        content.project_memory = resolve_imports(project_text, project_path.parent, content.imported_files)

    content.full_content = "\n\n".join(part for part in (content.user_memory, content.project_memory) if part)

    logger.info(
        f"Memory loaded (user={bool(content.user_memory)}, project={bool(content.project_memory)}, "
        f"imports={len(content.imported_files)})"
    )
    return content


def create_memory_file(path: Path, user: bool) -> None:
    """Write the starter template for a user or project memory file.

    Raises:
        ResourceError: If the file cannot be written
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(USER_MEMORY_TEMPLATE if user else PROJECT_MEMORY_TEMPLATE, encoding="utf-8")
    except OSError as e:
        raise ResourceError(f"failed to write memory file {path}: {e}") from e
    logger.info(f"Created memory file {path} (user={user})")


def add_quick_memory(working_dir: str | Path, note: str, user: bool = False) -> Path:
    """Append a note to the user or project MEMORY.md, creating it from the template if needed."""
    target = user_memory_path() if user else Path(working_dir) / MEMORY_FILE_NAME
    if not target.exists():
        create_memory_file(target, user)

    try:
        with target.open("a", encoding="utf-8") as f:
            f.write(f"\n\n## Quick Note (Added by bazinga)\n{note}\n")
    except OSError as e:
        raise ResourceError(f"failed to write to memory file: {e}") from e

    logger.info(f"Added quick memory to {target} ({len(note)} chars)")
    return target


def get_memory_file_paths(working_dir: str | Path) -> tuple[Path, Path]:
    """User memory path and the project memory path (existing or where it would be created)."""
    project_path = find_project_memory(working_dir) or Path(working_dir) / MEMORY_FILE_NAME
    return user_memory_path(), project_path
