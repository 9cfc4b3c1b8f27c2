"""System prompt composition and follow-up instructions."""

import re
from pathlib import Path

from bazinga.models.memory import MemoryContent

ASSISTANT_PERSONA = """You are Bazinga, a coding assistant working inside the user's terminal and project directory.

## How you work

- Understand before changing. Read the relevant files, check git status, and search the codebase before proposing edits.
- Use tools directly instead of describing what you would do. Run builds, tests and any command the user asks for with the bash tool.
- Find code with grep, find and fuzzy_search rather than guessing paths.
- File contents are for your understanding. Summarize what you learned; quote code only when it explains a problem or a fix.
- Make focused edits with edit_file or multi_edit_file. Rewrite whole files only when creating them or when most of the file changes.
- After changing code, verify it by running the relevant tests or build when they exist.

## Planning with todos

- For requests that take more than a couple of steps, write a todo list with todo_write before starting.
- Keep exactly one item in_progress, mark items completed as soon as they are done, and cancel items that no longer apply.
- Skip todos for single, trivial actions.

## Answers

- Be direct and concise. Lead with the result, then the details that matter.
- When a tool fails, say what failed and what you will try next.
- Never invent file contents, command output or APIs you have not seen."""

SYSTEM_TEMPLATE_MARKERS = [
    "you are an expert",
    "you are a",
    "you are specialized",
    "# task",
    "# response instructions",
    "```\nyou are",
]

REVIEW_KEYWORDS = [
    "review", "analyze", "examine", "assess", "evaluate", "inspect", "check",
    "code review", "code analysis", "codebase", "project structure", "architecture",
    "implementation", "patterns", "quality", "overview", "summary", "understanding",
    "explain the code", "how does", "what does", "structure of", "organization of",
]  # fmt: skip

FOLLOW_UP_INSTRUCTION = "Based on the tool results above, please complete the user's request: {request}"
REVIEW_FOLLOW_UP_INSTRUCTION = (
    "Continue reading relevant files to complete the comprehensive code review requested: {request}. "
    "Read additional files as needed to provide thorough analysis of the codebase structure, patterns, "
    "and implementation details."
)
DEFAULT_REQUEST = "analyze the information provided"

_HEADER_RE = re.compile(r"^#{1,2} ", re.MULTILINE)


def is_system_prompt_template(content: str) -> bool:
    """True when memory content reads like a complete system prompt of its own."""
    lowered = content.strip().lower()
    if not lowered:
        return False
    return lowered.startswith("you are") or any(marker in lowered for marker in SYSTEM_TEMPLATE_MARKERS)


def is_review_request(text: str) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in REVIEW_KEYWORDS)


def follow_up_instruction(request: str) -> str:
    """Trailing instruction sent after tool results so the model finishes the original request."""
    request = request.strip() or DEFAULT_REQUEST
    if is_review_request(request):
        return REVIEW_FOLLOW_UP_INSTRUCTION.format(request=request)
    return FOLLOW_UP_INSTRUCTION.format(request=request)


def format_memory_content(content: str) -> str:
    """Demote top-level headers so memory nests under the prompt's own sections."""
    return _HEADER_RE.sub("### ", content.strip())


def relative_to_root(path: str, root_path: str) -> str:
    try:
        return str(Path(path).relative_to(root_path))
    except ValueError:
        return path.lstrip("/")


def format_session_files(files: list[str], root_path: str) -> str:
    lines = [f"**{len(files)} files available for analysis:**"]
    lines += [f"- {relative_to_root(file, root_path)}" for file in files]
    if len(files) > 1:
        lines += ["", "*For comprehensive analysis requests, read ALL of these files systematically.*"]
    return "\n".join(lines)


def format_project_structure(summary: str) -> str:
    lines = []
    for line in summary.split("\n"):
        stripped = line.strip()
        if not stripped:
            lines.append("")
        elif stripped.startswith(("-", "*")) or line.startswith("  "):
            lines.append(line)
        else:
            lines.append(f"- {stripped}")
    return "\n".join(lines)


def _additional_context(memory: MemoryContent | None, files: list[str], root_path: str) -> str:
    sections = []
    if memory is not None and memory.user_memory:
        sections.append(f"## User Preferences\n{format_memory_content(memory.user_memory)}")
    if files:
        sections.append(f"## Current Session Files\n{format_session_files(files, root_path)}")
    return "\n\n".join(sections)


def build_system_prompt(
    memory: MemoryContent | None,
    files: list[str],
    root_path: str,
    project_summary: str = "",
) -> str:
    """Compose the system prompt from the persona, memory, session files and project summary.

    Project memory that looks like a full system prompt replaces the persona; in
    that case only user preferences and session files are appended.
    """
    project_memory = memory.project_memory.strip() if memory is not None else ""
    if project_memory and is_system_prompt_template(project_memory):
        extra = _additional_context(memory, files, root_path)
        return f"{project_memory}\n\n{extra}" if extra else project_memory

    sections = [ASSISTANT_PERSONA]
    if memory is not None and memory.user_memory:
        sections.append(f"## User Preferences\n{format_memory_content(memory.user_memory)}")
    if project_memory:
        sections.append(f"## Project Context\n{format_memory_content(project_memory)}")
    if files:
        sections.append(f"## Current Session Files\n{format_session_files(files, root_path)}")
    if project_summary:
        sections.append(f"## Project Structure\n{format_project_structure(project_summary)}")
    if memory is not None and memory.imported_files:
        imported = "\n".join(f"- {relative_to_root(path, root_path)}" for path in memory.imported_files)
        sections.append(f"## Imported Memory Files\n{imported}")
    return "\n\n".join(sections)


def tool_context_note(project_summary: str, memory: MemoryContent | None) -> str:
    """Short context appended to file and shell tool descriptions."""
    parts = []
    if project_summary:
        parts.append(f"Project: {project_summary.splitlines()[0]}")
    if memory is not None and not memory.is_empty:
        parts.append("Follow the conventions in the project memory (MEMORY.md) when using this tool.")
    return "\n".join(parts)
