"""Code search tools: grep, find and fuzzy file search."""

import asyncio
import fnmatch
import os
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from bazinga.errors import ToolValidationError
from bazinga.tools.base import ToolContext, ToolDefinition
from bazinga.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SEARCH_EXTENSIONS = [
    ".go", ".py", ".js", ".ts", ".jsx", ".tsx", ".java", ".c", ".cpp", ".h", ".hpp",
    ".cs", ".php", ".rb", ".rs", ".kt", ".scala", ".clj", ".hs", ".ml", ".elm",
    ".txt", ".md", ".rst", ".org", ".tex", ".html", ".htm", ".xml", ".css", ".scss", ".sass",
    ".json", ".yaml", ".yml", ".toml", ".ini", ".cfg", ".conf", ".properties",
    ".sql", ".sh", ".bash", ".zsh", ".fish", ".ps1", ".bat", ".cmd",
    ".dockerfile", ".makefile", ".cmake", ".ninja", ".gradle", ".maven",
    ".R", ".m", ".swift", ".dart", ".lua", ".perl", ".pl", ".vim", ".emacs",
]  # fmt: skip

EXTENSIONLESS_FILES = {
    "Makefile", "Dockerfile", "Containerfile", "LICENSE", "README", "CHANGELOG",
    "Jenkinsfile", "Vagrantfile", "Gemfile",
}  # fmt: skip

SKIP_DIRS = {".git", "node_modules", "__pycache__", ".venv", "venv", ".mypy_cache", ".pytest_cache"}

MAX_FUZZY_RESULTS = 50


class GrepInput(BaseModel):
    pattern: str = Field(..., description="Regular expression to search for")
    files: list[str] | None = Field(None, description="Specific files to search")
    recursive: bool = Field(True, description="Search subdirectories")
    context: int = Field(0, ge=0, description="Lines of context around each match")
    ignore_case: bool = Field(False, description="Case-insensitive matching")
    extensions: list[str] | None = Field(None, description="File extensions to include, e.g. ['.py']")


class FindInput(BaseModel):
    name: str | None = Field(None, description="Glob pattern matched against file names, e.g. '*.py'")
    type: Literal["file", "dir"] | None = Field(None, description="Restrict to files or directories")
    path: str | None = Field(None, description="Directory to search (defaults to the project root)")


class FuzzySearchInput(BaseModel):
    query: str = Field(..., description="Characters that must appear in order in the file name")


@dataclass
class SearchMatch:
    file: str
    line: int
    content: str
    context: list[str] = field(default_factory=list)


async def _run(args: list[str], cwd: str, stdin: bytes | None = None) -> tuple[int, str]:
    process = await asyncio.create_subprocess_exec(
        *args,
        cwd=cwd,
        stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )
    try:
        stdout, _ = await process.communicate(stdin)
    finally:
        if process.returncode is None:
            process.kill()
            await process.wait()
    return process.returncode or 0, stdout.decode("utf-8", errors="replace")


def _should_search(path: Path, extensions: set[str]) -> bool:
    if not path.suffix:
        return path.name in EXTENSIONLESS_FILES
    return path.suffix in extensions


def _walk_files(root: Path, recursive: bool = True):
    for dirpath, dirnames, filenames in os.walk(root):
        if not recursive:
            dirnames[:] = []
        else:
            dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
        for filename in sorted(filenames):
            yield Path(dirpath) / filename


def search_file(path: Path, regex: re.Pattern, context_lines: int, display: str) -> list[SearchMatch]:
    try:
        lines = path.read_text(encoding="utf-8", errors="replace").split("\n")
    except OSError:
        return []

    matches = []
    for i, line in enumerate(lines):
        if not regex.search(line):
            continue
        match = SearchMatch(file=display, line=i + 1, content=line.strip())
        if context_lines > 0:
            start = max(0, i - context_lines)
            end = min(len(lines), i + context_lines + 1)
            match.context = [lines[j].strip() for j in range(start, end) if j != i]
        matches.append(match)
    return matches


def format_matches(matches: list[SearchMatch]) -> str:
    if not matches:
        return "No matches found"

    output = [f"Found {len(matches)} matches:"]
    current_file = None
    for match in matches:
        if match.file != current_file:
            current_file = match.file
            output.append("")
            output.append(f" {match.file}")
        output.append(f"  {match.line}: {match.content}")
        output.extend(f"     {line}" for line in match.context if line)
    return "\n".join(output)


def grep_native(params: GrepInput, root: str) -> str:
    flags = re.IGNORECASE if params.ignore_case else 0
    try:
        regex = re.compile(params.pattern, flags)
    except re.error as e:
        raise ToolValidationError(f"invalid regex pattern: {e}") from e

    extensions = set(params.extensions or DEFAULT_SEARCH_EXTENSIONS)
    root_path = Path(root)
    matches: list[SearchMatch] = []

    if params.files:
        for file in params.files:
            path = Path(file) if os.path.isabs(file) else root_path / file
            matches.extend(search_file(path, regex, params.context, file))
    else:
        for path in _walk_files(root_path, params.recursive):
            if _should_search(path, extensions):
                display = str(path.relative_to(root_path))
                matches.extend(search_file(path, regex, params.context, display))

    return format_matches(matches)


async def grep_ripgrep(params: GrepInput, root: str) -> str | None:
    """Search with ripgrep; None means the caller should fall back to the native search."""
    args = ["rg", "--line-number", "--no-heading", "--color=never"]
    if params.context > 0:
        args += ["-C", str(params.context)]
    if params.ignore_case:
        args.append("--ignore-case")
    for ext in params.extensions or DEFAULT_SEARCH_EXTENSIONS:
        args += ["--type-add", f"custom:*{ext}"]
    args += ["--type", "custom", "-e", params.pattern]
    args += params.files or ["."]

    exit_code, output = await _run(args, root)
    if exit_code == 1:
        return "No matches found"
    if exit_code != 0:
        logger.debug(f"ripgrep failed with exit code {exit_code}, falling back to native search")
        return None

    result = output.strip()
    if not result:
        return "No matches found"
    return f"Found {len(result.splitlines())} matches:\n{result}"


async def grep(params: GrepInput, ctx: ToolContext) -> str:
    if shutil.which("rg") is not None:
        result = await grep_ripgrep(params, ctx.root_path)
        if result is not None:
            return result
    return await asyncio.to_thread(grep_native, params, ctx.root_path)


def find_native(params: FindInput, search_path: Path, root: Path) -> str:
    results = []
    for dirpath, dirnames, filenames in os.walk(search_path):
        dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
        candidates = []
        if params.type != "file":
            candidates += [(name, True) for name in dirnames]
        if params.type != "dir":
            candidates += [(name, False) for name in sorted(filenames)]

        for name, is_dir in candidates:
            if params.name and not fnmatch.fnmatch(name, params.name):
                continue
            full = Path(dirpath) / name
            try:
                rel = str(full.relative_to(root))
            except ValueError:
                rel = str(full)
            results.append(f"{rel}/" if is_dir else rel)

    if not results:
        return "No files found matching criteria"
    return f"Found {len(results)} files:\n" + "\n".join(results)


async def find(params: FindInput, ctx: ToolContext) -> str:
    search_path = ctx.resolve(params.path) if params.path else Path(ctx.root_path)
    return await asyncio.to_thread(find_native, params, search_path, Path(ctx.root_path))


def fuzzy_match(target: str, query: str) -> bool:
    """True when every character of query appears in target in order."""
    position = 0
    for char in query:
        position = target.find(char, position)
        if position < 0:
            return False
        position += 1
    return True


def fuzzy_native(query: str, root: str) -> str:
    root_path = Path(root)
    query_lower = query.lower()
    files = [
        str(path.relative_to(root_path))
        for path in _walk_files(root_path)
        if fuzzy_match(path.name.lower(), query_lower)
    ]
    if not files:
        return "No files found matching query"

    files.sort(key=lambda f: (len(f), f))
    files = files[:MAX_FUZZY_RESULTS]
    return f"Found {len(files)} files:\n" + "\n".join(files)


async def fuzzy_search(params: FuzzySearchInput, ctx: ToolContext) -> str:
    if shutil.which("fzf") is not None and shutil.which("find") is not None:
        find_code, listing = await _run(["find", ".", "-type", "f", "-not", "-path", "*/.git/*"], ctx.root_path)
        if find_code == 0:
            fzf_code, output = await _run(["fzf", "--filter", params.query], ctx.root_path, listing.encode())
            result = output.strip()
            if fzf_code == 1 or (fzf_code == 0 and not result):
                return "No files found matching query"
            if fzf_code == 0:
                lines = [line.removeprefix("./") for line in result.splitlines()][:MAX_FUZZY_RESULTS]
                return f"Found {len(lines)} files:\n" + "\n".join(lines)
        logger.debug("fzf search failed, falling back to native fuzzy search")
    return await asyncio.to_thread(fuzzy_native, params.query, ctx.root_path)


def create_search_tools() -> list[ToolDefinition]:
    return [
        ToolDefinition(
            "grep",
            "Search file contents with a regular expression (uses ripgrep when available)",
            GrepInput,
            grep,
        ),
        ToolDefinition("find", "Find files or directories by name pattern", FindInput, find),
        ToolDefinition(
            "fuzzy_search", "Fuzzy-find files whose names contain the query characters in order",
            FuzzySearchInput, fuzzy_search,
        ),
    ]
