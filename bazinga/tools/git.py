"""Git tools backed by the system ``git`` binary."""

import asyncio

from pydantic import BaseModel, Field

from bazinga.errors import GitCommandError, ToolValidationError
from bazinga.tools.base import ToolContext, ToolDefinition
from bazinga.utils.logging import get_logger

logger = get_logger(__name__)

GIT_TIMEOUT = 30.0

STATUS_DESCRIPTIONS = {
    "M ": "Modified",
    " M": "Modified (unstaged)",
    "A ": "Added",
    " A": "Added (unstaged)",
    "D ": "Deleted",
    " D": "Deleted (unstaged)",
    "??": "Untracked",
    "R ": "Renamed",
    "C ": "Copied",
    "MM": "Modified (staged and unstaged)",
}


class GitStatusInput(BaseModel):
    pass


class GitDiffInput(BaseModel):
    staged: bool = Field(False, description="Show staged changes instead of the working tree")
    file_path: str | None = Field(None, description="Limit the diff to one file")


class GitAddInput(BaseModel):
    paths: list[str] = Field(..., min_length=1, description="Paths to stage")


class GitCommitInput(BaseModel):
    message: str = Field(..., description="Commit message")


class GitLogInput(BaseModel):
    limit: int = Field(10, ge=1, description="Number of commits to show")
    file_path: str | None = Field(None, description="Limit history to one file")


class GitBranchInput(BaseModel):
    branch_name: str | None = Field(None, description="Branch to switch to (omit to list branches)")
    create: bool = Field(False, description="Create the branch before switching")


async def run_git(args: list[str], cwd: str, timeout: float = GIT_TIMEOUT) -> str:
    """Run git with args in cwd and return combined output without trailing whitespace.

    Raises:
        GitCommandError: On non-zero exit or timeout
    """
    command = next((arg for arg in args if not arg.startswith("-") and "=" not in arg), "git")
    try:
        process = await asyncio.create_subprocess_exec(
            "git",
            *args,
            cwd=cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except FileNotFoundError as e:
        raise GitCommandError(f"failed to start git: {e}") from e
    try:
        stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except TimeoutError as e:
        raise GitCommandError(f"git {command} timed out after {timeout:g}s") from e
    finally:
        if process.returncode is None:
            process.kill()
            await process.wait()

    output = stdout.decode("utf-8", errors="replace").rstrip()
    if process.returncode != 0:
        raise GitCommandError(f"git {command} failed with exit code {process.returncode}\nOutput: {output}")
    return output


def format_status(porcelain: str) -> str:
    if not porcelain:
        return "Working tree clean"

    formatted = []
    for line in porcelain.splitlines():
        if line.startswith("##"):
            formatted.append(f"Branch: {line.removeprefix('## ')}")
        elif len(line) >= 3:
            status, file = line[:2], line[3:].strip()
            formatted.append(f"  {STATUS_DESCRIPTIONS.get(status, status)}: {file}")

    # Only the branch header means nothing changed
    if len(formatted) == 1 and formatted[0].startswith("Branch:"):
        formatted.append("Working tree clean")
    return "\n".join(formatted)


async def git_status(params: GitStatusInput, ctx: ToolContext) -> str:
    return format_status(await run_git(["status", "--porcelain", "-b"], ctx.root_path))


async def git_diff(params: GitDiffInput, ctx: ToolContext) -> str:
    args = ["diff", "--cached"] if params.staged else ["diff"]
    if params.file_path:
        args += ["--", params.file_path]

    output = await run_git(args, ctx.root_path)
    if not output:
        return "No staged changes to show" if params.staged else "No changes to show"
    return output


async def git_add(params: GitAddInput, ctx: ToolContext) -> str:
    await run_git(["add", "--", *params.paths], ctx.root_path)
    return f"Added {len(params.paths)} file(s) to staging area"


async def git_commit(params: GitCommitInput, ctx: ToolContext) -> str:
    if not params.message.strip():
        raise ToolValidationError("commit message cannot be empty")
    return await run_git(["commit", "-m", params.message], ctx.root_path)


async def git_log(params: GitLogInput, ctx: ToolContext) -> str:
    args = ["log", f"-{params.limit}", "--oneline", "--decorate"]
    if params.file_path:
        args += ["--", params.file_path]

    try:
        output = await run_git(args, ctx.root_path)
    except GitCommandError as e:
        # A fresh repository has no HEAD yet
        if "does not have any commits" in str(e):
            return "No commits found"
        raise
    return output or "No commits found"


async def git_branch(params: GitBranchInput, ctx: ToolContext) -> str:
    if params.branch_name:
        args = ["checkout", "-b", params.branch_name] if params.create else ["checkout", params.branch_name]
    else:
        args = ["branch", "-v"]
    return await run_git(args, ctx.root_path)


def create_git_tools() -> list[ToolDefinition]:
    return [
        ToolDefinition("git_status", "Show the working tree status", GitStatusInput, git_status),
        ToolDefinition("git_diff", "Show changes (staged=true for the index)", GitDiffInput, git_diff),
        ToolDefinition("git_add", "Stage files for commit", GitAddInput, git_add),
        ToolDefinition("git_commit", "Commit staged changes with a message", GitCommitInput, git_commit),
        ToolDefinition("git_log", "Show recent commits", GitLogInput, git_log),
        ToolDefinition("git_branch", "List branches, switch branch, or create one", GitBranchInput, git_branch),
    ]
