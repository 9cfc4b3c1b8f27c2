"""Repository-level git helpers and the AI commit message generator."""

from bazinga.clients.base import LLMProvider
from bazinga.errors import GitCommandError
from bazinga.models.llm import GenerateRequest, Message
from bazinga.tools.git import STATUS_DESCRIPTIONS, format_status, run_git
from bazinga.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_AUTHOR_NAME = "bazinga"
DEFAULT_AUTHOR_EMAIL = "bazinga@ai-assistant.com"

COMMIT_SYSTEM_PROMPT = (
    "You are a git commit message generator. Generate concise, clear commit messages "
    "following conventional commit format."
)

COMMIT_PROMPT = """Generate a concise git commit message for the following changes. Follow conventional commit format:

Rules:
- Use format: type(scope): description
- Types: feat, fix, docs, style, refactor, test, chore
- Keep under 50 characters for the title
- Be specific and clear about what changed
- Focus on WHAT changed, not HOW

Changes Summary:
{summary}

Detailed Status:
{status}

Commit message:"""


async def is_git_repo(root_path: str) -> bool:
    try:
        return await run_git(["rev-parse", "--is-inside-work-tree"], root_path) == "true"
    except GitCommandError:
        return False


async def _config_value(root_path: str, key: str) -> str:
    try:
        return await run_git(["config", "--get", key], root_path)
    except GitCommandError:
        return ""


async def resolve_author(root_path: str, author_name: str = "", author_email: str = "") -> tuple[str, str]:
    """Configured override, then git config, then the built-in identity."""
    name = author_name or await _config_value(root_path, "user.name") or DEFAULT_AUTHOR_NAME
    email = author_email or await _config_value(root_path, "user.email") or DEFAULT_AUTHOR_EMAIL
    return name, email


async def get_porcelain_status(root_path: str) -> list[str]:
    output = await run_git(["status", "--porcelain"], root_path)
    return [line for line in output.splitlines() if line.strip()]


async def commit_all(root_path: str, message: str, author_name: str, author_email: str) -> str:
    """Stage every change and commit it; returns the short commit hash.

    Raises:
        GitCommandError: If the tree is clean or git fails
    """
    if not await get_porcelain_status(root_path):
        raise GitCommandError("nothing to commit, working tree clean")

    await run_git(["add", "-A"], root_path)
    await run_git(
        ["-c", f"user.name={author_name}", "-c", f"user.email={author_email}", "commit", "-m", message],
        root_path,
    )
    commit_hash = await run_git(["rev-parse", "--short=8", "HEAD"], root_path)
    logger.info(f"Committed changes as {commit_hash}")
    return commit_hash


async def get_branch_info(root_path: str) -> str:
    current = await run_git(["rev-parse", "--abbrev-ref", "HEAD"], root_path)
    commit_hash = await run_git(["rev-parse", "--short=8", "HEAD"], root_path)
    branches = await run_git(["branch", "--format=%(refname:short)"], root_path)
    all_branches = ", ".join(branches.splitlines()) or current
    return f"Current branch: {current} ({commit_hash})\nAll branches: {all_branches}"


async def get_commit_history(root_path: str, limit: int = 10) -> str:
    try:
        output = await run_git(
            ["log", f"-{limit}", "--format=%h%x1f%s%x1f%an%x1f%ad", "--date=format:%Y-%m-%d %H:%M"],
            root_path,
        )
    except GitCommandError as e:
        if "does not have any commits" in str(e):
            return "No commits found"
        raise
    if not output:
        return "No commits found"

    lines = output.splitlines()
    result = [f"Recent {len(lines)} commits:", ""]
    for line in lines:
        commit_hash, subject, author, date = line.split("\x1f")
        result.append(f"{commit_hash} - {subject}")
        result.append(f"        {author} - {date}")
        result.append("")
    return "\n".join(result)


def summarize_changes(status_lines: list[str]) -> str:
    """Count changed files by kind from porcelain status lines."""
    counts: dict[str, int] = {}
    for line in status_lines:
        label = STATUS_DESCRIPTIONS.get(line[:2], "Changed").split(" (")[0]
        counts[label] = counts.get(label, 0) + 1
    return "\n".join(f"- {label}: {count} file(s)" for label, count in counts.items())


def clean_commit_message(text: str) -> str:
    return text.strip().replace("\n", " ").strip("\"'`")


class CommitGenerator:
    """Writes conventional commit messages with an LLM provider."""

    def __init__(self, provider: LLMProvider, model: str = "", max_tokens: int = 150, temperature: float = 0.3):
        self.provider = provider
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def generate_commit_message(self, root_path: str) -> str:
        """Ask the provider for a message describing the working tree changes.

        Raises:
            GitCommandError: If there is nothing to commit
        """
        status_lines = await get_porcelain_status(root_path)
        if not status_lines:
            raise GitCommandError("no changes to commit")

        prompt = COMMIT_PROMPT.format(
            summary=summarize_changes(status_lines),
            status=format_status("\n".join(status_lines)),
        )
        request = GenerateRequest(
            messages=[
                Message(role="system", content=COMMIT_SYSTEM_PROMPT),
                Message(role="user", content=prompt),
            ],
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        response = await self.provider.generate_response(request)
        return clean_commit_message(response.content)

    async def commit_with_ai(self, root_path: str, author_name: str, author_email: str) -> str:
        message = await self.generate_commit_message(root_path)
        commit_hash = await commit_all(root_path, message, author_name, author_email)
        return f"Committed with message: {message}\nCommit: {commit_hash}"
