"""Shell command tool."""

import asyncio
import os
import re
import shlex
import shutil
import signal
import time
from pathlib import Path

from pydantic import BaseModel, Field

from bazinga.errors import (
    CommandFailedError,
    CommandNotFoundError,
    CommandTimeoutError,
    DangerousCommandError,
    ResourceError,
)
from bazinga.tools.base import ToolContext, ToolDefinition
from bazinga.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 30.0
MAX_TIMEOUT = 300.0

# Substrings of the lowercased command; any occurrence blocks it
DANGEROUS_COMMANDS = [
    "rm -rf /",
    "rm -rf ~",
    ":(){ :|:& };:",
    "dd if=/dev/zero",
    "chmod -r 777 /",
]

SHELL_BUILTINS = {"cd", "export", "source", ".", "set", "unset", "alias", "exit", "eval", "exec", "type", "ulimit"}


class BashInput(BaseModel):
    command: str = Field(..., description="The shell command to execute")
    working_dir: str | None = Field(None, description="Working directory (relative to the project root)")
    timeout: float | None = Field(None, description="Timeout in seconds (default 30, max 300)")
    env: dict[str, str] | None = Field(None, description="Extra environment variables")


def _first_executable(command: str) -> str | None:
    try:
        tokens = shlex.split(command)
    except ValueError:
        tokens = command.split()

    for token in tokens:
        # Skip leading VAR=value assignments
        if re.match(r"^[A-Za-z_][A-Za-z0-9_]*=", token):
            continue
        return token
    return None


def validate_command(command: str) -> None:
    """Reject deny-listed commands and commands whose executable is not on PATH.

    Raises:
        DangerousCommandError: If the command matches the deny list
        CommandNotFoundError: If the first token cannot be resolved
    """
    normalized = command.strip().lower()
    for dangerous in DANGEROUS_COMMANDS:
        if dangerous in normalized:
            raise DangerousCommandError(command)

    executable = _first_executable(command)
    if executable is None:
        return
    if executable in SHELL_BUILTINS or shutil.which(executable) is not None:
        return
    raise CommandNotFoundError(executable)


def _resolve_timeout(timeout: float | None) -> float:
    if timeout is None or timeout <= 0:
        return DEFAULT_TIMEOUT
    return min(timeout, MAX_TIMEOUT)


def _format_result(command: str, working_dir: str, exit_code: int, duration: float, output: str) -> str:
    lines = [
        f"Command: {command}",
        f"Working Directory: {working_dir}",
        f"Exit Code: {exit_code}",
        f"Duration: {duration:.3f}s",
    ]
    lines.append(f"Output:\n{output}" if output else "Output: (no output)")
    return "\n".join(lines)


async def _terminate(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        await process.wait()


async def run_bash(params: BashInput, ctx: ToolContext) -> str:
    validate_command(params.command)

    working_dir = ctx.root_path
    if params.working_dir:
        working_dir = str(ctx.resolve(params.working_dir))
        if not Path(working_dir).is_dir():
            raise ResourceError(f"working directory does not exist: {working_dir}")

    timeout = _resolve_timeout(params.timeout)
    env = {**os.environ, **ctx.env, **(params.env or {})}

    logger.debug(f"Executing bash command: {params.command} (cwd={working_dir}, timeout={timeout}s)")
    start = time.monotonic()
    process = await asyncio.create_subprocess_exec(
        "bash",
        "-c",
        params.command,
        cwd=working_dir,
        env=env,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
        start_new_session=True,
    )

    try:
        stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except TimeoutError as e:
        await _terminate(process)
        logger.error(f"Bash command timed out after {timeout}s: {params.command}")
        raise CommandTimeoutError(params.command, timeout) from e
    finally:
        # Cancellation of the turn also lands here
        await _terminate(process)

    duration = time.monotonic() - start
    output = stdout.decode("utf-8", errors="replace").strip()
    exit_code = process.returncode or 0

    if exit_code != 0:
        logger.error(f"Bash command failed with exit code {exit_code}: {params.command}")
        raise CommandFailedError(params.command, working_dir, exit_code, duration, output)

    logger.info(f"Bash command succeeded in {duration:.2f}s ({len(output)} bytes output)")
    return _format_result(params.command, working_dir, exit_code, duration, output)


def create_bash_tool() -> ToolDefinition:
    return ToolDefinition(
        name="bash",
        description=(
            "Execute a shell command in the project directory. Use for builds, tests, installs and any "
            "command the user asks to run. Output combines stdout and stderr."
        ),
        input_schema_class=BashInput,
        handler=run_bash,
    )
