"""Exception types raised across the assistant."""


class BazingaError(Exception):
    """Base class for all assistant errors."""


class ConfigError(BazingaError):
    """Configuration could not be loaded or saved."""


class SessionError(BazingaError):
    """Session state operation failed."""


class ProviderError(BazingaError):
    """LLM provider failed or is unavailable."""


class ProviderNotFoundError(ProviderError):
    """Requested provider is not registered."""


class ToolNotFoundError(BazingaError):
    """Pending tool id is not present in the tool queue."""

    def __init__(self, message: str = "tool not found in queue"):
        super().__init__(message)


class ToolError(BazingaError):
    """Base class for errors raised while executing a tool."""


class UnknownToolError(ToolError):
    """No tool is registered under the requested name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"unknown tool: {name}")


class ToolValidationError(ToolError):
    """Tool input failed schema validation."""


class ToolPermissionDenied(ToolError):
    """The permission manager or the user refused the tool call."""

    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__(f"permission denied for {tool_name} tool")


class ResourceError(ToolError):
    """A file, directory or remote resource was missing or unusable."""


class DangerousCommandError(ToolError):
    """Shell command matched the static deny list."""

    def __init__(self, command: str):
        self.command = command
        super().__init__(f"potentially dangerous command blocked: {command}")


class CommandNotFoundError(ToolError):
    """First token of a shell command is not on PATH."""

    def __init__(self, executable: str):
        self.executable = executable
        super().__init__(f"command not found: {executable}")


class CommandTimeoutError(ToolError):
    """Shell command exceeded its timeout."""

    def __init__(self, command: str, timeout: float):
        self.command = command
        self.timeout = timeout
        super().__init__(f"command timed out after {timeout:g}s: {command}")


class CommandFailedError(ToolError):
    """Shell command exited with a non-zero status."""

    def __init__(self, command: str, working_dir: str, exit_code: int, duration: float, output: str):
        self.command = command
        self.working_dir = working_dir
        self.exit_code = exit_code
        self.duration = duration
        self.output = output
        super().__init__(
            f"Command failed with exit code {exit_code}\n"
            f"Command: {command}\n"
            f"Working Directory: {working_dir}\n"
            f"Duration: {duration:.3f}s\n"
            f"Output:\n{output}"
        )


class GitCommandError(ToolError):
    """A git subprocess failed."""
