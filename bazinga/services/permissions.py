"""Risk classification and allow/prompt/deny resolution for tool calls."""

import asyncio
import re
import threading

from bazinga.models.llm import ToolCall
from bazinga.models.permissions import (
    PermissionDecision,
    PermissionLevel,
    RiskLevel,
    ToolPermissionRule,
)
from bazinga.services.tool_queue import ToolQueue
from bazinga.utils.logging import get_logger

logger = get_logger(__name__)

SAFE_TOOLS = [
    "read_file", "list_files", "grep", "find", "fuzzy_search",
    "git_status", "git_diff", "git_log", "todo_read", "todo_write",
]  # fmt: skip
WRITE_TOOLS = [
    "write_file", "create_file", "edit_file", "multi_edit_file", "move_file",
    "copy_file", "delete_file", "create_dir", "delete_dir",
]  # fmt: skip
PROMPT_TOOLS = ["bash", "git_add", "git_commit", "git_branch", "web_fetch"]

LOW_RISK_TOOLS = {"read_file", "list_files", "grep", "find", "fuzzy_search", "git_status", "git_diff", "git_log", "todo_read"}
HIGH_RISK_TOOLS = {"bash", "git_branch", "web_fetch"}

SYSTEM_PATH_MARKERS = ["/etc/", "/bin/", "/sbin/", "/usr/bin/", "/usr/sbin/"]
SENSITIVE_PATH_MARKERS = [".env", ".key", ".pem", ".p12", ".pfx", "passwd", "shadow", "sudoers"]

# (pattern, warning) for shell commands; a None warning escalates without a dedicated message
SHELL_CONDITIONS = [
    (re.compile(r"\brm\s+-rf\b"), "Destructive file operation"),
    (re.compile(r"\bsudo\b"), "Requires elevated privileges"),
    (re.compile(r"\bsu\b"), "Requires elevated privileges"),
    (re.compile(r"\bchmod\s+\+x\b"), None),
    (re.compile(r"\bcurl\b"), "Network access required"),
    (re.compile(r"\bwget\b"), "Network access required"),
    (re.compile(r"\bnpm\s+install\b"), None),
    (re.compile(r"\bpip\s+install\b"), None),
    (re.compile(r"\bgo\s+install\b"), None),
    (re.compile(r"\bdocker\b"), None),
    (re.compile(r"\bsystemctl\b"), None),
    (re.compile(r"\bservice\b"), None),
]
GIT_HISTORY_MARKERS = ["rebase", "reset --hard", "push --force", "commit --amend"]

RISK_ICONS = {RiskLevel.LOW: "🟢", RiskLevel.MEDIUM: "🟡", RiskLevel.HIGH: "🔴"}


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else f"{text[: limit - 3]}..."


def _unique(items: list[str]) -> list[str]:
    return list(dict.fromkeys(items))


class PermissionManager:
    """Decides whether a tool call may run, prompting through the tool queue when needed.

    Remembered decisions are kept in memory for the lifetime of the manager only.
    """

    def __init__(self, queue: ToolQueue, terminator: bool = False):
        self.queue = queue
        self.terminator = terminator
        self.default_permission = PermissionLevel.PROMPT
        self.rules: dict[str, ToolPermissionRule] = {}
        self._patterns: dict[str, PermissionDecision] = {}
        self._lock = threading.Lock()
        self._set_default_rules()

    def _set_default_rules(self) -> None:
        for name in SAFE_TOOLS:
            self.rules[name] = ToolPermissionRule(name, PermissionLevel.ALLOW)
        for name in WRITE_TOOLS + PROMPT_TOOLS:
            self.rules[name] = ToolPermissionRule(name, PermissionLevel.PROMPT)

    def set_rule(self, rule: ToolPermissionRule) -> None:
        self.rules[rule.tool_name] = rule

    def _condition_warnings(self, tool_call: ToolCall) -> tuple[bool, list[str]]:
        """Check argument-level conditions that escalate a call to high risk."""
        escalated = False
        warnings: list[str] = []

        file_path = tool_call.input.get("file_path")
        if isinstance(file_path, str):
            lowered = file_path.lower()
            if any(marker in lowered for marker in SYSTEM_PATH_MARKERS):
                escalated = True
                warnings.append("Modifying system files")
            if any(marker in lowered for marker in SENSITIVE_PATH_MARKERS):
                escalated = True
                warnings.append("Accessing sensitive files")

        command = tool_call.input.get("command")
        if tool_call.name == "bash" and isinstance(command, str):
            lowered = command.lower()
            for pattern, warning in SHELL_CONDITIONS:
                if pattern.search(lowered):
                    escalated = True
                    if warning:
                        warnings.append(warning)

        if tool_call.name.startswith("git_") and isinstance(command, str):
            if any(marker in command.lower() for marker in GIT_HISTORY_MARKERS):
                escalated = True
                warnings.append("Modifies git history")

        return escalated, _unique(warnings)

    def get_permission_level(self, tool_call: ToolCall) -> PermissionLevel:
        rule = self.rules.get(tool_call.name)
        if rule is None:
            return self.default_permission
        escalated, _ = self._condition_warnings(tool_call)
        if escalated:
            return PermissionLevel.PROMPT
        return rule.permission

    def assess_risk(self, tool_call: ToolCall) -> tuple[RiskLevel, list[str]]:
        """Risk level and the reasons behind it."""
        escalated, warnings = self._condition_warnings(tool_call)
        reasons = list(warnings)
        if tool_call.name == "delete_file":
            reasons.append("File deletion")
        elif tool_call.name == "web_fetch":
            reasons.append("External network request")

        if escalated:
            return RiskLevel.HIGH, reasons
        if tool_call.name in LOW_RISK_TOOLS:
            return RiskLevel.LOW, reasons
        if tool_call.name in HIGH_RISK_TOOLS:
            return RiskLevel.HIGH, reasons
        return RiskLevel.MEDIUM, reasons

    @staticmethod
    def describe_action(tool_call: ToolCall) -> str:
        args = tool_call.input
        match tool_call.name:
            case "read_file":
                return f"Read file '{args['file_path']}'" if "file_path" in args else "Read a file"
            case "write_file" | "create_file":
                return f"Write to file '{args['file_path']}'" if "file_path" in args else "Write to a file"
            case "edit_file" | "multi_edit_file":
                return f"Edit file '{args['file_path']}'" if "file_path" in args else "Edit a file"
            case "delete_file":
                return f"Delete file '{args['file_path']}'" if "file_path" in args else "Delete a file"
            case "bash":
                return f"Run command '{args['command']}'" if "command" in args else "Execute a shell command"
            case "git_commit":
                return f"Git commit with message '{args['message']}'" if "message" in args else "Create a git commit"
            case "web_fetch":
                return f"Fetch data from '{args['url']}'" if "url" in args else "Fetch data from the web"
            case _:
                return f"Execute {tool_call.name} tool"

    @staticmethod
    def _details(tool_call: ToolCall) -> str:
        args = tool_call.input
        if tool_call.name == "edit_file" and "old_text" in args and "new_text" in args:
            return f"Replace '{_truncate(str(args['old_text']), 50)}' with '{_truncate(str(args['new_text']), 50)}'"
        if tool_call.name == "bash" and "command" in args:
            return f"Command: {_truncate(str(args['command']), 100)}"
        return ""

    def format_prompt(self, tool_call: ToolCall) -> str:
        """User-facing permission prompt: action, risk label, details and warnings."""
        risk, _ = self.assess_risk(tool_call)
        lines = [
            f"Permission required: {self.describe_action(tool_call)}",
            f"{RISK_ICONS[risk]} Risk: {risk.value.upper()}",
        ]
        if details := self._details(tool_call):
            lines.append(f"Details: {details}")
        _, warnings = self._condition_warnings(tool_call)
        if warnings:
            lines.append(f"⚠ {', '.join(warnings)}")
        return "\n".join(lines)

    @staticmethod
    def pattern_key(tool_call: ToolCall) -> str:
        """Cache key: tool name plus the file path or first command token."""
        key = tool_call.name
        file_path = tool_call.input.get("file_path")
        if isinstance(file_path, str) and file_path:
            key += f":{file_path}"
        command = tool_call.input.get("command")
        if isinstance(command, str) and command.split():
            key += f":{command.split()[0]}"
        return key

    def remember_decision(self, tool_call: ToolCall, decision: PermissionDecision) -> None:
        with self._lock:
            self._patterns[self.pattern_key(tool_call)] = decision

    def cached_decision(self, tool_call: ToolCall) -> PermissionDecision | None:
        with self._lock:
            return self._patterns.get(self.pattern_key(tool_call))

    def clear_remembered(self) -> None:
        with self._lock:
            self._patterns.clear()

    async def check_permission(self, tool_call: ToolCall) -> bool:
        """Resolve a tool call to allowed or not, prompting the user if required.

        A remembered decision short-circuits without any UI event. If the pending
        request is cancelled while the turn itself is still running, the call is
        treated as denied.
        """
        if self.terminator:
            return True

        level = self.get_permission_level(tool_call)
        if level == PermissionLevel.ALLOW:
            return True
        if level == PermissionLevel.DENY:
            logger.info(f"Tool {tool_call.name} denied by rule")
            return False

        if (cached := self.cached_decision(tool_call)) is not None:
            logger.debug(f"Using remembered decision for {self.pattern_key(tool_call)}: {cached.approved}")
            return cached.approved

        risk, reasons = self.assess_risk(tool_call)
        entry = self.queue.add_tool(tool_call, risk, reasons, self.format_prompt(tool_call))
        self.queue.send_permission_request(entry.id)

        try:
            decision = await entry.response
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            logger.info(f"Permission request for {tool_call.name} was cancelled")
            return False
        finally:
            self.queue.complete_tool(entry.id)

        if decision.remember:
            self.remember_decision(tool_call, decision)
        return decision.approved
