"""Tools for the coding assistant."""

from bazinga.tools.base import FileChange, ToolContext, ToolDefinition
from bazinga.tools.registry import ToolsRegistry

__all__ = ["FileChange", "ToolContext", "ToolDefinition", "ToolsRegistry"]
