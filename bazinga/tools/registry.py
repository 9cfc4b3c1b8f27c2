"""Tools registry for managing AI assistant tools."""

from bazinga.errors import UnknownToolError
from bazinga.models.llm import ToolCall, ToolSpec
from bazinga.tools.base import ToolContext, ToolDefinition
from bazinga.tools.bash import create_bash_tool
from bazinga.tools.files import create_file_tools
from bazinga.tools.git import create_git_tools
from bazinga.tools.search import create_search_tools
from bazinga.tools.todo import create_todo_tools
from bazinga.tools.web import create_web_tool
from bazinga.utils.logging import get_logger

logger = get_logger(__name__)

# Tools whose descriptions carry the session's project and memory context
CONTEXT_AWARE_TOOLS = {"read_file", "write_file", "edit_file", "create_file", "bash"}


class ToolsRegistry:
    """Registry for managing AI assistant tools."""

    def __init__(self, context: ToolContext):
        """Initialize tools registry bound to one session's tool context."""
        self.context = context
        self._tools: dict[str, ToolDefinition] = {}
        self._register_default_tools()

    def _register_default_tools(self) -> None:
        """Register the default set of coding assistant tools."""
        tools = [
            *create_file_tools(),
            create_bash_tool(),
            *create_search_tools(),
            *create_git_tools(),
            *create_todo_tools(),
            create_web_tool(),
        ]

        for tool in tools:
            self.register_tool(tool)

    def register_tool(self, tool: ToolDefinition) -> None:
        """Register a new tool in the registry."""
        self._tools[tool.name] = tool

    def get_tool(self, name: str) -> ToolDefinition:
        tool = self._tools.get(name)
        if tool is None:
            raise UnknownToolError(name)
        return tool

    def get_tool_specs(self, context_note: str = "") -> list[ToolSpec]:
        """Get provider tool schemas, appending context_note to file and shell tool descriptions."""
        specs = []
        for name, tool in self._tools.items():
            description = tool.description
            if context_note and name in CONTEXT_AWARE_TOOLS:
                description = f"{description}\n\n{context_note}"
            specs.append(ToolSpec(name=name, description=description, input_schema=tool.get_json_schema()))
        return specs

    def get_tool_names(self) -> list[str]:
        """Get list of all registered tool names."""
        return list(self._tools.keys())

    def has_tool(self, name: str) -> bool:
        """Check if a tool is registered."""
        return name in self._tools

    async def execute(self, tool_call: ToolCall) -> str:
        """Validate the call's input and run its handler.

        Raises:
            UnknownToolError: If no tool is registered under tool_call.name
            ToolValidationError: If the input fails the tool's schema (before any side effect)
            ToolError: Whatever the handler raises
        """
        tool = self.get_tool(tool_call.name)
        params = tool.parse_input(tool_call.input)
        logger.debug(f"Executing tool {tool_call.name} ({tool_call.id})")
        return await tool.handler(params, self.context)
