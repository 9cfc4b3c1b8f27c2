"""Todo list tools."""

from pydantic import BaseModel, Field

from bazinga.errors import ResourceError
from bazinga.services.todos import TodoStore, quick_summary
from bazinga.tools.base import ToolContext, ToolDefinition


class TodoReadInput(BaseModel):
    pass


class TodoWriteInput(BaseModel):
    todos: str = Field(
        ...,
        description=(
            "JSON array of todo items. Each item needs id and content; status is one of pending, "
            "in_progress, completed, canceled; priority is one of high, medium, low."
        ),
    )


def _store(ctx: ToolContext) -> TodoStore:
    if ctx.todo_store is None:
        raise ResourceError("todo storage is not configured for this session")
    return ctx.todo_store


async def todo_read(params: TodoReadInput, ctx: ToolContext) -> str:
    return _store(ctx).read_display()


async def todo_write(params: TodoWriteInput, ctx: ToolContext) -> str:
    items = _store(ctx).write(params.todos)
    summary = quick_summary(items)
    return f"Todo list updated successfully\n{summary}" if summary else "Todo list updated successfully"


def create_todo_tools() -> list[ToolDefinition]:
    return [
        ToolDefinition("todo_read", "Read the current todo list for this project", TodoReadInput, todo_read),
        ToolDefinition(
            "todo_write",
            "Replace the todo list. Use for multi-step tasks; keep one item in_progress at a time.",
            TodoWriteInput,
            todo_write,
        ),
    ]
