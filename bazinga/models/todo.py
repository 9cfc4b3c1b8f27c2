"""Todo item model."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

TodoStatus = Literal["pending", "in_progress", "completed", "canceled"]
TodoPriority = Literal["high", "medium", "low"]


class TodoItem(BaseModel):
    """A persisted todo entry."""

    id: str
    content: str
    status: TodoStatus = "pending"
    priority: TodoPriority = "medium"
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None
