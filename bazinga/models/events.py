"""UI event types and the ordered, non-blocking channel that carries them."""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Literal

from bazinga.models.permissions import PermissionDecision, RiskLevel
from bazinga.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ContentDelta:
    text: str


@dataclass
class ToolCallStarted:
    tool_name: str
    args: dict[str, Any]
    tool_id: str = ""
    task_group: str | None = None


@dataclass
class ToolCallCompleted:
    tool_name: str
    args: dict[str, Any]
    result: str
    state: Literal["complete", "error"]
    error: str | None = None
    tool_id: str = ""
    task_group: str | None = None


@dataclass
class TaskGroupStarted:
    task_name: str


@dataclass
class PermissionRequired:
    """Asks the UI to approve or deny a queued tool call.

    The UI answers by resolving ``response`` through the tool queue
    (``approve_tool``/``deny_tool``) or directly with a PermissionDecision.
    """

    tool_id: str
    tool_name: str
    args: dict[str, Any]
    risk: RiskLevel
    risk_reasons: list[str]
    affected: list[str]
    prompt: str
    response: "asyncio.Future[PermissionDecision]"
    queue_position: int = 1
    total_queued: int = 1


@dataclass
class TurnError:
    """A turn-level failure surfaced to the UI."""

    message: str


UIEvent = ContentDelta | ToolCallStarted | ToolCallCompleted | TaskGroupStarted | PermissionRequired | TurnError


@dataclass
class EventChannel:
    """Single-producer event channel with a non-blocking send.

    ``send_nowait`` never suspends; when the buffer is full the event is dropped
    and a warning is logged. ``close`` always succeeds and ends iteration once the
    buffered events are drained.
    """

    capacity: int = 256
    _buffer: deque = field(default_factory=deque)
    _ready: asyncio.Event = field(default_factory=asyncio.Event)
    _closed: bool = False
    task: asyncio.Task | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def send_nowait(self, event: UIEvent) -> bool:
        """Buffer an event for the consumer.

        Returns:
            True if the event was buffered, False if dropped
        """
        if self._closed:
            logger.warning(f"Dropping {type(event).__name__}: channel closed")
            return False
        if len(self._buffer) >= self.capacity:
            logger.warning(f"UI channel blocked, dropping {type(event).__name__}")
            return False
        self._buffer.append(event)
        self._ready.set()
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._ready.set()

    def cancel(self) -> None:
        """Cancel the producing turn, if any."""
        if self.task is not None and not self.task.done():
            self.task.cancel()

    def __aiter__(self):
        return self

    async def __anext__(self) -> UIEvent:
        while True:
            if self._buffer:
                return self._buffer.popleft()
            if self._closed:
                raise StopAsyncIteration
            self._ready.clear()
            await self._ready.wait()

    async def drain(self) -> list[UIEvent]:
        """Collect every event until the channel closes."""
        return [event async for event in self]
