"""Queue of tool calls awaiting a user permission decision."""

import asyncio
import threading

from cuid2 import cuid_wrapper

from bazinga.errors import ToolNotFoundError
from bazinga.models.events import EventChannel, PermissionRequired
from bazinga.models.llm import ToolCall
from bazinga.models.permissions import PendingToolCall, PermissionDecision, RiskLevel, ToolState
from bazinga.utils.logging import get_logger

logger = get_logger(__name__)

generate_queue_id = cuid_wrapper()


def affected_resources(tool_call: ToolCall) -> list[str]:
    """Human-readable list of what a tool call touches."""
    resources = []
    if file_path := tool_call.input.get("file_path"):
        resources.append(str(file_path))
    if command := tool_call.input.get("command"):
        resources.append(f"command: {command}")
    if url := tool_call.input.get("url"):
        resources.append(f"url: {url}")
    return resources


class ToolQueue:
    """FIFO registry of PendingToolCalls.

    State transitions happen under a lock; each entry's future is resolved at most
    once, on the loop that created it.
    """

    def __init__(self, ui_channel: EventChannel | None = None):
        self.ui_channel = ui_channel
        self._lock = threading.RLock()
        self._entries: dict[str, PendingToolCall] = {}

    def add_tool(
        self,
        tool_call: ToolCall,
        risk: RiskLevel = RiskLevel.MEDIUM,
        risk_reasons: list[str] | None = None,
        prompt: str = "",
    ) -> PendingToolCall:
        loop = asyncio.get_running_loop()
        entry = PendingToolCall(
            id=generate_queue_id(),
            tool_call=tool_call,
            response=loop.create_future(),
            risk=risk,
            risk_reasons=risk_reasons or [],
            affected_resources=affected_resources(tool_call),
            prompt=prompt,
        )
        with self._lock:
            self._entries[entry.id] = entry
        logger.debug(f"Queued tool {tool_call.name} as {entry.id}")
        return entry

    def get_tool(self, tool_id: str) -> PendingToolCall:
        with self._lock:
            entry = self._entries.get(tool_id)
        if entry is None:
            raise ToolNotFoundError()
        return entry

    def get_pending_tools(self) -> list[PendingToolCall]:
        """Entries still waiting for a decision, oldest first."""
        with self._lock:
            return [
                entry
                for entry in self._entries.values()
                if entry.state in (ToolState.PENDING, ToolState.AWAITING_PERMISSION)
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def send_permission_request(self, tool_id: str) -> bool:
        """Mark the entry awaiting and publish a PermissionRequired event without blocking.

        Returns:
            False if there is no UI channel or the event was dropped. The entry stays
            awaiting until it is resolved or cancelled.
        """
        with self._lock:
            entry = self._entries.get(tool_id)
            if entry is None:
                raise ToolNotFoundError()
            entry.state = ToolState.AWAITING_PERMISSION
            waiting = [e.id for e in self._entries.values() if e.state == ToolState.AWAITING_PERMISSION]

        if self.ui_channel is None:
            logger.warning(f"No UI channel for permission request {tool_id}")
            return False

        event = PermissionRequired(
            tool_id=entry.id,
            tool_name=entry.tool_call.name,
            args=entry.tool_call.input,
            risk=entry.risk,
            risk_reasons=entry.risk_reasons,
            affected=entry.affected_resources,
            prompt=entry.prompt,
            response=entry.response,
            queue_position=waiting.index(entry.id) + 1,
            total_queued=len(waiting),
        )
        if not self.ui_channel.send_nowait(event):
            logger.warning(f"Permission request for {entry.tool_call.name} was dropped, awaiting decision")
            return False
        return True

    @staticmethod
    def _resolve(entry: PendingToolCall, decision: PermissionDecision | None) -> None:
        future = entry.response

        def settle() -> None:
            if future.done():
                return
            if decision is None:
                future.cancel()
            else:
                future.set_result(decision)

        loop = future.get_loop()
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            settle()
        else:
            loop.call_soon_threadsafe(settle)

    def approve_tool(self, tool_id: str, remember: bool = False) -> None:
        """Approve an awaiting entry; a second decision on the same entry is ignored.

        Raises:
            ToolNotFoundError: If the id is unknown
        """
        with self._lock:
            entry = self._entries.get(tool_id)
            if entry is None:
                raise ToolNotFoundError()
            if entry.state not in (ToolState.PENDING, ToolState.AWAITING_PERMISSION):
                return
            entry.state = ToolState.EXECUTING
        logger.info(f"Tool {entry.tool_call.name} approved (remember={remember})")
        self._resolve(entry, PermissionDecision(approved=True, remember=remember))

    def deny_tool(self, tool_id: str, remember: bool = False) -> None:
        """Deny an awaiting entry and remove it from the queue.

        Raises:
            ToolNotFoundError: If the id is unknown
        """
        with self._lock:
            entry = self._entries.get(tool_id)
            if entry is None:
                raise ToolNotFoundError()
            if entry.state not in (ToolState.PENDING, ToolState.AWAITING_PERMISSION):
                return
            entry.state = ToolState.DENIED
            del self._entries[tool_id]
        logger.info(f"Tool {entry.tool_call.name} denied")
        self._resolve(entry, PermissionDecision(approved=False, remember=remember, reason="denied by user"))

    def complete_tool(self, tool_id: str) -> None:
        with self._lock:
            entry = self._entries.pop(tool_id, None)
        if entry is not None:
            entry.state = ToolState.COMPLETED

    def remove_tool(self, tool_id: str) -> None:
        with self._lock:
            self._entries.pop(tool_id, None)

    def cancel_all(self) -> int:
        """Resolve every undecided entry as cancelled and clear the queue."""
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()

        cancelled = 0
        for entry in entries:
            if entry.state in (ToolState.PENDING, ToolState.AWAITING_PERMISSION):
                entry.state = ToolState.CANCELLED
                self._resolve(entry, None)
                cancelled += 1
        if cancelled:
            logger.info(f"Cancelled {cancelled} pending tool calls")
        return cancelled
