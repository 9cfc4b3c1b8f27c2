"""Streaming turn loop: provider stream fan-out, tool execution and re-invocation."""

import asyncio
import json
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from bazinga.clients.base import LLMProvider
from bazinga.errors import ProviderError, ProviderNotFoundError, ToolError, ToolPermissionDenied, UnknownToolError
from bazinga.models.events import (
    ContentDelta,
    EventChannel,
    TaskGroupStarted,
    ToolCallCompleted,
    ToolCallStarted,
    TurnError,
    UIEvent,
)
from bazinga.models.llm import GenerateRequest, Message, StreamChunk, TextBlock, ToolCall, ToolUseBlock
from bazinga.models.session import Session
from bazinga.services.prompts import tool_context_note
from bazinga.utils.logging import get_logger

logger = get_logger(__name__)

EMPTY_RESPONSE_FALLBACK = "I received your message but didn't generate a response. Please try again."
FOLLOW_UP_FALLBACK = (
    "I executed the tool successfully, but encountered an issue generating a follow-up response. "
    "The tool operation completed as requested."
)

TOOL_RESULT_TEMPLATE = '<tool_result tool="{name}" tool_id="{id}">\n{body}\n</tool_result>'
TOOL_ERROR_TEMPLATE = '<tool_result tool="{name}" tool_id="{id}" error="true">\nError: {body}\n</tool_result>'
LEGACY_RESULT_TEMPLATE = "Tool results from '{name}':\n{body}"

TOOL_CATEGORIES = {
    "read_file": "read",
    "write_file": "edit",
    "create_file": "edit",
    "edit_file": "edit",
    "multi_edit_file": "edit",
    "bash": "run",
    "grep": "search",
    "find": "search",
    "fuzzy_search": "search",
}

# First rule whose categories are all present names the group
TASK_NAME_RULES = [
    ({"search", "read"}, "Find and analyze code"),
    ({"edit", "run"}, "Modify and test code"),
    ({"git", "edit"}, "Update and commit changes"),
    ({"run"}, "Execute commands"),
    ({"edit"}, "Modify files"),
    ({"search"}, "Search codebase"),
    ({"read"}, "Analyze files"),
    ({"git"}, "Git operations"),
]
DEFAULT_TASK_NAME = "Multiple operations"


def tool_category(name: str) -> str:
    if name in TOOL_CATEGORIES:
        return TOOL_CATEGORIES[name]
    if name.startswith("git_"):
        return "git"
    if name.startswith("todo_"):
        return "todo"
    return "other"


def derive_task_name(tool_calls: list[ToolCall]) -> str:
    """Human-readable label for a batch of tool calls, decided by which categories occur."""
    categories = {tool_category(call.name) for call in tool_calls}
    for required, name in TASK_NAME_RULES:
        if required <= categories:
            return name
    return DEFAULT_TASK_NAME


def frame_tool_result(tool_call: ToolCall, result: str) -> Message:
    return Message(role="user", content=TOOL_RESULT_TEMPLATE.format(name=tool_call.name, id=tool_call.id, body=result))


def frame_tool_error(tool_call: ToolCall, error: str) -> Message:
    return Message(role="user", content=TOOL_ERROR_TEMPLATE.format(name=tool_call.name, id=tool_call.id, body=error))


def count_recent_tool_uses(history: list[Message], window: int = 10) -> int:
    """Number of tool_use blocks in the trailing window of history."""
    return sum(len(message.tool_use_blocks()) for message in history[-window:])


@dataclass
class StreamRound:
    """What one provider stream produced."""

    content: list[str] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    chunk_count: int = 0

    @property
    def text(self) -> str:
        return "".join(self.content)


class ToolCallAssembler:
    """Collects tool calls whose input arrives as streamed JSON fragments.

    A call starts with its id and name, fragments append to the most recently
    started call, and ``content_block_stop`` finalizes every pending call.
    """

    def __init__(self):
        self.pending: dict[str, ToolCall] = {}
        self.buffers: dict[str, str] = {}
        self.latest_id = ""
        self.completed: list[ToolCall] = []

    def start(self, tool_call: ToolCall) -> None:
        self.pending[tool_call.id] = tool_call.model_copy(deep=True)
        self.latest_id = tool_call.id
        logger.debug(f"Tool call started: {tool_call.name} ({tool_call.id})")

    def add_fragment(self, fragment: str) -> None:
        if self.latest_id in self.pending:
            self.buffers[self.latest_id] = self.buffers.get(self.latest_id, "") + fragment
        else:
            logger.warning(f"Dropping tool input fragment with no pending tool call: {fragment!r}")

    def finalize(self) -> None:
        for tool_id, tool_call in self.pending.items():
            if raw := self.buffers.get(tool_id, ""):
                try:
                    parsed = json.loads(raw)
                except json.JSONDecodeError as e:
                    logger.warning(f"Failed to parse input for tool {tool_call.name} ({tool_id}): {e}")
                    parsed = {}
                if not isinstance(parsed, dict):
                    logger.warning(f"Tool input for {tool_call.name} ({tool_id}) is not an object")
                    parsed = {}
                tool_call.input = parsed
            self.completed.append(tool_call)
        self.pending.clear()
        self.buffers.clear()
        self.latest_id = ""


async def _close_stream(stream: AsyncIterator[StreamChunk]) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()


class StreamOrchestrator:
    """Runs conversation turns for a session and reports progress as UI events.

    Each call to ``process_message_stream`` starts one producer task that owns the
    returned channel. Tool calls run sequentially after each provider stream ends;
    their results are fed back to the model until it answers without tools.
    """

    def __init__(
        self,
        max_tool_depth: int = 10,
        history_window: int = 10,
        max_follow_up_rounds: int = 10,
        channel_capacity: int = 256,
    ):
        self.max_tool_depth = max_tool_depth
        self.history_window = history_window
        self.max_follow_up_rounds = max_follow_up_rounds
        self.channel_capacity = channel_capacity

    @staticmethod
    def _send(channel: EventChannel, event: UIEvent) -> None:
        channel.send_nowait(event)

    async def process_message_stream(self, session: Session, user_text: str) -> EventChannel:
        """Record the user message and start the turn.

        Returns:
            The channel carrying this turn's events; it is closed exactly once when
            the turn ends, fails or is cancelled. ``channel.cancel()`` aborts the turn.
        """
        session.add_message(Message(role="user", content=user_text))
        session.save_quietly("user message")

        channel = EventChannel(capacity=self.channel_capacity)
        channel.task = asyncio.create_task(self._produce(session, user_text, channel), name=f"turn-{session.id}")
        return channel

    async def _produce(self, session: Session, user_text: str, channel: EventChannel) -> None:
        session.tool_queue.ui_channel = channel
        try:
            await self._run_round(session, user_text, channel, round_index=0)
        except asyncio.CancelledError:
            logger.info(f"Turn cancelled for session {session.id}")
            raise
        except ProviderError as e:
            logger.error(f"Turn failed for session {session.id}: {e}")
            self._send(channel, TurnError(str(e)))
        except Exception as e:
            logger.error(f"Unexpected error during turn for session {session.id}: {e}", exc_info=True)
            self._send(channel, TurnError(f"unexpected error: {e}"))
        finally:
            session.tool_queue.cancel_all()
            session.tool_queue.ui_channel = None
            channel.close()
            session.save_quietly("turn")

    def _resolve_provider(self, session: Session) -> LLMProvider:
        """The session's provider, or the first-listed one if it is unavailable.

        Raises:
            ProviderError: If neither can be obtained
        """
        manager = session.provider_manager
        if manager is None:
            raise ProviderError("no provider manager configured")
        try:
            return manager.get_provider(session.provider)
        except ProviderNotFoundError as e:
            providers = manager.list_providers()
            if not providers:
                raise ProviderError(f"failed to get provider and no fallbacks available: {e}") from e
            fallback = providers[0]
            logger.warning(f"Provider {session.provider or 'none'} unavailable, falling back to {fallback}")
            provider = manager.get_provider(fallback)
            self._switch_provider(session, fallback, provider)
            return provider

    @staticmethod
    def _switch_provider(session: Session, name: str, provider: LLMProvider) -> None:
        session.provider = name
        session.model = provider.get_default_model()
        session.touch()

    async def _open_stream(
        self, session: Session, request: GenerateRequest, allow_fallback: bool
    ) -> AsyncIterator[StreamChunk]:
        provider = self._resolve_provider(session)
        try:
            return await provider.stream_response(request)
        except ProviderError as e:
            providers = session.provider_manager.list_providers()
            if not allow_fallback or not providers or providers[0] == session.provider:
                raise
            fallback = providers[0]
            logger.warning(f"Provider {session.provider} failed ({e}), retrying once with {fallback}")
            provider = session.provider_manager.get_provider(fallback)
            self._switch_provider(session, fallback, provider)
            request.model = session.model
            return await provider.stream_response(request)

    def _build_request(self, session: Session, user_text: str, follow_up: bool, tools_enabled: bool) -> GenerateRequest:
        messages = session.context_manager.build_optimized_context(
            session, session.history, user_text, follow_up=follow_up
        )
        tools = []
        if tools_enabled:
            note = tool_context_note(session.get_project_summary(), session.memory_content)
            tools = session.tools.get_tool_specs(note)
        return GenerateRequest(
            messages=messages,
            model=session.model,
            max_tokens=session.config.llm.max_tokens,
            temperature=session.config.llm.temperature,
            tools=tools,
            stream=True,
        )

    async def _consume(
        self, stream: AsyncIterator[StreamChunk], channel: EventChannel, tools_enabled: bool
    ) -> StreamRound:
        result = StreamRound()
        assembler = ToolCallAssembler()
        try:
            async for chunk in stream:
                result.chunk_count += 1
                if chunk.type == "error":
                    raise ProviderError(chunk.content or "provider stream error")

                if chunk.content:
                    self._send(channel, ContentDelta(chunk.content))
                    result.content.append(chunk.content)

                if chunk.tool_call is not None and chunk.tool_call.id:
                    if tools_enabled:
                        assembler.start(chunk.tool_call)
                    else:
                        logger.warning(f"Ignoring tool call {chunk.tool_call.name} while tools are disabled")

                if chunk.tool_input_delta:
                    assembler.add_fragment(chunk.tool_input_delta)

                if chunk.type == "content_block_stop" and assembler.pending:
                    assembler.finalize()
        finally:
            await _close_stream(stream)

        if assembler.pending:
            logger.warning(f"Stream ended with {len(assembler.pending)} unfinished tool calls, finalizing")
            assembler.finalize()
        result.tool_calls = assembler.completed
        return result

    async def _run_round(self, session: Session, user_text: str, channel: EventChannel, round_index: int) -> None:
        follow_up = round_index > 0
        depth = count_recent_tool_uses(session.history, self.history_window)
        tools_enabled = depth < self.max_tool_depth and round_index < self.max_follow_up_rounds
        if not tools_enabled:
            logger.warning(f"Tools disabled for this request (tool depth {depth}, follow-up round {round_index})")

        request = self._build_request(session, user_text, follow_up, tools_enabled)
        stream = await self._open_stream(session, request, allow_fallback=not follow_up)
        if stream is None:
            raise ProviderError(f"provider {session.provider} returned no stream")
        result = await self._consume(stream, channel, tools_enabled)
        logger.debug(
            f"Stream round {round_index} finished: {result.chunk_count} chunks, "
            f"{len(result.text)} chars, {len(result.tool_calls)} tool calls"
        )

        text = result.text
        if not text and not result.tool_calls:
            text = FOLLOW_UP_FALLBACK if follow_up else EMPTY_RESPONSE_FALLBACK
            logger.warning(f"Empty response from provider {session.provider}, sending fallback")
            self._send(channel, ContentDelta(text))

        if result.tool_calls:
            blocks: list[TextBlock | ToolUseBlock] = [TextBlock(text=text)] if text else []
            blocks.extend(ToolUseBlock(id=call.id, name=call.name, input=call.input) for call in result.tool_calls)
            session.add_message(Message(role="assistant", content=blocks))
        else:
            session.add_message(Message(role="assistant", content=text))
        session.save_quietly("assistant message")

        if not result.tool_calls:
            return

        task_group = None
        if len(result.tool_calls) > 1:
            task_group = derive_task_name(result.tool_calls)
            self._send(channel, TaskGroupStarted(task_group))

        for tool_call in result.tool_calls:
            await self._execute_tool(session, channel, tool_call, task_group)
        session.save_quietly("tool results")

        await self._run_round(session, user_text, channel, round_index + 1)

    async def _execute_tool(
        self, session: Session, channel: EventChannel, tool_call: ToolCall, task_group: str | None
    ) -> None:
        self._send(channel, ToolCallStarted(tool_call.name, tool_call.input, tool_call.id, task_group))
        try:
            if not session.tools.has_tool(tool_call.name):
                raise UnknownToolError(tool_call.name)
            if not await session.permissions.check_permission(tool_call):
                raise ToolPermissionDenied(tool_call.name)
            result = await session.tools.execute(tool_call)
        except ToolError as e:
            self._record_failure(session, channel, tool_call, str(e), task_group)
            return
        except Exception as e:
            logger.error(f"Tool {tool_call.name} raised unexpectedly: {e}", exc_info=True)
            self._record_failure(session, channel, tool_call, str(e) or type(e).__name__, task_group)
            return

        logger.info(f"Tool {tool_call.name} ({tool_call.id}) completed")
        session.add_message(frame_tool_result(tool_call, result))
        self._send(
            channel,
            ToolCallCompleted(tool_call.name, tool_call.input, result, "complete", None, tool_call.id, task_group),
        )

    def _record_failure(
        self, session: Session, channel: EventChannel, tool_call: ToolCall, error: str, task_group: str | None
    ) -> None:
        logger.warning(f"Tool {tool_call.name} ({tool_call.id}) failed: {error}")
        session.add_message(frame_tool_error(tool_call, error))
        self._send(
            channel,
            ToolCallCompleted(tool_call.name, tool_call.input, "", "error", error, tool_call.id, task_group),
        )

    async def execute_tool_call(self, session: Session, tool_call: ToolCall) -> str:
        """Run one tool outside a streaming turn and record it as a system message.

        Raises:
            ToolError: If permission is denied or the tool fails (the error is recorded first)
        """
        try:
            if not await session.permissions.check_permission(tool_call):
                raise ToolPermissionDenied(tool_call.name)
            result = await session.tools.execute(tool_call)
        except ToolError as e:
            session.add_system_message(LEGACY_RESULT_TEMPLATE.format(name=tool_call.name, body=f"Error: {e}"))
            session.save_quietly("tool result")
            raise

        session.add_system_message(LEGACY_RESULT_TEMPLATE.format(name=tool_call.name, body=result))
        session.save_quietly("tool result")
        return result
