"""Tests for the streaming turn loop."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from conftest import ScriptedProvider, text_chunk, tool_chunks

from bazinga.errors import ProviderError, ResourceError
from bazinga.models.events import (
    ContentDelta,
    PermissionRequired,
    TaskGroupStarted,
    ToolCallCompleted,
    ToolCallStarted,
    TurnError,
)
from bazinga.models.llm import Message, StreamChunk, TextBlock, ToolCall, ToolUseBlock
from bazinga.services.orchestrator import (
    DEFAULT_TASK_NAME,
    EMPTY_RESPONSE_FALLBACK,
    FOLLOW_UP_FALLBACK,
    StreamOrchestrator,
    ToolCallAssembler,
    count_recent_tool_uses,
    derive_task_name,
)


async def run_turn(session, text, orchestrator=None, approve=None):
    """Run one turn, answering permission prompts with approve (None leaves them unanswered)."""
    orchestrator = orchestrator or StreamOrchestrator()
    channel = await orchestrator.process_message_stream(session, text)
    events = []
    async for event in channel:
        events.append(event)
        if isinstance(event, PermissionRequired) and approve is not None:
            if approve:
                session.tool_queue.approve_tool(event.tool_id)
            else:
                session.tool_queue.deny_tool(event.tool_id)
    await channel.task
    return events


class TestTextTurns:
    """Turns that end without tool calls."""

    @pytest.mark.asyncio
    async def test_streams_text_in_order(self, make_session):
        """Test that deltas arrive in order and the reply is recorded."""
        provider = ScriptedProvider(rounds=[[text_chunk("Hello"), text_chunk(", world")]])
        session = make_session(provider)

        events = await run_turn(session, "hi")

        assert events == [ContentDelta("Hello"), ContentDelta(", world")]
        assert session.history[-2] == Message(role="user", content="hi")
        assert session.history[-1] == Message(role="assistant", content="Hello, world")

    @pytest.mark.asyncio
    async def test_request_carries_context_and_tools(self, make_session):
        """Test that the first request has a system prompt, the user text and tool specs."""
        provider = ScriptedProvider(rounds=[[text_chunk("ok")]])
        session = make_session(provider)

        await run_turn(session, "explain main.py")

        request = provider.requests[0]
        assert request.stream
        assert request.messages[0].role == "system"
        assert request.messages[-1].text() == "explain main.py"
        assert "read_file" in {spec.name for spec in request.tools}
        assert request.model == "fake-model"

    @pytest.mark.asyncio
    async def test_empty_response_gets_fallback(self, make_session):
        """Test that a stream with no text and no tools yields the fallback reply."""
        session = make_session(ScriptedProvider(rounds=[[]]))

        events = await run_turn(session, "hi")

        assert events == [ContentDelta(EMPTY_RESPONSE_FALLBACK)]
        assert session.history[-1].text() == EMPTY_RESPONSE_FALLBACK

    @pytest.mark.asyncio
    async def test_turn_is_persisted(self, make_session):
        """Test that the session is saved with the new messages."""
        session = make_session(ScriptedProvider(rounds=[[text_chunk("saved")]]))

        await run_turn(session, "hi")

        stored = session.storage.load(session.id)
        assert [message["role"] for message in stored["history"]] == ["user", "assistant"]


class TestToolTurns:
    """Turns that execute tools and re-invoke the model."""

    @pytest.mark.asyncio
    async def test_read_then_answer(self, make_session, project_dir):
        """Test a safe tool runs without prompting and its result feeds a follow-up request."""
        (project_dir / "a.txt").write_text("alpha\n")
        provider = ScriptedProvider(
            rounds=[
                [text_chunk("Reading."), *tool_chunks("t1", "read_file", {"file_path": "a.txt"}, split=7)],
                [text_chunk("It says alpha.")],
            ]
        )
        session = make_session(provider)

        events = await run_turn(session, "what is in a.txt")

        assert events[0] == ContentDelta("Reading.")
        assert events[1] == ToolCallStarted("read_file", {"file_path": "a.txt"}, "t1", None)
        assert isinstance(events[2], ToolCallCompleted) and events[2].state == "complete"
        assert "alpha" in events[2].result
        assert events[3] == ContentDelta("It says alpha.")

        assistant = session.history[1]
        assert assistant.content == [
            TextBlock(text="Reading."),
            ToolUseBlock(id="t1", name="read_file", input={"file_path": "a.txt"}),
        ]
        assert session.history[2].text().startswith('<tool_result tool="read_file" tool_id="t1">')
        assert session.history[3].text() == "It says alpha."

        follow_up = provider.requests[1]
        assert follow_up.messages[-1].text() == (
            "Based on the tool results above, please complete the user's request: what is in a.txt"
        )

    @pytest.mark.asyncio
    async def test_dangerous_command_is_reported_as_tool_error(self, make_session):
        """Test that a blocked shell command becomes an error result and the turn continues."""
        provider = ScriptedProvider(
            rounds=[tool_chunks("t1", "bash", {"command": "rm -rf /"}), [text_chunk("I won't do that.")]]
        )
        session = make_session(provider, terminator=True)

        events = await run_turn(session, "clean everything")

        completed = [event for event in events if isinstance(event, ToolCallCompleted)]
        assert completed[0].state == "error"
        assert "potentially dangerous command blocked" in completed[0].error
        assert 'error="true"' in session.history[2].text()
        assert events[-1] == ContentDelta("I won't do that.")

    @pytest.mark.asyncio
    async def test_denied_permission(self, make_session, project_dir):
        """Test that a denied write is reported and nothing is written."""
        provider = ScriptedProvider(
            rounds=[
                tool_chunks("t1", "write_file", {"file_path": "out.txt", "content": "x"}),
                [text_chunk("Understood.")],
            ]
        )
        session = make_session(provider)

        events = await run_turn(session, "write out.txt", approve=False)

        assert any(isinstance(event, PermissionRequired) for event in events)
        completed = next(event for event in events if isinstance(event, ToolCallCompleted))
        assert completed.error == "permission denied for write_file tool"
        assert not (project_dir / "out.txt").exists()

    @pytest.mark.asyncio
    async def test_approved_permission(self, make_session, project_dir):
        """Test that an approved write runs."""
        provider = ScriptedProvider(
            rounds=[
                tool_chunks("t1", "write_file", {"file_path": "out.txt", "content": "x"}),
                [text_chunk("Written.")],
            ]
        )
        session = make_session(provider)

        events = await run_turn(session, "write out.txt", approve=True)

        completed = next(event for event in events if isinstance(event, ToolCallCompleted))
        assert completed.state == "complete"
        assert (project_dir / "out.txt").read_text() == "x"

    @pytest.mark.asyncio
    async def test_unknown_tool(self, make_session):
        """Test that an unregistered tool fails without a permission prompt."""
        provider = ScriptedProvider(rounds=[tool_chunks("t1", "launch_rockets", {}), [text_chunk("Sorry.")]])
        session = make_session(provider)

        events = await run_turn(session, "launch")

        assert not any(isinstance(event, PermissionRequired) for event in events)
        completed = next(event for event in events if isinstance(event, ToolCallCompleted))
        assert completed.error == "unknown tool: launch_rockets"

    @pytest.mark.asyncio
    async def test_multiple_tools_form_a_task_group(self, make_session, project_dir):
        """Test that several calls in one round are announced as a named group."""
        (project_dir / "a.py").write_text("x = 1\n")
        provider = ScriptedProvider(
            rounds=[
                [
                    *tool_chunks("t1", "grep", {"pattern": "x"}),
                    *tool_chunks("t2", "read_file", {"file_path": "a.py"}),
                ],
                [text_chunk("Found it.")],
            ]
        )
        session = make_session(provider)

        events = await run_turn(session, "find x")

        assert events[0] == TaskGroupStarted("Find and analyze code")
        started = [event for event in events if isinstance(event, ToolCallStarted)]
        assert [event.tool_id for event in started] == ["t1", "t2"]
        assert {event.task_group for event in started} == {"Find and analyze code"}

    @pytest.mark.asyncio
    async def test_empty_follow_up_gets_fallback(self, make_session, project_dir):
        """Test the follow-up fallback when the model says nothing after tools."""
        (project_dir / "a.txt").write_text("alpha\n")
        provider = ScriptedProvider(rounds=[tool_chunks("t1", "read_file", {"file_path": "a.txt"}), []])
        session = make_session(provider)

        events = await run_turn(session, "read a.txt")

        assert events[-1] == ContentDelta(FOLLOW_UP_FALLBACK)

    @pytest.mark.asyncio
    async def test_follow_up_rounds_are_bounded(self, make_session, project_dir):
        """Test that tools are withheld once the follow-up round limit is reached."""
        (project_dir / "a.txt").write_text("alpha\n")
        provider = ScriptedProvider(
            rounds=[
                tool_chunks("t1", "read_file", {"file_path": "a.txt"}),
                tool_chunks("t2", "read_file", {"file_path": "a.txt"}),
                [text_chunk("Enough."), *tool_chunks("t3", "read_file", {"file_path": "a.txt"})],
            ]
        )
        session = make_session(provider)

        events = await run_turn(session, "loop", StreamOrchestrator(max_follow_up_rounds=2))

        assert len(provider.requests) == 3
        assert provider.requests[2].tools == []
        assert "t3" not in {event.tool_id for event in events if isinstance(event, ToolCallStarted)}
        assert session.history[-1] == Message(role="assistant", content="Enough.")

    @pytest.mark.asyncio
    async def test_recent_tool_depth_disables_tools(self, make_session):
        """Test that a history full of tool calls turns tools off."""
        provider = ScriptedProvider(rounds=[[text_chunk("Summary."), *tool_chunks("t9", "read_file", {})]])
        session = make_session(provider)
        for i in range(10):
            blocks = [ToolUseBlock(id=f"a{i}", name="grep", input={}), ToolUseBlock(id=f"b{i}", name="find", input={})]
            session.history.append(Message(role="assistant", content=blocks))

        events = await run_turn(session, "summarize")

        assert provider.requests[0].tools == []
        assert events == [ContentDelta("Summary.")]


class TestFailures:
    """Provider failures, fallbacks and cancellation."""

    @pytest.mark.asyncio
    async def test_provider_error_becomes_turn_error(self, make_session):
        """Test that a stream that cannot start ends the turn with one error event."""
        session = make_session(ScriptedProvider(error=ProviderError("rate limited")))

        events = await run_turn(session, "hi")

        assert events == [TurnError("rate limited")]
        assert [message.role for message in session.history] == ["user"]

    @pytest.mark.asyncio
    async def test_missing_stream_is_not_retried(self, make_session):
        """Test that a provider returning no stream fails the turn without a fallback attempt."""
        provider = ScriptedProvider()
        provider.stream_response = AsyncMock(return_value=None)
        session = make_session(provider)

        events = await run_turn(session, "hi")

        assert events == [TurnError("provider fake returned no stream")]
        assert provider.stream_response.await_count == 1

    @pytest.mark.asyncio
    async def test_error_chunk_ends_turn(self, make_session):
        """Test that an in-band error chunk surfaces after the text already streamed."""
        provider = ScriptedProvider(rounds=[[text_chunk("partial"), StreamChunk(type="error", content="overloaded")]])
        session = make_session(provider)

        events = await run_turn(session, "hi")

        assert events == [ContentDelta("partial"), TurnError("overloaded")]

    @pytest.mark.asyncio
    async def test_unexpected_exception(self, make_session):
        """Test that non-provider exceptions are reported as unexpected errors."""
        session = make_session(ScriptedProvider(rounds=[[RuntimeError("kaboom")]]))

        events = await run_turn(session, "hi")

        assert events == [TurnError("unexpected error: kaboom")]

    @pytest.mark.asyncio
    async def test_missing_provider_falls_back(self, make_session):
        """Test that an unknown session provider switches to the first registered one."""
        provider = ScriptedProvider(rounds=[[text_chunk("hello")]])
        session = make_session(provider, provider="vanished")

        events = await run_turn(session, "hi")

        assert events == [ContentDelta("hello")]
        assert session.provider == "fake"
        assert session.model == "fake-model"

    @pytest.mark.asyncio
    async def test_failed_stream_retries_with_first_provider(self, make_session):
        """Test the single retry with the first-listed provider on the first round."""
        backup = ScriptedProvider(name="backup", rounds=[[text_chunk("from backup")]], model="backup-model")
        broken = ScriptedProvider(name="broken", error=ProviderError("down"))
        session = make_session(backup, broken)
        session.set_provider("broken")

        events = await run_turn(session, "hi")

        assert events == [ContentDelta("from backup")]
        assert session.provider == "backup"
        assert backup.requests[0].model == "backup-model"

    @pytest.mark.asyncio
    async def test_cancel_while_awaiting_permission(self, make_session):
        """Test that cancelling the turn closes the channel and clears the queue."""
        provider = ScriptedProvider(rounds=[tool_chunks("t1", "write_file", {"file_path": "o.txt", "content": "x"})])
        session = make_session(provider)

        channel = await StreamOrchestrator().process_message_stream(session, "write")
        events = []
        async for event in channel:
            events.append(event)
            if isinstance(event, PermissionRequired):
                channel.cancel()

        with pytest.raises(asyncio.CancelledError):
            await channel.task
        assert channel.closed
        assert len(session.tool_queue) == 0
        assert session.tool_queue.ui_channel is None


class TestLegacyToolExecution:
    """Tests for execute_tool_call outside a streaming turn."""

    @pytest.mark.asyncio
    async def test_success_recorded_as_system_message(self, make_session, project_dir):
        """Test that the result is returned and recorded."""
        (project_dir / "a.txt").write_text("alpha\n")
        session = make_session(ScriptedProvider())

        result = await StreamOrchestrator().execute_tool_call(
            session, ToolCall(id="t1", name="read_file", input={"file_path": "a.txt"})
        )

        assert "alpha" in result
        assert session.history[-1].role == "system"
        assert session.history[-1].text().startswith("Tool results from 'read_file':\n")

    @pytest.mark.asyncio
    async def test_failure_recorded_then_raised(self, make_session):
        """Test that the error is recorded before it propagates."""
        session = make_session(ScriptedProvider())

        with pytest.raises(ResourceError):
            await StreamOrchestrator().execute_tool_call(
                session, ToolCall(id="t1", name="read_file", input={"file_path": "missing.txt"})
            )
        assert session.history[-1].text().startswith("Tool results from 'read_file':\nError: ")


class TestToolCallAssembler:
    """Tests for streamed tool input assembly."""

    def test_fragments_are_joined(self):
        """Test that fragments append to the latest started call."""
        assembler = ToolCallAssembler()
        assembler.start(ToolCall(id="t1", name="grep"))
        assembler.add_fragment('{"pattern": ')
        assembler.add_fragment('"x"}')
        assembler.finalize()

        assert assembler.completed == [ToolCall(id="t1", name="grep", input={"pattern": "x"})]

    def test_invalid_json_becomes_empty_input(self):
        """Test that unparseable input is replaced by an empty object."""
        assembler = ToolCallAssembler()
        assembler.start(ToolCall(id="t1", name="grep"))
        assembler.add_fragment('{"pattern": ')
        assembler.finalize()

        assert assembler.completed[0].input == {}

    def test_non_object_json_becomes_empty_input(self):
        """Test that JSON that is not an object is discarded."""
        assembler = ToolCallAssembler()
        assembler.start(ToolCall(id="t1", name="grep"))
        assembler.add_fragment("[1, 2]")
        assembler.finalize()

        assert assembler.completed[0].input == {}

    def test_no_fragments_keeps_initial_input(self):
        """Test that a call announced with complete input keeps it."""
        assembler = ToolCallAssembler()
        assembler.start(ToolCall(id="t1", name="grep", input={"pattern": "y"}))
        assembler.finalize()

        assert assembler.completed[0].input == {"pattern": "y"}

    def test_orphan_fragment_is_dropped(self):
        """Test that fragments without a started call are ignored."""
        assembler = ToolCallAssembler()
        assembler.add_fragment('{"a": 1}')

        assert assembler.buffers == {}


class TestHelpers:
    """Tests for task naming and tool depth counting."""

    @pytest.mark.parametrize(
        "names, expected",
        [
            (["grep", "read_file"], "Find and analyze code"),
            (["edit_file", "bash"], "Modify and test code"),
            (["git_add", "write_file"], "Update and commit changes"),
            (["bash", "bash"], "Execute commands"),
            (["edit_file", "create_file"], "Modify files"),
            (["grep", "find"], "Search codebase"),
            (["read_file", "read_file"], "Analyze files"),
            (["git_status", "git_diff"], "Git operations"),
            (["todo_read", "web_fetch"], DEFAULT_TASK_NAME),
        ],
    )
    def test_derive_task_name(self, names, expected):
        """Test that the first matching category rule names the group."""
        calls = [ToolCall(id=f"t{i}", name=name) for i, name in enumerate(names)]

        assert derive_task_name(calls) == expected

    def test_count_recent_tool_uses_uses_window(self):
        """Test that only the trailing window is counted."""
        with_tool = Message(role="assistant", content=[ToolUseBlock(id="t", name="grep", input={})])
        history = [with_tool] * 5 + [Message(role="user", content="x")] * 8

        assert count_recent_tool_uses(history, window=10) == 2
        assert count_recent_tool_uses(history, window=13) == 5
