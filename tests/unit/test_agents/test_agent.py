"""Tests for the Agent loop."""

from unittest.mock import AsyncMock, patch

import pytest
from helpers import (
    ScriptedProvider,
    conversation,
    make_call,
    text_of,
    text_response,
    tool_response,
)
from pydantic import BaseModel

from codi.agents.agent import (
    ABORTED_RESULT,
    SKIPPED_RESULT,
    SUMMARIZED_PLACEHOLDER,
    Agent,
    AgentCallbacks,
    AgentStopReason,
)
from codi.agents.debugger import AgentDebugger
from codi.agents.stop_conditions import MaxStepsConfig, max_steps
from codi.execution.gate import ApprovalGate, ConfirmationResult
from codi.features.audit import AuditEventType
from codi.llm.providers import anthropic as anthropic_provider
from codi.llm.providers.base import ProviderError
from codi.memory.windowing import WindowingConfig
from codi.tools.tool import ToolRegistry, tool
from codi.types.types import Message, ToolCallSource
from codi.utils.config import AgentSettings

PATH = "src/components/widgets/button_panel.tsx"


class PathInput(BaseModel):
    path: str


class CommandInput(BaseModel):
    command: str


class Workspace:
    """Tools that record what they were asked to do."""

    def __init__(self):
        self.reads: list[str] = []
        self.commands: list[str] = []
        self.on_read = None
        self.on_command = None

        @tool(description="Read a file")
        def read_file(input: PathInput) -> str:
            self.reads.append(input.path)
            if self.on_read:
                self.on_read(input.path)
            return f"contents of {input.path}"

        @tool(description="Run a shell command")
        def bash(input: CommandInput) -> str:
            self.commands.append(input.command)
            if self.on_command:
                self.on_command(input.command)
            return "ok"

        self.registry = ToolRegistry([read_file, bash])


@pytest.fixture
def workspace():
    return Workspace()


def make_agent(provider, workspace, **kwargs) -> Agent:
    return Agent(provider=provider, registry=workspace.registry, **kwargs)


def assert_tool_pairs_answered(messages: list[Message]) -> None:
    for i, message in enumerate(messages):
        if message.has_tool_use():
            assert messages[i + 1].tool_result_ids() == message.tool_use_ids()


class TestChatCompletion:
    """Turns that end with a plain answer."""

    @pytest.mark.asyncio
    async def test_text_only_response(self, workspace):
        chunks = []
        provider = ScriptedProvider([text_response("Hi there")])
        agent = make_agent(provider, workspace, callbacks=AgentCallbacks(on_text=chunks.append))

        result = await agent.chat("hello")

        assert result.stop_reason == AgentStopReason.COMPLETED
        assert result.text == "Hi there"
        assert result.iterations == 1
        assert chunks == ["Hi there"]
        history = agent.get_history()
        assert [m.role for m in history] == ["user", "assistant"]
        assert text_of(history[1]) == "Hi there"

    @pytest.mark.asyncio
    async def test_empty_answer_does_not_break_next_request(self, workspace):
        """An empty model turn is kept in history but never sent to Anthropic."""
        provider = ScriptedProvider([text_response(""), text_response("back")])
        agent = make_agent(provider, workspace)

        await agent.chat("hello")
        result = await agent.chat("again")

        assert result.text == "back"
        assert agent.get_history()[1].content == ""
        converted = anthropic_provider._convert_messages(provider.calls[1]["messages"])
        assert [m["role"] for m in converted] == ["user", "user"]
        assert all(m["content"] for m in converted)

    @pytest.mark.asyncio
    async def test_tool_call_then_answer(self, workspace):
        started = []
        provider = ScriptedProvider(
            [tool_response(make_call("read_file", "c1", path="a.py")), text_response("Done")]
        )
        agent = make_agent(
            provider, workspace, callbacks=AgentCallbacks(on_tool_call=started.append)
        )

        result = await agent.chat("read a.py")

        assert result.stop_reason == AgentStopReason.COMPLETED
        assert result.text == "Done"
        assert result.iterations == 2
        assert [c.id for c in result.tool_calls] == ["c1"]
        assert result.usage.total_tokens == 30
        assert workspace.reads == ["a.py"]
        assert [c.id for c in started] == ["c1"]

        history = agent.get_history()
        assert [m.role for m in history] == ["user", "assistant", "user", "assistant"]
        assert history[2].content[0].content == "contents of a.py"
        assert history[2].content[0].name == "read_file"
        assert_tool_pairs_answered(history)
        # Tools are offered on every request
        assert [t.name for t in provider.calls[0]["tools"]] == ["read_file", "bash"]

    @pytest.mark.asyncio
    async def test_working_set_tracks_files(self, workspace):
        provider = ScriptedProvider(
            [tool_response(make_call("read_file", "c1", path="src/app.py")), text_response("ok")]
        )
        agent = make_agent(provider, workspace)
        await agent.chat("look")
        assert agent.working_set.recent_files == ["src/app.py"]

    @pytest.mark.asyncio
    async def test_reasoning_is_kept(self, workspace):
        reasoning = []
        response = text_response("answer")
        response.reasoning_content = "thinking it over"
        provider = ScriptedProvider([response])
        agent = make_agent(
            provider, workspace, callbacks=AgentCallbacks(on_reasoning=reasoning.append)
        )

        await agent.chat("q")

        assert reasoning == ["thinking it over"]
        assert agent.get_history()[1].content[0].type == "thinking"

    @pytest.mark.asyncio
    async def test_extracted_tool_calls(self, workspace):
        provider = ScriptedProvider(
            [
                text_response('{"name": "read_file", "arguments": {"path": "b.py"}}'),
                text_response("Done"),
            ]
        )
        agent = make_agent(provider, workspace)

        result = await agent.chat("read b.py")

        assert workspace.reads == ["b.py"]
        assert result.tool_calls[0].source == ToolCallSource.EXTRACTED
        assert result.text == "Done"
        assert_tool_pairs_answered(agent.get_history())


class TestApproval:
    """Tool calls going through the approval gate."""

    @pytest.mark.asyncio
    async def test_denied_without_confirm_handler(self, workspace):
        """Destructive calls are denied when nobody can confirm them."""
        results = []
        provider = ScriptedProvider(
            [tool_response(make_call("bash", "c1", command="make")), text_response("ok")]
        )
        agent = make_agent(
            provider,
            workspace,
            callbacks=AgentCallbacks(on_tool_result=lambda call, r: results.append(r)),
        )

        await agent.chat("build")

        assert workspace.commands == []
        assert results[0].is_error is True
        assert results[0].content == (
            "bash requires confirmation but no confirmation handler is set. "
            "Please try a different approach."
        )

    @pytest.mark.asyncio
    async def test_confirmed_call_runs(self, workspace):
        on_confirm = AsyncMock(return_value=ConfirmationResult.approve())
        provider = ScriptedProvider(
            [
                tool_response(make_call("bash", "c1", cmd=["sh", "-c", "make all"])),
                text_response("ok"),
            ]
        )
        agent = make_agent(provider, workspace, callbacks=AgentCallbacks(on_confirm=on_confirm))

        await agent.chat("build")

        assert workspace.commands == ["make all"]
        payload = on_confirm.await_args.args[0]
        assert payload.tool_call.input == {"command": "make all"}

    @pytest.mark.asyncio
    async def test_user_denial_message(self, workspace):
        on_confirm = AsyncMock(return_value=ConfirmationResult.deny())
        provider = ScriptedProvider(
            [tool_response(make_call("bash", "c1", command="make")), text_response("ok")]
        )
        agent = make_agent(provider, workspace, callbacks=AgentCallbacks(on_confirm=on_confirm))

        await agent.chat("build")

        result_block = agent.get_history()[2].content[0]
        assert result_block.content == (
            "User denied this operation. Please try a different approach."
        )
        assert result_block.is_error is True

    @pytest.mark.asyncio
    async def test_approved_pattern_survives_failed_call(self, workspace, approval_store):
        """A pattern approved during confirmation stays stored when the call then fails."""

        def fail(command):
            raise RuntimeError("tests failed")

        workspace.on_command = fail
        on_confirm = AsyncMock(return_value=ConfirmationResult.approve_pattern("npm test *"))
        gate = ApprovalGate(
            store=approval_store, workspace_root=str(approval_store.workspace_dir)
        )
        provider = ScriptedProvider(
            [
                tool_response(make_call("bash", "c1", command="npm test --watch")),
                tool_response(make_call("bash", "c2", command="npm test --ci")),
                text_response("ok"),
            ]
        )
        agent = make_agent(
            provider, workspace, gate=gate, callbacks=AgentCallbacks(on_confirm=on_confirm)
        )

        await agent.chat("test")

        assert on_confirm.await_count == 1
        assert workspace.commands == ["npm test --watch", "npm test --ci"]
        assert agent.get_history()[2].content[0].content == "ERROR: tests failed"
        assert approval_store.check_command_approval("npm test --ci").approved is True


class TestTerminalConditions:
    """Turns that stop before a plain answer."""

    @pytest.mark.asyncio
    async def test_repeated_errors(self, workspace):
        provider = ScriptedProvider(
            [tool_response(make_call("bash", f"c{i}", command="make")) for i in range(5)]
        )
        agent = make_agent(provider, workspace)

        result = await agent.chat("build")

        assert result.stop_reason == AgentStopReason.MAX_CONSECUTIVE_ERRORS
        assert result.iterations == 3
        assert result.text == "(Stopping due to repeated errors)"
        assert len(provider.calls) == 3
        history = agent.get_history()
        assert history[-1].role == "assistant"
        assert text_of(history[-1]) == "(Stopping due to repeated errors)"

    @pytest.mark.asyncio
    async def test_success_resets_error_count(self, workspace):
        provider = ScriptedProvider(
            [
                tool_response(make_call("bash", "c1", command="make")),
                tool_response(make_call("read_file", "c2", path="a.py")),
                tool_response(make_call("bash", "c3", command="make")),
                text_response("finished"),
            ]
        )
        agent = make_agent(provider, workspace, settings=AgentSettings(max_consecutive_errors=2))

        result = await agent.chat("go")

        assert result.stop_reason == AgentStopReason.COMPLETED
        assert result.iterations == 4

    @pytest.mark.asyncio
    async def test_max_iterations(self, workspace):
        provider = ScriptedProvider(
            [tool_response(make_call("read_file", f"c{i}", path="a.py")) for i in range(3)]
        )
        agent = make_agent(provider, workspace, settings=AgentSettings(max_iterations=2))

        result = await agent.chat("loop")

        assert result.stop_reason == AgentStopReason.MAX_ITERATIONS
        assert result.iterations == 2
        assert result.text == "(Reached iteration limit, stopping)"

    @pytest.mark.asyncio
    async def test_timeout(self, workspace):
        clock = [0.0]

        def advance(path):
            clock[0] += 10

        workspace.on_read = advance
        provider = ScriptedProvider(
            [tool_response(make_call("read_file", "c1", path="a.py"), text="Reading")]
        )
        agent = make_agent(
            provider, workspace, settings=AgentSettings(max_chat_duration_seconds=5)
        )

        with patch("codi.agents.agent.monotonic", lambda: clock[0]):
            result = await agent.chat("slow")

        assert result.stop_reason == AgentStopReason.TIMEOUT
        assert result.text == "Reading\n\n(Reached time limit, stopping)"
        assert result.iterations == 1

    @pytest.mark.asyncio
    async def test_provider_error(self, workspace):
        provider = ScriptedProvider([ProviderError("scripted", "overloaded")])
        agent = make_agent(provider, workspace)

        result = await agent.chat("hi")

        assert result.stop_reason == AgentStopReason.PROVIDER_ERROR
        assert result.text == "(Provider error: scripted: overloaded)"
        assert [m.role for m in agent.get_history()] == ["user", "assistant"]

    @pytest.mark.asyncio
    async def test_stop_condition(self, workspace):
        provider = ScriptedProvider([tool_response(make_call("read_file", "c1", path="a.py"))])
        agent = make_agent(
            provider, workspace, stop_conditions=[max_steps(MaxStepsConfig(count=1))]
        )

        result = await agent.chat("go")

        assert result.stop_reason == AgentStopReason.STOP_CONDITION
        assert result.text == "(Stopped by condition: max_steps)"
        assert len(provider.calls) == 1

    def test_stop_conditions_must_be_callable(self, workspace):
        with pytest.raises(TypeError, match="must be a callable"):
            make_agent(ScriptedProvider(), workspace, stop_conditions=[42])


class TestAbort:
    """User aborts."""

    @pytest.mark.asyncio
    async def test_abort_from_confirmation(self, workspace):
        on_confirm = AsyncMock(return_value=ConfirmationResult.abort())
        provider = ScriptedProvider([tool_response(make_call("bash", "c1", command="make"))])
        agent = make_agent(provider, workspace, callbacks=AgentCallbacks(on_confirm=on_confirm))

        result = await agent.chat("build")

        assert result.stop_reason == AgentStopReason.ABORTED
        assert result.text == "(Operation aborted by user)"
        history = agent.get_history()
        assert history[2].content[0].content == ABORTED_RESULT
        assert text_of(history[-1]) == "(Operation aborted by user)"

    @pytest.mark.asyncio
    async def test_abort_skips_remaining_calls(self, workspace):
        """Calls before and after the aborted one are skipped, never executed."""
        on_confirm = AsyncMock(
            side_effect=[ConfirmationResult.approve(), ConfirmationResult.abort()]
        )
        provider = ScriptedProvider(
            [
                tool_response(
                    make_call("bash", "c1", command="make"),
                    make_call("bash", "c2", command="make test"),
                    make_call("read_file", "c3", path="a.py"),
                )
            ]
        )
        agent = make_agent(provider, workspace, callbacks=AgentCallbacks(on_confirm=on_confirm))

        result = await agent.chat("build")

        assert result.stop_reason == AgentStopReason.ABORTED
        assert workspace.commands == []
        assert workspace.reads == []
        contents = [b.content for b in agent.get_history()[2].content]
        assert contents == [SKIPPED_RESULT, ABORTED_RESULT, SKIPPED_RESULT]

    @pytest.mark.asyncio
    async def test_abort_during_tool_execution(self, workspace):
        provider = ScriptedProvider([tool_response(make_call("read_file", "c1", path="a.py"))])
        agent = make_agent(provider, workspace)
        workspace.on_read = lambda path: agent.abort()

        result = await agent.chat("read")

        assert result.stop_reason == AgentStopReason.ABORTED
        assert workspace.reads == ["a.py"]

        # The abort flag does not leak into the next turn
        provider.queue(text_response("fresh"))
        assert (await agent.chat("again")).stop_reason == AgentStopReason.COMPLETED


class TestContext:
    """History shaping around provider requests."""

    @pytest.mark.asyncio
    async def test_summary_in_system_prompt(self, workspace):
        provider = ScriptedProvider([text_response("ok")])
        agent = make_agent(provider, workspace, system_prompt="You are helpful.")
        agent.set_history([], summary="We fixed the parser.")

        await agent.chat("next")

        assert provider.calls[0]["system_prompt"] == (
            "You are helpful.\n\n## Previous Conversation Summary\n\nWe fixed the parser."
        )

    @pytest.mark.asyncio
    async def test_placeholder_when_history_opens_on_assistant(self, workspace):
        provider = ScriptedProvider([text_response("ok")])
        agent = make_agent(provider, workspace)
        agent.set_history([Message.assistant("earlier answer")], summary="s")

        await agent.chat("next")

        sent = provider.calls[0]["messages"]
        assert sent[0].role == "user"
        assert sent[0].content == SUMMARIZED_PLACEHOLDER
        assert agent.get_history()[0].content == "earlier answer"

    @pytest.mark.asyncio
    async def test_compaction_before_request(self, workspace):
        compactions = []
        summarizer = ScriptedProvider([text_response("Summary of earlier work.")])
        provider = ScriptedProvider([text_response("ok")])
        agent = make_agent(
            provider,
            workspace,
            summarizer=summarizer,
            max_context_tokens=500,
            windowing=WindowingConfig(importance_threshold=1.1),
            callbacks=AgentCallbacks(on_compaction=compactions.append),
        )
        agent.set_history(conversation(10, text="x" * 400))

        await agent.chat("continue")

        assert agent.summary == "Summary of earlier work."
        assert len(compactions) == 1
        assert compactions[0].messages_before == 11
        sent = provider.calls[0]["messages"]
        assert len(sent) == 3
        assert sent[-1].content == "continue"
        assert "Summary of earlier work." in provider.calls[0]["system_prompt"]

    @pytest.mark.asyncio
    async def test_force_compact(self, workspace):
        agent = make_agent(ScriptedProvider([text_response("short")]), workspace)
        agent.set_history(conversation(10, text="x" * 400))

        result = await agent.force_compact()

        assert result.compacted is True
        assert agent.summary == "short"
        assert len(agent.get_history()) < 10

    @pytest.mark.asyncio
    async def test_message_limit(self, workspace):
        provider = ScriptedProvider([text_response("ok")])
        agent = make_agent(provider, workspace, settings=AgentSettings(max_messages=10))
        agent.set_history(conversation(13))

        await agent.chat("next")

        assert "older messages were automatically pruned" in agent.summary
        assert len(provider.calls[0]["messages"]) == 8

    @pytest.mark.asyncio
    async def test_compression_round_trip(self, workspace):
        chunks = []
        provider = ScriptedProvider([text_response("Updated E1")])
        agent = make_agent(
            provider,
            workspace,
            settings=AgentSettings(enable_compression=True),
            callbacks=AgentCallbacks(on_text=chunks.append),
        )
        agent.set_history([Message.user(f"Check {PATH} please") for _ in range(4)])

        result = await agent.chat(f"Check {PATH} please")

        sent = provider.calls[0]["messages"]
        assert sent[-1].content == "Check E1 please"
        assert f"- E1: {PATH}" in provider.calls[0]["system_prompt"]
        assert "".join(chunks) == f"Updated {PATH}"
        assert result.text == f"Updated {PATH}"
        # History is stored uncompressed
        assert agent.get_history()[-2].content == f"Check {PATH} please"

    @pytest.mark.asyncio
    async def test_large_tool_result_is_truncated(self, workspace):
        @tool
        def dump() -> str:
            return "x" * 40_000

        workspace.registry.register(dump)
        agent = make_agent(ScriptedProvider(context_window=8192), workspace)

        result = await agent._execute_tool(make_call("dump", "c1"))

        assert len(result.content) < 40_000
        assert "characters truncated" in result.content
        assert result.name == "dump"


class TestAgentState:
    """History, provider switching and snapshots."""

    def test_set_provider_keeps_pinned_budget(self, workspace):
        agent = make_agent(ScriptedProvider(), workspace, max_context_tokens=1234)
        agent.set_provider(ScriptedProvider(context_window=8192))
        assert agent.context_config.max_context_tokens == 1234
        assert agent.context_config.context_window == 8192

    def test_set_provider_recomputes_budget(self, workspace):
        agent = make_agent(ScriptedProvider(), workspace)
        before = agent.context_config.max_context_tokens
        agent.set_provider(ScriptedProvider(context_window=8192))
        assert agent.context_config.max_context_tokens < before

    def test_snapshot_and_restore(self, workspace):
        agent = make_agent(ScriptedProvider(), workspace)
        agent.set_history(conversation(2), summary="s")
        agent.working_set.add_file("a.py")
        snapshot = agent.snapshot(iteration=3)

        agent.clear_history()
        assert agent.get_history() == []
        assert agent.working_set.is_empty()

        agent.restore(snapshot)
        assert agent.get_history() == conversation(2)
        assert agent.summary == "s"
        assert agent.working_set.recent_files == ["a.py"]


class TestDebuggingAndAudit:
    """Debugger hooks and the audit trail."""

    @pytest.mark.asyncio
    async def test_tool_breakpoint_pauses(self, workspace, tmp_path):
        debugger = AgentDebugger(str(tmp_path), checkpoint_interval=1)
        bp = debugger.add_breakpoint("tool", "read_file")
        on_debug_pause = AsyncMock()
        provider = ScriptedProvider(
            [tool_response(make_call("read_file", "c1", path="a.py")), text_response("ok")]
        )
        agent = make_agent(
            provider,
            workspace,
            debugger=debugger,
            callbacks=AgentCallbacks(on_debug_pause=on_debug_pause),
        )

        await agent.chat("read")

        hit, context = on_debug_pause.await_args_list[0].args
        assert hit.id == bp.id
        assert context.tool_name == "read_file"
        assert debugger.list_breakpoints()[0].hit_count == 1
        assert len(debugger.list_checkpoints()) == 2

    @pytest.mark.asyncio
    async def test_pause_contexts_share_iteration_counter(self, workspace, tmp_path):
        """Tool and error pauses use the debugger's iteration count, which spans turns."""
        debugger = AgentDebugger(str(tmp_path))
        debugger.add_breakpoint("tool", "read_file")
        debugger.add_breakpoint("error")
        on_debug_pause = AsyncMock()
        provider = ScriptedProvider(
            [
                text_response("hi"),
                tool_response(make_call("read_file", "c1", path="a.py")),
                ProviderError("scripted", "overloaded"),
            ]
        )
        agent = make_agent(
            provider,
            workspace,
            debugger=debugger,
            callbacks=AgentCallbacks(on_debug_pause=on_debug_pause),
        )

        await agent.chat("one")
        await agent.chat("two")

        contexts = [c.args[1] for c in on_debug_pause.await_args_list]
        assert [(c.type, c.iteration) for c in contexts] == [("tool_call", 2), ("error", 3)]
        assert debugger.current_iteration == 3

    @pytest.mark.asyncio
    async def test_audit_events(self, workspace, tmp_path):
        provider = ScriptedProvider(
            [tool_response(make_call("read_file", "c1", path="a.py")), text_response("ok")]
        )
        agent = make_agent(
            provider, workspace, settings=AgentSettings(audit=True, audit_dir=str(tmp_path))
        )

        await agent.chat("read")

        types = [e.type for e in agent.audit.read_events()]
        assert types[:3] == [
            AuditEventType.SESSION_START,
            AuditEventType.USER_INPUT,
            AuditEventType.API_REQUEST,
        ]
        assert AuditEventType.TOOL_CALL in types
        assert AuditEventType.TOOL_RESULT in types
        assert types.count(AuditEventType.API_RESPONSE) == 2

    def test_otel_setting_reaches_tracer(self, workspace, mock_tracer):
        with patch("codi.agents.agent.get_tracer", return_value=mock_tracer) as get_tracer:
            agent = make_agent(
                ScriptedProvider(), workspace, settings=AgentSettings(otel_enabled=True)
            )

        get_tracer.assert_called_once_with(True)
        assert agent._tracer is mock_tracer

    @pytest.mark.asyncio
    async def test_chat_span(self, workspace, mock_tracer):
        provider = ScriptedProvider([text_response("ok")])
        agent = make_agent(provider, workspace)
        agent._tracer = mock_tracer

        await agent.chat("hi", task_type="question")

        span_names = [c.args[0] for c in mock_tracer.start_as_current_span.call_args_list]
        assert span_names == ["agent.chat", "provider.stream_chat"]
        span = mock_tracer.start_as_current_span.return_value
        span.set_attribute.assert_any_call("agent.task_type", "question")
        span.set_attribute.assert_any_call("agent.stop_reason", "completed")
