"""Agent class running the agentic loop.

One call to ``Agent.chat`` is a turn. Each iteration of the turn:

1. checks the terminal conditions (abort, repeated errors, time limit,
   iteration limit, host stop conditions)
2. keeps the history within budget (message ceiling, old tool results,
   compaction)
3. streams a response from the provider
4. appends exactly one assistant message
5. runs every tool call through the approval gate
6. executes approved calls in planned batches and appends their results

A response with no tool calls, native or extracted from text, completes
the turn.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from time import monotonic
from typing import Any

from pydantic import BaseModel, Field

from ..execution.gate import ApprovalGate, ConfirmCallback, GateDecision
from ..features.audit import AuditEventType, AuditLogger
from ..features.tracing import get_tracer, mark_span_error, set_span_attributes
from ..llm.extraction import extract_tool_calls
from ..llm.providers.base import Provider, ProviderError, ProviderResponse
from ..memory.compaction import (
    EmbedFunction,
    compact_messages,
    enforce_message_limit,
    needs_compaction,
)
from ..memory.compression import Entity, StreamingDecompressor, decompress_text, maybe_compress
from ..memory.context_config import ContextConfig, compute_context_config, override_context_config
from ..memory.tokens import estimate_messages_tokens
from ..memory.tool_results import ToolResultCache, truncate_old_tool_results, truncate_tool_result
from ..memory.types import CompactionMode, CompactionResult
from ..memory.windowing import WindowingConfig, WorkingSet, update_working_set
from ..tools.batching import execute_batches, plan_batches
from ..tools.tool import ToolRegistry
from ..types.types import (
    Message,
    TextBlock,
    ThinkingBlock,
    ToolCall,
    ToolResult,
    ToolUseBlock,
    Usage,
)
from ..utils.config import AgentSettings
from .debugger import AgentDebugger, AgentSnapshot, Breakpoint, BreakpointContext
from .stop_conditions import StopConditionContext, evaluate_stop_conditions

logger = logging.getLogger(__name__)

SUMMARY_HEADER = "## Previous Conversation Summary"
SUMMARIZED_PLACEHOLDER = "(Earlier conversation was summarized.)"
DENIED_SUFFIX = ". Please try a different approach."
ABORTED_RESULT = "User aborted the operation."
SKIPPED_RESULT = "Operation skipped: user aborted."


class AgentStopReason(str, Enum):
    COMPLETED = "completed"
    ABORTED = "aborted"
    MAX_CONSECUTIVE_ERRORS = "max_consecutive_errors"
    TIMEOUT = "timeout"
    MAX_ITERATIONS = "max_iterations"
    PROVIDER_ERROR = "provider_error"
    STOP_CONDITION = "stop_condition"


STOP_MESSAGES = {
    AgentStopReason.ABORTED: "(Operation aborted by user)",
    AgentStopReason.MAX_CONSECUTIVE_ERRORS: "(Stopping due to repeated errors)",
    AgentStopReason.TIMEOUT: "(Reached time limit, stopping)",
    AgentStopReason.MAX_ITERATIONS: "(Reached iteration limit, stopping)",
    AgentStopReason.STOP_CONDITION: "(Stopped by condition: {name})",
    AgentStopReason.PROVIDER_ERROR: "(Provider error: {error})",
}


class AgentResult(BaseModel):
    """Outcome of one chat turn."""

    text: str
    stop_reason: AgentStopReason
    iterations: int
    usage: Usage = Field(default_factory=Usage)
    tool_calls: list[ToolCall] = Field(default_factory=list)


class AgentCallbacks:
    """Host callbacks, emitted in iteration order.

    Args:
        on_text: Each streamed text chunk.
        on_reasoning: Each streamed reasoning chunk.
        on_tool_call: A tool call starting execution.
        on_tool_result: A tool call's result, including denied calls.
        on_confirm: Async confirmation handler for calls needing approval.
        on_compaction: A completed compaction pass.
        on_debug_pause: Async handler awaited when a breakpoint hits or the
            debugger is paused. The loop continues when it returns.
    """

    def __init__(
        self,
        on_text: Callable[[str], None] | None = None,
        on_reasoning: Callable[[str], None] | None = None,
        on_tool_call: Callable[[ToolCall], None] | None = None,
        on_tool_result: Callable[[ToolCall, ToolResult], None] | None = None,
        on_confirm: ConfirmCallback | None = None,
        on_compaction: Callable[[CompactionResult], None] | None = None,
        on_debug_pause: Callable[[Breakpoint | None, BreakpointContext], Awaitable[None]]
        | None = None,
    ):
        self.on_text = on_text
        self.on_reasoning = on_reasoning
        self.on_tool_call = on_tool_call
        self.on_tool_result = on_tool_result
        self.on_confirm = on_confirm
        self.on_compaction = on_compaction
        self.on_debug_pause = on_debug_pause


class _Turn:
    """Mutable state of one chat turn."""

    def __init__(self, user_message: str, task_type: str | None):
        self.user_message = user_message
        self.task_type = task_type
        self.started_at = monotonic()
        self.iterations = 0
        self.consecutive_errors = 0
        self.usage = Usage()
        self.tool_calls: list[ToolCall] = []
        self.texts: list[str] = []
        self.last_text = ""

    def elapsed(self) -> float:
        return monotonic() - self.started_at


class Agent:
    """Agentic loop over a provider, a tool registry and an approval gate.

    All collaborators are passed in; the agent reads no global state.

    Args:
        provider: LLM backend for chat turns.
        registry: Tools the model may call.
        system_prompt: Base system prompt. The running summary and, when
            compression applies, the entity legend are appended per request.
        settings: Loop limits and toggles. Defaults to ``AgentSettings()``.
        gate: Approval gate. Defaults to a gate with no allow-lists, so every
            destructive call needs confirmation.
        callbacks: Host callbacks.
        max_context_tokens: Pins the history budget instead of deriving it
            from the provider's context window.
        summarizer: Provider used for compaction summaries. Defaults to ``provider``.
        embed: Optional embedding function grouping similar messages when summarizing.
        stop_conditions: Callables built with ``@stop_condition``.
        debugger: Optional debugger for breakpoints and checkpoints.
        audit: Audit logger. Defaults to one built from ``settings``.
        tool_result_cache: Receives full text of truncated tool results.
        windowing: Message selection settings for compaction.
        indexed_files: Files known to a code index, used by importance scoring.

    Usage:
        agent = Agent(
            provider=get_provider("anthropic"),
            registry=ToolRegistry([read_file, write_file]),
            system_prompt="You are a coding assistant.",
            callbacks=AgentCallbacks(on_text=lambda t: print(t, end=""), on_confirm=ask_user),
        )
        result = await agent.chat("Fix the failing test in tests/test_app.py")
        print(result.stop_reason, result.text)
    """

    def __init__(
        self,
        provider: Provider,
        registry: ToolRegistry | None = None,
        system_prompt: str | None = None,
        settings: AgentSettings | None = None,
        gate: ApprovalGate | None = None,
        callbacks: AgentCallbacks | None = None,
        max_context_tokens: int | None = None,
        summarizer: Provider | None = None,
        embed: EmbedFunction | None = None,
        stop_conditions: list[Callable] | None = None,
        debugger: AgentDebugger | None = None,
        audit: AuditLogger | None = None,
        tool_result_cache: ToolResultCache | None = None,
        windowing: WindowingConfig | None = None,
        indexed_files: set[str] | None = None,
    ):
        self.provider = provider
        self.registry = registry or ToolRegistry()
        self.system_prompt = system_prompt
        self.settings = settings or AgentSettings()
        self.gate = gate or ApprovalGate()
        self.callbacks = callbacks or AgentCallbacks()
        self.summarizer = summarizer
        self.embed = embed
        self.debugger = debugger
        self.audit = audit or AuditLogger(
            enabled=self.settings.audit, audit_dir=self.settings.audit_dir
        )
        self.tool_result_cache = tool_result_cache or ToolResultCache()
        self.windowing = windowing
        self.indexed_files = indexed_files

        self.stop_conditions: list[Callable] = []
        for sc in stop_conditions or []:
            if not callable(sc):
                raise TypeError(
                    f"Invalid stop_condition {sc!r}. "
                    f"Each stop condition must be a callable (use @stop_condition decorator)."
                )
            self.stop_conditions.append(sc)

        self.messages: list[Message] = []
        self.summary: str | None = None
        self.working_set = WorkingSet()
        self._abort_requested = False
        self._tracer = get_tracer(self.settings.otel_enabled)

        self._max_context_override = max_context_tokens
        self.context_config = self._compute_context_config()
        self.audit.session_start(provider=provider.get_name(), model=provider.get_model())

    # -- Configuration --

    def _compute_context_config(self) -> ContextConfig:
        config = compute_context_config(
            self.provider.context_window,
            self.system_prompt,
            self.registry.get_definitions(),
        )
        if self._max_context_override is not None:
            config = override_context_config(config, self._max_context_override)
        return config

    def set_provider(self, provider: Provider) -> None:
        """Switch providers, recomputing the context budget unless it was pinned."""
        self.provider = provider
        if self.context_config.is_override:
            self.context_config = self.context_config.model_copy(
                update={"context_window": provider.context_window}
            )
        else:
            self.context_config = self._compute_context_config()
        logger.debug(
            "Switched provider to %s (%s), history budget %d tokens",
            provider.get_name(),
            provider.get_model(),
            self.context_config.max_context_tokens,
        )

    # -- History --

    def get_history(self) -> list[Message]:
        return list(self.messages)

    def set_history(self, messages: list[Message], summary: str | None = None) -> None:
        self.messages = list(messages)
        self.summary = summary

    def clear_history(self) -> None:
        """Forget messages, the running summary and the working set."""
        self.messages = []
        self.summary = None
        self.working_set.clear()

    def abort(self) -> None:
        """Stop the running turn at the next check."""
        self._abort_requested = True

    def snapshot(self, iteration: int = 0) -> AgentSnapshot:
        return AgentSnapshot(
            messages=list(self.messages),
            summary=self.summary,
            working_set=self.working_set.model_copy(deep=True),
            iteration=iteration,
        )

    def restore(self, snapshot: AgentSnapshot) -> None:
        """Apply state from a checkpoint, e.g. after ``AgentDebugger.rewind``."""
        self.messages = list(snapshot.messages)
        self.summary = snapshot.summary
        self.working_set = snapshot.working_set.model_copy(deep=True)

    # -- Context management --

    async def _compact(self, mode: CompactionMode) -> CompactionResult:
        result = await compact_messages(
            self.messages,
            self.summary,
            self.summarizer or self.provider,
            working_set=self.working_set,
            mode=mode,
            windowing=self.windowing,
            indexed_files=self.indexed_files,
            embed=self.embed,
        )
        if result.compacted:
            self.messages = result.messages
            self.summary = result.summary
            self.audit.log(
                AuditEventType.COMPACTION,
                mode=mode.value,
                tokens_before=result.tokens_before,
                tokens_after=result.tokens_after,
                messages_before=result.messages_before,
                messages_after=result.messages_after,
            )
            if self.callbacks.on_compaction:
                self.callbacks.on_compaction(result)
        return result

    async def force_compact(self) -> CompactionResult:
        """Compact the history now, regardless of the token budget."""
        return await self._compact(CompactionMode.FORCE)

    async def _manage_context(self) -> None:
        pruned = enforce_message_limit(self.messages, self.summary, self.settings.max_messages)
        if pruned.pruned:
            self.messages = pruned.messages
            self.summary = pruned.summary

        config = self.context_config
        self.messages = truncate_old_tool_results(
            self.messages,
            config.tool_results_token_budget,
            config.tool_result_truncate_threshold,
            self.tool_result_cache,
        )

        if not needs_compaction(self.messages, config.max_context_tokens):
            return
        await self._compact(CompactionMode.NORMAL)
        if estimate_messages_tokens(self.messages) > config.max_context_tokens:
            logger.info("History still over budget after compaction, compacting aggressively")
            await self._compact(CompactionMode.AGGRESSIVE)

    def _build_system_prompt(self, legend: str = "") -> str | None:
        parts = [p for p in (self.system_prompt,) if p]
        if self.summary:
            parts.append(f"{SUMMARY_HEADER}\n\n{self.summary}")
        if legend:
            parts.append(legend)
        return "\n\n".join(parts) or None

    def _request_messages(self) -> list[Message]:
        messages = list(self.messages)
        # After compaction the kept window may open on an assistant turn
        if messages and messages[0].role == "assistant":
            messages.insert(0, Message.user(SUMMARIZED_PLACEHOLDER))
        return messages

    # -- Provider call --

    async def _call_provider(self) -> ProviderResponse:
        messages = self._request_messages()
        entities: dict[str, Entity] = {}
        legend = ""
        if self.settings.enable_compression:
            messages, entities, legend = maybe_compress(messages)

        on_text = self.callbacks.on_text
        decompressor = StreamingDecompressor(entities) if entities else None
        if decompressor and on_text:

            def expand_chunk(chunk: str) -> None:
                expanded = decompressor.feed(chunk)
                if expanded:
                    self.callbacks.on_text(expanded)

            on_text = expand_chunk

        tools = self.registry.get_definitions()
        self.audit.log(
            AuditEventType.API_REQUEST,
            provider=self.provider.get_name(),
            model=self.provider.get_model(),
            messages=len(messages),
            compressed=bool(entities),
        )
        with self._tracer.start_as_current_span("provider.stream_chat") as span:
            set_span_attributes(
                span,
                {
                    "llm.provider": self.provider.get_name(),
                    "llm.model": self.provider.get_model(),
                    "llm.messages": len(messages),
                },
            )
            response = await self.provider.stream_chat(
                messages,
                tools=tools or None,
                on_text=on_text,
                system_prompt=self._build_system_prompt(legend),
                on_reasoning=self.callbacks.on_reasoning,
            )
            if response.usage:
                set_span_attributes(
                    span,
                    {
                        "llm.usage.input_tokens": response.usage.input_tokens,
                        "llm.usage.output_tokens": response.usage.output_tokens,
                    },
                )

        if decompressor and self.callbacks.on_text:
            tail = decompressor.flush()
            if tail:
                self.callbacks.on_text(tail)
        if entities:
            response = self._decompress_response(response, entities)

        self.audit.log(
            AuditEventType.API_RESPONSE,
            stop_reason=response.stop_reason,
            tool_calls=len(response.tool_calls),
            input_tokens=response.usage.input_tokens if response.usage else None,
            output_tokens=response.usage.output_tokens if response.usage else None,
        )
        return response

    @staticmethod
    def _decompress_response(
        response: ProviderResponse, entities: dict[str, Entity]
    ) -> ProviderResponse:
        def expand(value: Any) -> Any:
            if isinstance(value, str):
                return decompress_text(value, entities)
            if isinstance(value, dict):
                return {k: expand(v) for k, v in value.items()}
            if isinstance(value, list):
                return [expand(v) for v in value]
            return value

        return response.model_copy(
            update={
                "content": decompress_text(response.content, entities),
                "tool_calls": [
                    c.model_copy(update={"input": expand(c.input)}) for c in response.tool_calls
                ],
            }
        )

    # -- Tool execution --

    async def _execute_tool(self, call: ToolCall) -> ToolResult:
        with self._tracer.start_as_current_span(f"tool.{call.name}") as span:
            span.set_attribute("tool.call_id", call.id)
            span.set_attribute("tool.source", call.source.value)
            self.audit.log(AuditEventType.TOOL_CALL, id=call.id, name=call.name, input=call.input)
            result = await self.registry.execute(call)
            limit = self.context_config.max_immediate_tool_result
            if len(result.content) > limit:
                result = result.model_copy(
                    update={"content": truncate_tool_result(result.content, limit)}
                )
            if result.name is None:
                result = result.model_copy(update={"name": call.name})
            span.set_attribute("tool.is_error", result.is_error)
            self.audit.log(
                AuditEventType.TOOL_RESULT,
                id=call.id,
                name=call.name,
                is_error=result.is_error,
                chars=len(result.content),
            )
            return result

    def _on_tool_start(self, call: ToolCall) -> None:
        update_working_set(self.working_set, call.name, call.input)
        if self.callbacks.on_tool_call:
            self.callbacks.on_tool_call(call)

    def _on_tool_result(self, call: ToolCall, result: ToolResult) -> None:
        if self.callbacks.on_tool_result:
            self.callbacks.on_tool_result(call, result)

    async def _debug_pause(self, hit: Breakpoint | None, context: BreakpointContext) -> None:
        if self.debugger is None:
            return
        if hit is None and not self.debugger.should_pause():
            return
        if hit is not None:
            logger.info(
                "Breakpoint %s (%s) hit at iteration %d", hit.id, hit.type.value, context.iteration
            )
        if self.callbacks.on_debug_pause:
            await self.callbacks.on_debug_pause(hit, context)
        if self.debugger.step_mode:
            self.debugger.pause()

    # -- Loop --

    def _terminal_reason(self, turn: _Turn) -> AgentStopReason | None:
        if self._abort_requested:
            return AgentStopReason.ABORTED
        if turn.consecutive_errors >= self.settings.max_consecutive_errors:
            return AgentStopReason.MAX_CONSECUTIVE_ERRORS
        if turn.elapsed() > self.settings.max_chat_duration_seconds:
            return AgentStopReason.TIMEOUT
        if turn.iterations >= self.settings.max_iterations:
            return AgentStopReason.MAX_ITERATIONS
        return None

    def _finish(self, turn: _Turn, reason: AgentStopReason, **details: Any) -> AgentResult:
        text = turn.last_text
        if reason != AgentStopReason.COMPLETED:
            marker = STOP_MESSAGES[reason].format(**details)
            text = f"{text}\n\n{marker}" if text else marker
            if not self.messages or self.messages[-1].role == "user":
                self.messages.append(Message.assistant(marker))
            if reason == AgentStopReason.ABORTED:
                self.audit.log(AuditEventType.USER_ABORT, iteration=turn.iterations)
            elif reason == AgentStopReason.MAX_ITERATIONS:
                self.audit.log(AuditEventType.MAX_ITERATIONS, iteration=turn.iterations)
            logger.info("Chat turn stopped after %d iterations: %s", turn.iterations, reason.value)
        else:
            logger.debug("Chat turn completed after %d iterations", turn.iterations)
        self._abort_requested = False
        return AgentResult(
            text=text,
            stop_reason=reason,
            iterations=turn.iterations,
            usage=turn.usage,
            tool_calls=turn.tool_calls,
        )

    async def chat(self, user_message: str, task_type: str | None = None) -> AgentResult:
        """Run one turn for ``user_message``.

        Args:
            user_message: The user's input.
            task_type: Optional label for the kind of task, recorded in
                traces and the audit log.

        Returns:
            AgentResult with the final text and why the turn stopped.
        """
        self._abort_requested = False
        turn = _Turn(user_message, task_type)
        self.messages.append(Message.user(user_message))
        self.audit.log(AuditEventType.USER_INPUT, text=user_message, task_type=task_type)

        with self._tracer.start_as_current_span("agent.chat") as span:
            set_span_attributes(
                span,
                {
                    "agent.provider": self.provider.get_name(),
                    "agent.model": self.provider.get_model(),
                    "agent.task_type": task_type,
                },
            )
            result = await self._run(turn)
            set_span_attributes(
                span,
                {
                    "agent.stop_reason": result.stop_reason.value,
                    "agent.iterations": result.iterations,
                    "agent.tool_calls": len(result.tool_calls),
                    "agent.usage.total_tokens": result.usage.total_tokens,
                },
            )
            if result.stop_reason == AgentStopReason.ABORTED:
                span.add_event("user_abort", {"iteration": result.iterations})
            elif result.stop_reason == AgentStopReason.PROVIDER_ERROR:
                mark_span_error(span, result.text)
        return result

    async def _run(self, turn: _Turn) -> AgentResult:
        while True:
            reason = self._terminal_reason(turn)
            if reason is not None:
                return self._finish(turn, reason)
            if turn.iterations and self.stop_conditions:
                ctx = StopConditionContext(
                    iteration=turn.iterations,
                    tool_calls=turn.tool_calls,
                    texts=turn.texts,
                    usage=turn.usage,
                    elapsed_seconds=turn.elapsed(),
                )
                name = await evaluate_stop_conditions(self.stop_conditions, ctx)
                if name is not None:
                    return self._finish(turn, AgentStopReason.STOP_CONDITION, name=name)

            turn.iterations += 1
            if self.debugger is not None:
                iteration = self.debugger.increment_iteration()
                context = BreakpointContext(type="iteration", iteration=iteration)
                await self._debug_pause(self.debugger.check_breakpoints(context), context)
                self.debugger.maybe_create_checkpoint(self.snapshot(iteration))

            await self._manage_context()

            try:
                response = await self._call_provider()
            except ProviderError as e:
                logger.warning("Provider call failed: %s", e)
                self.audit.log(AuditEventType.ERROR, error=str(e), iteration=turn.iterations)
                if self.debugger is not None:
                    context = BreakpointContext(
                        type="error", iteration=self.debugger.current_iteration, error=str(e)
                    )
                    await self._debug_pause(self.debugger.check_breakpoints(context), context)
                return self._finish(turn, AgentStopReason.PROVIDER_ERROR, error=e)

            turn.usage.add(response.usage)
            calls = list(response.tool_calls)
            if not calls and response.content:
                calls = extract_tool_calls(response.content, self.registry.names())

            self.messages.append(self._assistant_message(response, calls))
            if response.content:
                turn.last_text = response.content
                turn.texts.append(response.content)

            if not calls:
                return self._finish(turn, AgentStopReason.COMPLETED)

            if await self._run_tool_calls(turn, calls):
                return self._finish(turn, AgentStopReason.ABORTED)

    @staticmethod
    def _assistant_message(response: ProviderResponse, calls: list[ToolCall]) -> Message:
        blocks: list[Any] = []
        if response.reasoning_content:
            blocks.append(ThinkingBlock(thinking=response.reasoning_content))
        if response.content:
            blocks.append(TextBlock(text=response.content))
        blocks.extend(ToolUseBlock(id=c.id, name=c.name, input=c.input) for c in calls)
        return Message(role="assistant", content=blocks or "")

    async def _run_tool_calls(self, turn: _Turn, calls: list[ToolCall]) -> bool:
        """Confirm, execute and record one iteration's calls. Returns True on abort."""
        settled: dict[str, ToolResult] = {}
        approved: list[ToolCall] = []
        # abort() may have been called while the response streamed
        aborted = self._abort_requested

        for call in calls:
            if aborted:
                settled[call.id] = ToolResult(
                    tool_use_id=call.id, content=SKIPPED_RESULT, is_error=True, name=call.name
                )
                continue
            if self.debugger is not None:
                context = BreakpointContext(
                    type="tool_call",
                    iteration=self.debugger.current_iteration,
                    tool_name=call.name,
                    tool_input=call.input,
                )
                await self._debug_pause(self.debugger.check_breakpoints(context), context)

            outcome = await self.gate.review(call, self.callbacks.on_confirm)
            if outcome.decision == GateDecision.ABORT:
                aborted = True
                settled[call.id] = ToolResult(
                    tool_use_id=call.id, content=ABORTED_RESULT, is_error=True, name=call.name
                )
            elif outcome.decision == GateDecision.DENY:
                logger.debug("Tool call %s denied: %s", call.name, outcome.reason)
                settled[call.id] = ToolResult(
                    tool_use_id=call.id,
                    content=f"{outcome.reason}{DENIED_SUFFIX}",
                    is_error=True,
                    name=call.name,
                )
            else:
                approved.append(outcome.call)

        if aborted:
            # Calls approved before the abort never run
            for call in approved:
                settled[call.id] = ToolResult(
                    tool_use_id=call.id, content=SKIPPED_RESULT, is_error=True, name=call.name
                )
            approved = []

        for call in calls:
            if call.id in settled:
                self._on_tool_result(call, settled[call.id])

        if approved:
            executed = await execute_batches(
                plan_batches(approved),
                self._execute_tool,
                on_start=self._on_tool_start,
                on_result=self._on_tool_result,
            )
            for call, result in zip(approved, executed):
                settled[call.id] = result
            turn.tool_calls.extend(approved)

        results = [settled[call.id] for call in calls]
        self.messages.append(Message(role="user", content=[r.to_block() for r in results]))

        if aborted:
            return True
        if any(r.is_error for r in results):
            turn.consecutive_errors += 1
        else:
            turn.consecutive_errors = 0
        return False
