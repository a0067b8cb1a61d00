"""Anthropic provider implementation."""

import logging
import os
from typing import Any

from ...types.types import Message, ToolCall, ToolDefinition, Usage
from .base import (
    Provider,
    ProviderError,
    ProviderResponse,
    TextCallback,
    map_stop_reason,
    register_provider,
    safe_parse_json,
)

logger = logging.getLogger(__name__)

ANTHROPIC_CACHE_CONTROL = {"type": "ephemeral"}
DEFAULT_MODEL = "claude-sonnet-4-5"
DEFAULT_MAX_TOKENS = 8192


def _apply_cache_control(request_params: dict[str, Any]) -> None:
    """Add prompt caching breakpoints to request params (in-place).

    Marks the system prompt, the last tool, and the last content block of the
    last message so the static prefix is cached across loop iterations.
    Request params are rebuilt every call, so no stale markers exist.
    """
    system = request_params.get("system")
    if isinstance(system, str):
        request_params["system"] = [
            {"type": "text", "text": system, "cache_control": ANTHROPIC_CACHE_CONTROL}
        ]

    tools = request_params.get("tools")
    if tools:
        tools[-1] = {**tools[-1], "cache_control": ANTHROPIC_CACHE_CONTROL}

    messages = request_params.get("messages")
    if messages:
        last_msg = messages[-1]
        content = last_msg.get("content")
        if isinstance(content, str):
            messages[-1] = {
                **last_msg,
                "content": [
                    {"type": "text", "text": content, "cache_control": ANTHROPIC_CACHE_CONTROL}
                ],
            }
        elif content:
            content[-1] = {**content[-1], "cache_control": ANTHROPIC_CACHE_CONTROL}


def _convert_messages(messages: list[Message]) -> list[dict[str, Any]]:
    """Convert messages to Messages API format.

    Assistant turns left without content are dropped; the API rejects them.
    """
    converted = []
    for message in messages:
        if isinstance(message.content, str):
            if message.content or message.role != "assistant":
                converted.append({"role": message.role, "content": message.content})
            continue
        blocks = []
        for block in message.content:
            if block.type == "thinking" and not block.signature:
                # Unsigned thinking cannot be replayed
                continue
            if block.type == "text" and not block.text:
                continue
            data = block.model_dump(mode="json", exclude_none=True)
            if block.type == "tool_result":
                data.pop("name", None)
            blocks.append(data)
        if blocks or message.role != "assistant":
            converted.append({"role": message.role, "content": blocks})
    return converted


@register_provider("anthropic")
class AnthropicProvider(Provider):
    """Anthropic provider using the streaming Messages API."""

    context_window = 200000

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        api_key: str | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        context_window: int | None = None,
    ):
        """
        Initialize Anthropic provider.

        Args:
            model: Model identifier
            api_key: Anthropic API key. If not provided, uses ANTHROPIC_API_KEY env var.
            max_tokens: Maximum output tokens per response
            context_window: Override the declared context window
        """
        # Import Anthropic SDK only when this provider is used (lazy loading)
        try:
            from anthropic import AsyncAnthropic
        except ImportError:
            raise ImportError(
                "Anthropic SDK not installed. Install it with: pip install 'codi-core[anthropic]'"
            ) from None

        super().__init__(model, context_window)
        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not self.api_key:
            raise ValueError(
                "Anthropic API key not provided. Set ANTHROPIC_API_KEY "
                "environment variable or pass api_key parameter."
            )
        self.max_tokens = max_tokens
        self.client = AsyncAnthropic(api_key=self.api_key)

    def get_name(self) -> str:
        return "anthropic"

    async def stream_chat(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        on_text: TextCallback | None = None,
        system_prompt: str | None = None,
        on_reasoning: TextCallback | None = None,
    ) -> ProviderResponse:
        request_params: dict[str, Any] = {
            "model": self.model,
            "messages": _convert_messages(messages),
            "max_tokens": self.max_tokens,
            "stream": True,
        }
        if system_prompt:
            request_params["system"] = system_prompt
        if tools:
            request_params["tools"] = [t.model_dump(mode="json") for t in tools]
        _apply_cache_control(request_params)

        text_parts: list[str] = []
        reasoning_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        current_tool: dict[str, Any] | None = None
        usage = Usage()
        stop_reason = None

        try:
            stream = await self.client.messages.create(**request_params)
            async for event in stream:
                # Event types: message_start, content_block_start, content_block_delta,
                # content_block_stop, message_delta, message_stop
                if event.type == "content_block_start":
                    block = event.content_block
                    if block.type == "tool_use":
                        current_tool = {"id": block.id, "name": block.name, "json": ""}
                    elif block.type == "text" and block.text:
                        text_parts.append(block.text)
                        if on_text:
                            on_text(block.text)

                elif event.type == "content_block_delta":
                    delta = event.delta
                    if delta.type == "text_delta":
                        text_parts.append(delta.text)
                        if on_text:
                            on_text(delta.text)
                    elif delta.type == "thinking_delta":
                        reasoning_parts.append(delta.thinking)
                        if on_reasoning:
                            on_reasoning(delta.thinking)
                    elif delta.type == "input_json_delta" and current_tool is not None:
                        current_tool["json"] += delta.partial_json

                elif event.type == "content_block_stop":
                    if current_tool is not None:
                        tool_calls.append(
                            ToolCall(
                                id=current_tool["id"],
                                name=current_tool["name"],
                                input=safe_parse_json(current_tool["json"]),
                            )
                        )
                        current_tool = None

                elif event.type == "message_start":
                    _merge_usage(usage, event.message.usage)

                elif event.type == "message_delta":
                    stop_reason = event.delta.stop_reason or stop_reason
                    _merge_usage(usage, event.usage)

        except Exception as e:
            raise ProviderError("anthropic", f"Messages API streaming failed: {e}") from e

        # input_tokens only counts non-cached tokens
        usage.input_tokens += (usage.cache_read_input_tokens or 0) + (
            usage.cache_creation_input_tokens or 0
        )
        usage.total_tokens = usage.input_tokens + usage.output_tokens
        logger.debug(
            "Anthropic response: %d tool calls, stop_reason=%s", len(tool_calls), stop_reason
        )
        return ProviderResponse(
            content="".join(text_parts),
            tool_calls=tool_calls,
            stop_reason=map_stop_reason(stop_reason),
            usage=usage,
            reasoning_content="".join(reasoning_parts) or None,
        )


def _merge_usage(usage: Usage, data: Any) -> None:
    if data is None:
        return
    for field in (
        "input_tokens",
        "output_tokens",
        "cache_read_input_tokens",
        "cache_creation_input_tokens",
    ):
        value = getattr(data, field, None)
        if value is not None:
            setattr(usage, field, value)
