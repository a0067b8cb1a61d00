"""OpenAI provider implementation (Chat Completions API)."""

import json
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

DEFAULT_MODEL = "gpt-4o"


def convert_messages(messages: list[Message], system_prompt: str | None) -> list[dict[str, Any]]:
    """Convert messages to Chat Completions format.

    Assistant ``tool_use`` blocks become ``tool_calls``; each ``tool_result``
    block becomes a separate ``{role: "tool"}`` message placed before any
    remaining user text.
    """
    result: list[dict[str, Any]] = []
    if system_prompt:
        result.append({"role": "system", "content": system_prompt})

    for message in messages:
        if isinstance(message.content, str):
            result.append({"role": message.role, "content": message.content})
            continue

        text = "\n".join(b.text for b in message.content if b.type == "text")
        if message.role == "assistant":
            entry: dict[str, Any] = {"role": "assistant", "content": text or None}
            tool_calls = [
                {
                    "id": b.id,
                    "type": "function",
                    "function": {"name": b.name, "arguments": json.dumps(b.input)},
                }
                for b in message.content
                if b.type == "tool_use"
            ]
            if tool_calls:
                entry["tool_calls"] = tool_calls
            result.append(entry)
            continue

        for block in message.content:
            if block.type == "tool_result":
                result.append(
                    {"role": "tool", "tool_call_id": block.tool_use_id, "content": block.content}
                )
        images = [b for b in message.content if b.type == "image"]
        if images:
            parts: list[dict[str, Any]] = [{"type": "text", "text": text}] if text else []
            parts.extend(
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{b.source.media_type};base64,{b.source.data}"},
                }
                for b in images
            )
            result.append({"role": "user", "content": parts})
        elif text:
            result.append({"role": "user", "content": text})
    return result


def convert_tools(tools: list[ToolDefinition]) -> list[dict[str, Any]]:
    """
    Convert tool definitions to Chat Completions format.

    OpenAI Chat Completions expects:
    [{"type": "function", "function": {"name": "...", "description": "...", "parameters": {...}}}]
    """
    return [
        {
            "type": "function",
            "function": {
                "name": t.name,
                "description": t.description,
                "parameters": t.input_schema,
            },
        }
        for t in tools
    ]


@register_provider("openai")
class OpenAIProvider(Provider):
    """OpenAI provider for streaming Chat Completions, also used for compatible endpoints."""

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        api_key: str | None = None,
        base_url: str | None = None,
        context_window: int | None = None,
    ):
        """
        Initialize OpenAI provider.

        Args:
            model: Model identifier
            api_key: OpenAI API key. If not provided, uses OPENAI_API_KEY env var.
            base_url: Optional base URL for the API. If not provided, defaults to OpenAI's URL.
                     Useful for Azure OpenAI or other OpenAI-compatible endpoints.
            context_window: Override the declared context window
        """
        # Import OpenAI SDK only when this provider is used (lazy loading)
        try:
            from openai import AsyncOpenAI
        except ImportError:
            raise ImportError(
                "OpenAI SDK not installed. Install it with: pip install 'codi-core[openai]'"
            ) from None

        super().__init__(model, context_window)
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not self.api_key:
            raise ValueError(
                "OpenAI API key not provided. Set OPENAI_API_KEY environment variable "
                "or pass api_key parameter."
            )
        self.base_url = base_url or os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
        self.client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)

    def get_name(self) -> str:
        return "openai"

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
            "messages": convert_messages(messages, system_prompt),
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            request_params["tools"] = convert_tools(tools)

        text_parts: list[str] = []
        reasoning_parts: list[str] = []
        # Tool calls arrive in fragments keyed by index
        partial_calls: dict[int, dict[str, str]] = {}
        usage = Usage()
        stop_reason = None

        try:
            stream = await self.client.chat.completions.create(**request_params)
            async for chunk in stream:
                if chunk.choices:
                    choice = chunk.choices[0]
                    delta = choice.delta

                    if delta.content:
                        text_parts.append(delta.content)
                        if on_text:
                            on_text(delta.content)

                    # Some compatible servers stream reasoning separately
                    reasoning = getattr(delta, "reasoning_content", None)
                    if reasoning:
                        reasoning_parts.append(reasoning)
                        if on_reasoning:
                            on_reasoning(reasoning)

                    for tool_call_delta in delta.tool_calls or []:
                        idx = tool_call_delta.index if tool_call_delta.index is not None else 0
                        entry = partial_calls.setdefault(
                            idx, {"id": "", "name": "", "arguments": ""}
                        )
                        if tool_call_delta.id:
                            entry["id"] = tool_call_delta.id
                        if tool_call_delta.function:
                            if tool_call_delta.function.name:
                                entry["name"] = tool_call_delta.function.name
                            if tool_call_delta.function.arguments:
                                entry["arguments"] += tool_call_delta.function.arguments

                    if choice.finish_reason:
                        stop_reason = choice.finish_reason

                if chunk.usage:
                    usage.input_tokens = chunk.usage.prompt_tokens or 0
                    usage.output_tokens = chunk.usage.completion_tokens or 0
        except Exception as e:
            raise ProviderError("openai", f"Chat Completions streaming failed: {e}") from e

        tool_calls = [
            ToolCall(
                id=entry["id"] or f"call_{idx}",
                name=entry["name"],
                input=safe_parse_json(entry["arguments"]),
            )
            for idx, entry in sorted(partial_calls.items())
            # Only complete tool calls
            if entry["name"]
        ]
        usage.total_tokens = usage.input_tokens + usage.output_tokens
        return ProviderResponse(
            content="".join(text_parts),
            tool_calls=tool_calls,
            stop_reason=map_stop_reason(stop_reason),
            usage=usage,
            reasoning_content="".join(reasoning_parts) or None,
        )
