"""Ollama provider for local models, talking to the native ``/api/chat`` endpoint."""

import json
import logging
import os
from typing import Any

import httpx

from ...types.types import Message, ToolDefinition, Usage
from .base import (
    Provider,
    ProviderError,
    ProviderResponse,
    TextCallback,
    map_stop_reason,
    register_provider,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "llama3.1"
DEFAULT_HOST = "http://localhost:11434"

TOOL_INSTRUCTIONS = (
    "\n\n## Tools\n"
    "To call a tool, reply with a JSON object on its own line:\n"
    '{{"name": "<tool name>", "arguments": {{...}}}}\n'
    "Available tools:\n{tools}"
)


def convert_messages(messages: list[Message], system_prompt: str | None) -> list[dict[str, Any]]:
    """Flatten messages to Ollama's text format.

    Tool calls and results are rendered as text, the same shapes the
    agent's text extraction recognizes.
    """
    result: list[dict[str, Any]] = []
    if system_prompt:
        result.append({"role": "system", "content": system_prompt})
    for message in messages:
        if isinstance(message.content, str):
            result.append({"role": message.role, "content": message.content})
            continue
        parts: list[str] = []
        images: list[str] = []
        for block in message.content:
            if block.type == "text":
                parts.append(block.text)
            elif block.type == "tool_use":
                parts.append(f"[Calling {block.name}]: {json.dumps(block.input)}")
            elif block.type == "tool_result":
                label = "Tool error" if block.is_error else "Tool result"
                parts.append(f"[{label}{f' {block.name}' if block.name else ''}]: {block.content}")
            elif block.type == "image":
                images.append(block.source.data)
        entry: dict[str, Any] = {"role": message.role, "content": "\n\n".join(parts)}
        if images:
            entry["images"] = images
        result.append(entry)
    return result


def describe_tools(tools: list[ToolDefinition]) -> str:
    lines = []
    for t in tools:
        params = ", ".join(t.input_schema.get("properties", {}))
        lines.append(f"- {t.name}({params}): {t.description}")
    return TOOL_INSTRUCTIONS.format(tools="\n".join(lines))


@register_provider("ollama")
class OllamaProvider(Provider):
    """Ollama provider for local LLMs.

    Ollama has no native tool calling here: tools are described in the
    system prompt and the agent extracts calls from the response text.

    Usage:
        provider = get_provider("ollama", model="llama3.1")

        # Or with custom host:
        provider = get_provider("ollama", model="llama3.1", host="http://my-server:11434")
    """

    context_window = 8192

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        host: str | None = None,
        context_window: int | None = None,
        timeout: float = 300.0,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(model, context_window)
        self.host = (host or os.getenv("OLLAMA_HOST", DEFAULT_HOST)).rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=5.0))

    def get_name(self) -> str:
        return "ollama"

    def supports_tool_use(self) -> bool:
        return False

    async def stream_chat(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        on_text: TextCallback | None = None,
        system_prompt: str | None = None,
        on_reasoning: TextCallback | None = None,
    ) -> ProviderResponse:
        if tools:
            system_prompt = (system_prompt or "") + describe_tools(tools)
        payload = {
            "model": self.model,
            "messages": convert_messages(messages, system_prompt),
            "stream": True,
            "options": {"num_ctx": self.context_window},
        }

        text_parts: list[str] = []
        reasoning_parts: list[str] = []
        usage = Usage()
        stop_reason = None
        try:
            async with self.client.stream("POST", f"{self.host}/api/chat", json=payload) as resp:
                resp.raise_for_status()
                # Newline-delimited JSON, one object per chunk
                async for line in resp.aiter_lines():
                    if not line.strip():
                        continue
                    chunk = json.loads(line)
                    if chunk.get("error"):
                        raise ProviderError("ollama", chunk["error"])
                    message = chunk.get("message") or {}
                    if message.get("content"):
                        text_parts.append(message["content"])
                        if on_text:
                            on_text(message["content"])
                    if message.get("thinking"):
                        reasoning_parts.append(message["thinking"])
                        if on_reasoning:
                            on_reasoning(message["thinking"])
                    if chunk.get("done"):
                        stop_reason = chunk.get("done_reason")
                        usage.input_tokens = chunk.get("prompt_eval_count") or 0
                        usage.output_tokens = chunk.get("eval_count") or 0
        except (httpx.HTTPError, json.JSONDecodeError) as e:
            raise ProviderError("ollama", f"/api/chat streaming failed: {e}") from e

        usage.total_tokens = usage.input_tokens + usage.output_tokens
        return ProviderResponse(
            content="".join(text_parts),
            stop_reason=map_stop_reason(stop_reason),
            usage=usage,
            reasoning_content="".join(reasoning_parts) or None,
        )

    async def aclose(self) -> None:
        await self.client.aclose()
