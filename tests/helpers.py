"""Test helpers: a scripted provider and message builders."""

from codi.llm.providers.base import Provider, ProviderResponse
from codi.types.types import (
    Message,
    TextBlock,
    ToolCall,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
)


class ScriptedProvider(Provider):
    """Provider returning queued responses in order.

    Each queued item is a ProviderResponse, or an exception to raise. Every
    request is recorded in ``calls``.
    """

    def __init__(self, responses=None, context_window: int = 200000, model: str = "scripted-1"):
        super().__init__(model, context_window)
        self.responses = list(responses or [])
        self.calls: list[dict] = []

    def queue(self, *responses) -> None:
        self.responses.extend(responses)

    def get_name(self) -> str:
        return "scripted"

    async def stream_chat(
        self,
        messages,
        tools=None,
        on_text=None,
        system_prompt=None,
        on_reasoning=None,
    ) -> ProviderResponse:
        self.calls.append(
            {"messages": list(messages), "tools": tools, "system_prompt": system_prompt}
        )
        if not self.responses:
            raise AssertionError("ScriptedProvider ran out of responses")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        if item.reasoning_content and on_reasoning:
            on_reasoning(item.reasoning_content)
        if item.content and on_text:
            on_text(item.content)
        return item


def text_response(text: str, input_tokens: int = 10, output_tokens: int = 5) -> ProviderResponse:
    return ProviderResponse(
        content=text,
        stop_reason="end_turn",
        usage=Usage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
        ),
    )


def tool_response(*calls: ToolCall, text: str = "") -> ProviderResponse:
    return ProviderResponse(
        content=text,
        tool_calls=list(calls),
        stop_reason="tool_use",
        usage=Usage(input_tokens=10, output_tokens=5, total_tokens=15),
    )


def make_call(name: str, call_id: str | None = None, **tool_input) -> ToolCall:
    return ToolCall(id=call_id or f"call_{name}", name=name, input=tool_input)


def tool_pair(call_id: str, name: str, result: str, **tool_input) -> list[Message]:
    """An assistant tool_use message and the user message answering it."""
    return [
        Message(
            role="assistant",
            content=[ToolUseBlock(id=call_id, name=name, input=tool_input)],
        ),
        Message(
            role="user",
            content=[ToolResultBlock(tool_use_id=call_id, content=result, name=name)],
        ),
    ]


def conversation(n: int, text: str = "message") -> list[Message]:
    """Alternating user/assistant plain-text messages."""
    return [
        Message(role="user" if i % 2 == 0 else "assistant", content=f"{text} {i}")
        for i in range(n)
    ]


def text_of(message: Message) -> str:
    if isinstance(message.content, str):
        return message.content
    return "\n".join(b.text for b in message.content if isinstance(b, TextBlock))

