"""Token estimation utilities for context budgeting.

Uses a simple heuristic: ~4 characters per token. Callers that need exact
counts can pass their own estimator where one is accepted.
"""

from __future__ import annotations

import json
import math
from collections.abc import Iterable

from ..types.types import Message, ToolDefinition


def estimate_tokens(text: str) -> int:
    """Estimate token count for a string using the ~4 chars/token heuristic."""
    return math.ceil(len(text) / 4)


def get_message_text(message: Message) -> str:
    """Flatten a message into the text that is billed against the context window.

    Text and thinking blocks contribute their text, tool calls their JSON input,
    and tool results their content. Images contribute nothing.
    """
    if isinstance(message.content, str):
        return message.content
    parts: list[str] = []
    for block in message.content:
        if block.type == "text":
            parts.append(block.text)
        elif block.type == "thinking":
            parts.append(block.thinking)
        elif block.type == "tool_use":
            try:
                parts.append(f"[{block.name}] {json.dumps(block.input)}")
            except (TypeError, ValueError):
                parts.append(f"[{block.name}] {block.input}")
        elif block.type == "tool_result":
            parts.append(block.content)
    return "\n".join(parts)


def estimate_message_tokens(message: Message) -> int:
    """Estimate token count for a single conversation message."""
    return estimate_tokens(get_message_text(message))


def estimate_messages_tokens(messages: Iterable[Message]) -> int:
    """Estimate total token count for a sequence of conversation messages."""
    total = 0
    for msg in messages:
        total += estimate_message_tokens(msg)
    return total


def estimate_tool_definition_tokens(definitions: Iterable[ToolDefinition]) -> int:
    """Estimate the tokens taken by tool schemas sent with every request."""
    total = 0
    for definition in definitions:
        total += estimate_tokens(json.dumps(definition.model_dump(mode="json")))
    return total
