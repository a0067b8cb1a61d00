"""Unit tests for codi.memory.tokens module."""

import json

from codi.memory.tokens import (
    estimate_message_tokens,
    estimate_messages_tokens,
    estimate_tokens,
    estimate_tool_definition_tokens,
    get_message_text,
)
from codi.types.types import (
    ImageBlock,
    ImageSource,
    Message,
    TextBlock,
    ToolDefinition,
    ToolResultBlock,
    ToolUseBlock,
)


class TestEstimateTokens:
    """Tests for estimate_tokens function."""

    def test_empty_string(self):
        assert estimate_tokens("") == 0

    def test_single_character(self):
        assert estimate_tokens("a") == 1

    def test_ceil_division(self):
        # 'hello world' = 11 chars -> ceil(11/4) = 3
        assert estimate_tokens("hello world") == 3

    def test_exact_divisible_by_4(self):
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcdefgh") == 2


class TestGetMessageText:
    """Tests for get_message_text function."""

    def test_string_content(self):
        assert get_message_text(Message.user("hello")) == "hello"

    def test_blocks_are_joined(self):
        """Text, tool calls and tool results all contribute."""
        msg = Message(
            role="assistant",
            content=[
                TextBlock(text="Reading"),
                ToolUseBlock(id="t1", name="read_file", input={"path": "a.py"}),
            ],
        )
        text = get_message_text(msg)
        assert "Reading" in text
        assert '[read_file] {"path": "a.py"}' in text

    def test_tool_result_content(self):
        msg = Message(role="user", content=[ToolResultBlock(tool_use_id="t1", content="file body")])
        assert get_message_text(msg) == "file body"

    def test_images_contribute_nothing(self):
        msg = Message(
            role="user",
            content=[ImageBlock(source=ImageSource(media_type="image/png", data="A" * 400))],
        )
        assert get_message_text(msg) == ""


class TestEstimateMessageTokens:
    """Tests for estimate_message_tokens and estimate_messages_tokens."""

    def test_string_content(self):
        assert estimate_message_tokens(Message.user("hello world")) == 3

    def test_sum_over_messages(self):
        messages = [Message.user("abcd"), Message.assistant("abcdefgh")]
        assert estimate_messages_tokens(messages) == 3

    def test_empty_list(self):
        assert estimate_messages_tokens([]) == 0


class TestEstimateToolDefinitionTokens:
    """Tests for estimate_tool_definition_tokens function."""

    def test_counts_serialized_schema(self):
        definition = ToolDefinition(name="bash", description="Run a command")
        expected = estimate_tokens(json.dumps(definition.model_dump(mode="json")))
        assert estimate_tool_definition_tokens([definition]) == expected

    def test_no_definitions(self):
        assert estimate_tool_definition_tokens([]) == 0
