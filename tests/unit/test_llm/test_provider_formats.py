"""Tests for provider request conversion and the Ollama streaming client."""

import json

import httpx
import pytest

from codi.llm.providers import anthropic as anthropic_provider
from codi.llm.providers import ollama as ollama_provider
from codi.llm.providers import openai as openai_provider
from codi.llm.providers.base import ProviderError
from codi.types.types import (
    ImageBlock,
    ImageSource,
    Message,
    TextBlock,
    ThinkingBlock,
    ToolDefinition,
    ToolResultBlock,
    ToolUseBlock,
)

TOOL_TURN = [
    Message.user("read a.py"),
    Message(
        role="assistant",
        content=[
            TextBlock(text="Reading."),
            ToolUseBlock(id="t1", name="read_file", input={"path": "a.py"}),
        ],
    ),
    Message(
        role="user",
        content=[ToolResultBlock(tool_use_id="t1", content="print(1)", name="read_file")],
    ),
]

READ_FILE = ToolDefinition(
    name="read_file",
    description="Read a file",
    input_schema={"type": "object", "properties": {"path": {"type": "string"}}},
)


class TestOpenAIConversion:
    """Tests for Chat Completions message conversion."""

    def test_tool_turn(self):
        converted = openai_provider.convert_messages(TOOL_TURN, "be brief")
        assert converted[0] == {"role": "system", "content": "be brief"}
        assert converted[1] == {"role": "user", "content": "read a.py"}
        assert converted[2]["content"] == "Reading."
        assert converted[2]["tool_calls"] == [
            {
                "id": "t1",
                "type": "function",
                "function": {"name": "read_file", "arguments": '{"path": "a.py"}'},
            }
        ]
        assert converted[3] == {"role": "tool", "tool_call_id": "t1", "content": "print(1)"}
        assert len(converted) == 4

    def test_images(self):
        image = ImageBlock(source=ImageSource(media_type="image/png", data="AAAA"))
        converted = openai_provider.convert_messages(
            [Message(role="user", content=[TextBlock(text="what is this"), image])], None
        )
        parts = converted[0]["content"]
        assert parts[0] == {"type": "text", "text": "what is this"}
        assert parts[1]["image_url"]["url"] == "data:image/png;base64,AAAA"

    def test_tools(self):
        assert openai_provider.convert_tools([READ_FILE]) == [
            {
                "type": "function",
                "function": {
                    "name": "read_file",
                    "description": "Read a file",
                    "parameters": READ_FILE.input_schema,
                },
            }
        ]


class TestAnthropicConversion:
    """Tests for Messages API conversion and prompt caching."""

    def test_blocks_are_dumped(self):
        converted = anthropic_provider._convert_messages(TOOL_TURN)
        assert converted[1]["content"][1] == {
            "type": "tool_use",
            "id": "t1",
            "name": "read_file",
            "input": {"path": "a.py"},
        }
        # The tool name is internal bookkeeping and not part of the API
        assert converted[2]["content"][0] == {
            "type": "tool_result",
            "tool_use_id": "t1",
            "content": "print(1)",
            "is_error": False,
        }

    def test_unsigned_thinking_is_dropped(self):
        message = Message(
            role="assistant",
            content=[ThinkingBlock(thinking="hmm"), TextBlock(text="ok")],
        )
        converted = anthropic_provider._convert_messages([message])
        assert converted[0]["content"] == [{"type": "text", "text": "ok"}]

    def test_empty_assistant_turns_are_dropped(self):
        history = [
            Message.user("hi"),
            Message(role="assistant", content=""),
            Message.user("still there?"),
            Message(role="assistant", content=[ThinkingBlock(thinking="hmm"), TextBlock(text="")]),
            Message.user("hello?"),
        ]
        converted = anthropic_provider._convert_messages(history)
        assert [m["role"] for m in converted] == ["user", "user", "user"]
        assert all(m["content"] for m in converted)

    def test_cache_control(self):
        params = {
            "system": "prompt",
            "tools": [{"name": "a"}, {"name": "b"}],
            "messages": [{"role": "user", "content": "hi"}],
        }
        anthropic_provider._apply_cache_control(params)
        assert params["system"][0]["cache_control"] == {"type": "ephemeral"}
        assert "cache_control" not in params["tools"][0]
        assert params["tools"][1]["cache_control"] == {"type": "ephemeral"}
        assert params["messages"][0]["content"][0] == {
            "type": "text",
            "text": "hi",
            "cache_control": {"type": "ephemeral"},
        }


class TestOllamaConversion:
    """Tests for Ollama text conversion."""

    def test_tool_turn_as_text(self):
        converted = ollama_provider.convert_messages(TOOL_TURN, "sys")
        assert converted[0] == {"role": "system", "content": "sys"}
        assert converted[2]["content"] == 'Reading.\n\n[Calling read_file]: {"path": "a.py"}'
        assert converted[3]["content"] == "[Tool result read_file]: print(1)"

    def test_describe_tools(self):
        text = ollama_provider.describe_tools([READ_FILE])
        assert "- read_file(path): Read a file" in text
        assert '{"name": "<tool name>", "arguments": {...}}' in text


def _ollama(handler) -> ollama_provider.OllamaProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ollama_provider.OllamaProvider(
        model="llama3.1", host="http://ollama:11434", client=client
    )


def _ndjson(*chunks) -> bytes:
    return "\n".join(json.dumps(c) for c in chunks).encode()


class TestOllamaStreaming:
    """Tests for OllamaProvider.stream_chat against a mock transport."""

    @pytest.mark.asyncio
    async def test_streams_text_and_usage(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(json.loads(request.content))
            return httpx.Response(
                200,
                content=_ndjson(
                    {"message": {"content": "Hel"}},
                    {"message": {"content": "lo", "thinking": "greeting"}},
                    {
                        "done": True,
                        "done_reason": "stop",
                        "prompt_eval_count": 12,
                        "eval_count": 3,
                    },
                ),
            )

        chunks = []
        provider = _ollama(handler)
        response = await provider.stream_chat(
            [Message.user("hi")], tools=[READ_FILE], on_text=chunks.append, system_prompt="sys"
        )

        assert chunks == ["Hel", "lo"]
        assert response.content == "Hello"
        assert response.reasoning_content == "greeting"
        assert response.stop_reason == "end_turn"
        assert response.usage.input_tokens == 12
        assert response.usage.total_tokens == 15
        assert response.tool_calls == []

        body = requests[0]
        assert body["model"] == "llama3.1"
        assert body["options"] == {"num_ctx": 8192}
        assert body["messages"][0]["content"].startswith("sys\n\n## Tools")

    @pytest.mark.asyncio
    async def test_http_error(self):
        provider = _ollama(lambda request: httpx.Response(500, text="boom"))
        with pytest.raises(ProviderError, match="ollama"):
            await provider.stream_chat([Message.user("hi")])

    @pytest.mark.asyncio
    async def test_error_chunk(self):
        provider = _ollama(
            lambda request: httpx.Response(200, content=_ndjson({"error": "model not found"}))
        )
        with pytest.raises(ProviderError, match="model not found"):
            await provider.stream_chat([Message.user("hi")])
