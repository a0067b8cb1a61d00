"""Type definitions for conversation messages, content blocks, tool calls, and usage."""

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class TextBlock(BaseModel):
    """Plain text content."""

    type: Literal["text"] = "text"
    text: str


class ThinkingBlock(BaseModel):
    """Model reasoning content."""

    type: Literal["thinking"] = "thinking"
    thinking: str
    signature: str | None = None


class ToolUseBlock(BaseModel):
    """A tool invocation requested by the assistant."""

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(BaseModel):
    """The result of a tool invocation, sent back in a user message."""

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: str = ""
    is_error: bool = False
    name: str | None = None


class ImageSource(BaseModel):
    type: Literal["base64"] = "base64"
    media_type: str
    data: str


class ImageBlock(BaseModel):
    """Inline image content."""

    type: Literal["image"] = "image"
    source: ImageSource


ContentBlock = Annotated[
    Union[TextBlock, ThinkingBlock, ToolUseBlock, ToolResultBlock, ImageBlock],
    Field(discriminator="type"),
]


class Message(BaseModel):
    """A conversation message.

    ``content`` is either plain text or an ordered list of content blocks.
    Every ``tool_use`` block in an assistant message is answered by a
    ``tool_result`` block with the same id in the immediately following
    user message.
    """

    role: Literal["user", "assistant"]
    content: str | list[ContentBlock]

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(role="user", content=text)

    @classmethod
    def assistant(cls, text: str) -> "Message":
        return cls(role="assistant", content=text)

    def blocks(self) -> list[Any]:
        """Return content as a block list, wrapping plain text."""
        if isinstance(self.content, str):
            return [TextBlock(text=self.content)] if self.content else []
        return list(self.content)

    def has_tool_use(self) -> bool:
        return not isinstance(self.content, str) and any(
            block.type == "tool_use" for block in self.content
        )

    def has_tool_result(self) -> bool:
        return not isinstance(self.content, str) and any(
            block.type == "tool_result" for block in self.content
        )

    def tool_use_ids(self) -> list[str]:
        if isinstance(self.content, str):
            return []
        return [block.id for block in self.content if block.type == "tool_use"]

    def tool_result_ids(self) -> list[str]:
        if isinstance(self.content, str):
            return []
        return [block.tool_use_id for block in self.content if block.type == "tool_result"]


class ToolCallSource(str, Enum):
    """Where a tool call came from."""

    NATIVE = "native"
    EXTRACTED = "extracted"


class ToolCall(BaseModel):
    """A tool call requested by the model."""

    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)
    source: ToolCallSource = ToolCallSource.NATIVE


class ToolResult(BaseModel):
    """Result from executing a tool."""

    tool_use_id: str
    content: str
    is_error: bool = False
    name: str | None = None

    def to_block(self) -> ToolResultBlock:
        return ToolResultBlock(
            tool_use_id=self.tool_use_id,
            content=self.content,
            is_error=self.is_error,
            name=self.name,
        )


class Usage(BaseModel):
    """Token usage information from LLM calls."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cache_read_input_tokens: int | None = None
    cache_creation_input_tokens: int | None = None

    def add(self, other: "Usage | None") -> None:
        if other is None:
            return
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens
        self.total_tokens += other.total_tokens or (other.input_tokens + other.output_tokens)


class ToolDefinition(BaseModel):
    """Schema for a tool, as sent to the model."""

    # Providers attach extra keys (e.g. cache markers) to definitions
    model_config = ConfigDict(extra="allow")

    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
