from .types import (
    ContentBlock,
    ImageBlock,
    ImageSource,
    Message,
    TextBlock,
    ThinkingBlock,
    ToolCall,
    ToolCallSource,
    ToolDefinition,
    ToolResult,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
)

__all__ = [
    "ContentBlock",
    "ImageBlock",
    "ImageSource",
    "Message",
    "TextBlock",
    "ThinkingBlock",
    "ToolCall",
    "ToolCallSource",
    "ToolDefinition",
    "ToolResult",
    "ToolResultBlock",
    "ToolUseBlock",
    "Usage",
]
