"""Base class for LLM providers."""

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, Literal

from pydantic import BaseModel, Field

from ...types.types import Message, ToolCall, ToolDefinition, Usage

logger = logging.getLogger(__name__)

# Provider registry - providers register themselves here
_PROVIDER_REGISTRY: dict[str, type["Provider"]] = {}

StopReason = Literal["end_turn", "tool_use", "max_tokens", "stop_sequence"]

TextCallback = Callable[[str], None]


def register_provider(name: str):
    """
    Decorator to register a provider class.

    Usage:
        @register_provider("openai")
        class OpenAIProvider(Provider):
            ...

    Args:
        name: Provider name (e.g., "openai", "anthropic")

    Returns:
        Decorator function
    """

    def decorator(cls: type["Provider"]) -> type["Provider"]:
        _PROVIDER_REGISTRY[name.lower()] = cls
        return cls

    return decorator


class ProviderError(Exception):
    """A chat request to the LLM backend failed."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class ProviderResponse(BaseModel):
    """Response from a streamed chat call."""

    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    stop_reason: StopReason = "end_turn"
    usage: Usage | None = None
    reasoning_content: str | None = None


_STOP_REASONS: dict[str, StopReason] = {
    "end_turn": "end_turn",
    "stop": "end_turn",
    "tool_use": "tool_use",
    "tool_calls": "tool_use",
    "function_call": "tool_use",
    "max_tokens": "max_tokens",
    "length": "max_tokens",
    "stop_sequence": "stop_sequence",
}


def map_stop_reason(raw: str | None) -> StopReason:
    """Normalize a provider-specific stop reason."""
    if raw is None:
        return "end_turn"
    return _STOP_REASONS.get(raw.lower(), "end_turn")


def safe_parse_json(text: str | None) -> dict[str, Any]:
    """Parse tool-call arguments, returning ``{}`` when they are malformed."""
    if not text:
        return {}
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        logger.debug("Malformed tool arguments: %.200s", text)
        return {}
    return parsed if isinstance(parsed, dict) else {}


class Provider(ABC):
    """Base class for chat providers.

    Subclasses implement ``stream_chat``; text and reasoning chunks are
    pushed to the callbacks as they arrive and the complete response is
    returned at the end.
    """

    #: Declared context window in tokens
    context_window: int = 128000

    def __init__(self, model: str, context_window: int | None = None):
        self.model = model
        if context_window is not None:
            self.context_window = context_window

    @abstractmethod
    async def stream_chat(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        on_text: TextCallback | None = None,
        system_prompt: str | None = None,
        on_reasoning: TextCallback | None = None,
    ) -> ProviderResponse:
        """
        Send the conversation and stream the reply.

        Args:
            messages: Conversation history
            tools: Tool definitions the model may call
            on_text: Called with each text chunk
            system_prompt: System prompt for this request
            on_reasoning: Called with each reasoning chunk

        Returns:
            ProviderResponse with content, tool calls, stop reason and usage

        Raises:
            ProviderError: If the request fails
        """

    @abstractmethod
    def get_name(self) -> str:
        pass

    def get_model(self) -> str:
        return self.model

    def supports_tool_use(self) -> bool:
        return True


def get_provider(provider_name: str, **kwargs) -> Provider:
    """
    Get a provider instance by name from the registry.

    Providers are dynamically imported when requested. If a provider's SDK is not installed,
    a helpful error message will be raised.

    Args:
        provider_name: Name of the provider ("anthropic", "openai", "ollama")
        **kwargs: Provider-specific initialization parameters

    Returns:
        Provider instance

    Raises:
        ValueError: If the provider is not found or not supported
        ImportError: If the provider's SDK is not installed
    """
    provider_name_lower = provider_name.lower()

    provider_class = _PROVIDER_REGISTRY.get(provider_name_lower)
    if provider_class:
        return provider_class(**kwargs)

    provider_modules = ("anthropic", "openai", "ollama")
    if provider_name_lower not in provider_modules:
        available = ", ".join(sorted(provider_modules))
        raise ValueError(
            f"Unknown LLM provider: {provider_name}. Supported providers: {available}."
        )

    # Importing the module triggers its @register_provider decorator
    try:
        if provider_name_lower == "anthropic":
            from . import anthropic  # noqa: F401
        elif provider_name_lower == "openai":
            from . import openai  # noqa: F401
        elif provider_name_lower == "ollama":
            from . import ollama  # noqa: F401
    except ImportError as e:
        raise ImportError(
            f"Failed to import {provider_name} provider. "
            f"Install the required SDK with: pip install 'codi-core[{provider_name_lower}]'"
        ) from e

    provider_class = _PROVIDER_REGISTRY.get(provider_name_lower)
    if not provider_class:
        raise ValueError(
            f"Provider {provider_name} was imported but not registered. "
            f"This is likely a bug in the provider implementation."
        )

    return provider_class(**kwargs)
