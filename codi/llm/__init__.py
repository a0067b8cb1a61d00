"""LLM providers and text tool-call extraction."""

from .extraction import extract_tool_calls
from .providers import Provider, ProviderError, ProviderResponse, get_provider

__all__ = [
    "Provider",
    "ProviderError",
    "ProviderResponse",
    "extract_tool_calls",
    "get_provider",
]
