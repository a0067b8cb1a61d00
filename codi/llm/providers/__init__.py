"""LLM provider implementations."""

from .base import (
    Provider,
    ProviderError,
    ProviderResponse,
    get_provider,
    map_stop_reason,
    register_provider,
    safe_parse_json,
)

__all__ = [
    "Provider",
    "ProviderError",
    "ProviderResponse",
    "get_provider",
    "map_stop_reason",
    "register_provider",
    "safe_parse_json",
]
