"""Memory module - context budgeting, compaction and compression for long conversations."""

from .compaction import (
    DEFAULT_MAX_MESSAGES,
    compact_messages,
    enforce_message_limit,
    needs_compaction,
)
from .compression import (
    StreamingDecompressor,
    compress_context,
    decompress_text,
    generate_entity_legend,
    get_compression_stats,
    maybe_compress,
)
from .context_config import ContextConfig, compute_context_config, get_tier, override_context_config
from .scoring import ScoringWeights, score_messages
from .tokens import estimate_message_tokens, estimate_messages_tokens, estimate_tokens
from .tool_results import ToolResultCache, build_continuation_prompt, truncate_old_tool_results
from .types import CompactionMode, CompactionResult, PruneResult
from .windowing import WindowingConfig, WorkingSet, select_messages_to_keep, update_working_set

__all__ = [
    "DEFAULT_MAX_MESSAGES",
    "CompactionMode",
    "CompactionResult",
    "ContextConfig",
    "PruneResult",
    "ScoringWeights",
    "StreamingDecompressor",
    "ToolResultCache",
    "WindowingConfig",
    "WorkingSet",
    "build_continuation_prompt",
    "compact_messages",
    "compress_context",
    "compute_context_config",
    "decompress_text",
    "enforce_message_limit",
    "estimate_message_tokens",
    "estimate_messages_tokens",
    "estimate_tokens",
    "generate_entity_legend",
    "get_compression_stats",
    "get_tier",
    "maybe_compress",
    "needs_compaction",
    "override_context_config",
    "score_messages",
    "select_messages_to_keep",
    "truncate_old_tool_results",
    "update_working_set",
]
