"""Per-model context budgets.

The token budget for conversation history is derived from the model's
declared context window. Output reserve and safety buffer scale with the
window's tier so that small and large models get proportional headroom.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable

from pydantic import BaseModel, Field

from ..types.types import ToolDefinition
from .tokens import estimate_tokens, estimate_tool_definition_tokens

logger = logging.getLogger(__name__)

# -- Constants ----------------------------------------------------------------

MAX_OUTPUT_TOKENS = 8192


class ContextTier(BaseModel):
    """A context-window size bracket."""

    name: str
    min_context: int
    max_context: int | None
    usage_percent: float
    safety_percent: float
    min_viable_percent: float
    recent_messages_to_keep: int
    tool_result_truncate_threshold: int
    recent_tool_results_to_keep: int
    max_immediate_tool_result: int
    tool_results_budget_percent: float


CONTEXT_TIERS: list[ContextTier] = [
    ContextTier(
        name="small",
        min_context=0,
        max_context=16_384,
        usage_percent=0.75,
        safety_percent=0.05,
        min_viable_percent=0.15,
        recent_messages_to_keep=4,
        tool_result_truncate_threshold=50_000,
        recent_tool_results_to_keep=5,
        max_immediate_tool_result=30_000,
        tool_results_budget_percent=0.20,
    ),
    ContextTier(
        name="medium",
        min_context=16_384,
        max_context=65_536,
        usage_percent=0.80,
        safety_percent=0.03,
        min_viable_percent=0.10,
        recent_messages_to_keep=8,
        tool_result_truncate_threshold=100_000,
        recent_tool_results_to_keep=10,
        max_immediate_tool_result=75_000,
        tool_results_budget_percent=0.25,
    ),
    ContextTier(
        name="large",
        min_context=65_536,
        max_context=200_000,
        usage_percent=0.85,
        safety_percent=0.02,
        min_viable_percent=0.05,
        recent_messages_to_keep=15,
        tool_result_truncate_threshold=300_000,
        recent_tool_results_to_keep=20,
        max_immediate_tool_result=200_000,
        tool_results_budget_percent=0.30,
    ),
    ContextTier(
        name="xlarge",
        min_context=200_000,
        max_context=None,
        usage_percent=0.90,
        safety_percent=0.015,
        min_viable_percent=0.03,
        recent_messages_to_keep=25,
        tool_result_truncate_threshold=500_000,
        recent_tool_results_to_keep=30,
        max_immediate_tool_result=500_000,
        tool_results_budget_percent=0.35,
    ),
]


class ContextConfig(BaseModel):
    """Token budget for the active provider/model."""

    context_window: int
    max_context_tokens: int = Field(description="Effective history budget in tokens")
    max_output_tokens: int
    safety_buffer: int
    min_viable_context: int
    tool_results_token_budget: int
    tool_result_truncate_threshold: int
    recent_tool_results_to_keep: int
    max_immediate_tool_result: int
    recent_messages_to_keep: int
    tier_name: str
    overhead_tokens: int = 0
    is_override: bool = False


# -- Helpers ------------------------------------------------------------------


def get_tier(context_window: int) -> ContextTier:
    """Return the tier whose range contains ``context_window``."""
    for tier in CONTEXT_TIERS:
        if tier.max_context is None or context_window < tier.max_context:
            return tier
    return CONTEXT_TIERS[-1]


def compute_context_config(
    context_window: int,
    system_prompt: str | None = None,
    tool_definitions: Iterable[ToolDefinition] | None = None,
    output_reserve_scale: float = 1.0,
) -> ContextConfig:
    """Compute the context budget for a model.

    ``overhead = system prompt + tool schemas + output reserve + safety buffer``
    and the history budget is ``max(context_window - overhead, min_viable)``.

    Args:
        context_window: Declared context-window size of the model, in tokens.
        system_prompt: Current system prompt text.
        tool_definitions: Tool schemas sent with each request.
        output_reserve_scale: Multiplier applied to the tier's output reserve.

    Returns:
        ContextConfig for the model.

    Raises:
        ValueError: If ``context_window`` is not positive.
    """
    if context_window <= 0:
        raise ValueError(f"context_window must be positive, got {context_window}")

    tier = get_tier(context_window)

    system_tokens = estimate_tokens(system_prompt) if system_prompt else 0
    tool_tokens = estimate_tool_definition_tokens(tool_definitions or [])
    unusable = math.ceil(context_window * (1 - tier.usage_percent))
    output_reserve = math.ceil(min(MAX_OUTPUT_TOKENS, unusable) * output_reserve_scale)
    safety_buffer = math.ceil(context_window * tier.safety_percent)
    min_viable = math.ceil(context_window * tier.min_viable_percent)

    overhead = system_tokens + tool_tokens + output_reserve + safety_buffer
    adaptive_limit = context_window - overhead
    effective_limit = max(adaptive_limit, min_viable)

    if adaptive_limit < min_viable:
        logger.warning(
            "Context budget is tight for %s tier (%d tokens): overhead %d leaves %d, "
            "using minimum viable context %d",
            tier.name,
            context_window,
            overhead,
            adaptive_limit,
            min_viable,
        )

    return ContextConfig(
        context_window=context_window,
        max_context_tokens=effective_limit,
        max_output_tokens=output_reserve,
        safety_buffer=safety_buffer,
        min_viable_context=min_viable,
        tool_results_token_budget=math.floor(effective_limit * tier.tool_results_budget_percent),
        tool_result_truncate_threshold=tier.tool_result_truncate_threshold,
        recent_tool_results_to_keep=tier.recent_tool_results_to_keep,
        max_immediate_tool_result=tier.max_immediate_tool_result,
        recent_messages_to_keep=tier.recent_messages_to_keep,
        tier_name=tier.name,
        overhead_tokens=overhead,
    )


def override_context_config(config: ContextConfig, max_context_tokens: int) -> ContextConfig:
    """Pin the history budget to a user-chosen value; pinned configs are never recomputed."""
    return config.model_copy(
        update={"max_context_tokens": max_context_tokens, "is_override": True}
    )
