"""Unit tests for codi.memory.context_config module."""

import pytest

from codi.memory.context_config import (
    CONTEXT_TIERS,
    MAX_OUTPUT_TOKENS,
    compute_context_config,
    get_tier,
    override_context_config,
)
from codi.memory.tokens import estimate_tokens
from codi.types.types import ToolDefinition


class TestGetTier:
    """Tests for get_tier function."""

    @pytest.mark.parametrize(
        "window,expected",
        [
            (8_192, "small"),
            (16_383, "small"),
            (16_384, "medium"),
            (65_535, "medium"),
            (65_536, "large"),
            (128_000, "large"),
            (199_999, "large"),
            (200_000, "xlarge"),
            (1_000_000, "xlarge"),
        ],
    )
    def test_tier_boundaries(self, window, expected):
        assert get_tier(window).name == expected

    def test_tiers_are_ordered(self):
        names = [tier.name for tier in CONTEXT_TIERS]
        assert names == ["small", "medium", "large", "xlarge"]


class TestComputeContextConfig:
    """Tests for compute_context_config function."""

    def test_small_window(self):
        """8K window: reserve 25% (2048), safety 5% (410)."""
        config = compute_context_config(8_192)
        assert config.tier_name == "small"
        assert config.max_output_tokens == 2_048
        assert config.safety_buffer == 410
        assert config.max_context_tokens == 8_192 - 2_048 - 410
        assert config.recent_messages_to_keep == 4

    def test_output_reserve_is_capped(self):
        config = compute_context_config(200_000)
        assert config.max_output_tokens == MAX_OUTPUT_TOKENS
        assert config.max_context_tokens == 200_000 - MAX_OUTPUT_TOKENS - config.safety_buffer

    def test_system_prompt_and_tools_count_as_overhead(self):
        prompt = "x" * 4_000
        tools = [ToolDefinition(name="bash", description="Run a shell command")]
        bare = compute_context_config(128_000)
        loaded = compute_context_config(128_000, prompt, tools)
        assert bare.max_context_tokens - loaded.max_context_tokens >= estimate_tokens(prompt)
        assert loaded.overhead_tokens > bare.overhead_tokens

    def test_falls_back_to_min_viable_context(self):
        """A prompt larger than the window leaves only the minimum viable budget."""
        config = compute_context_config(8_192, "x" * 40_000)
        assert config.max_context_tokens == config.min_viable_context

    def test_tool_results_budget_is_share_of_limit(self):
        config = compute_context_config(8_192)
        assert config.tool_results_token_budget == int(config.max_context_tokens * 0.20)

    def test_output_reserve_scale(self):
        config = compute_context_config(8_192, output_reserve_scale=0.5)
        assert config.max_output_tokens == 1_024

    def test_rejects_non_positive_window(self):
        with pytest.raises(ValueError):
            compute_context_config(0)


class TestOverrideContextConfig:
    """Tests for override_context_config function."""

    def test_pins_budget(self):
        config = override_context_config(compute_context_config(128_000), 5_000)
        assert config.max_context_tokens == 5_000
        assert config.is_override is True
        assert config.tier_name == "large"
