"""Types for context compaction.

Two-tier memory:
- Tier 1: Rolling summary of older messages (produced by an LLM call)
- Tier 2: Selected messages kept verbatim
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel

from ..types.types import Message


class CompactionMode(str, Enum):
    """How hard a compaction pass squeezes the history."""

    NORMAL = "normal"
    AGGRESSIVE = "aggressive"
    FORCE = "force"


class CompactionResult(BaseModel):
    """Result from a compaction pass."""

    compacted: bool
    messages: list[Message]
    summary: str | None
    tokens_before: int
    tokens_after: int
    messages_before: int
    messages_after: int
    summarized_messages: int = 0
    summary_failed: bool = False


class PruneResult(BaseModel):
    """Result from enforcing the hard message-count ceiling."""

    messages: list[Message]
    summary: str | None
    pruned: int = 0
