"""Core context compaction logic.

Scores the history, selects the messages to keep verbatim, and folds the
rest into a rolling summary via an LLM call. A failed summarization never
blocks compaction: the selection is applied and the previous summary kept.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from ..types.types import Message
from .scoring import ScoringWeights, extract_file_paths, score_messages
from .tokens import estimate_messages_tokens, estimate_tokens, get_message_text
from .types import CompactionMode, CompactionResult, PruneResult
from .windowing import (
    WindowingConfig,
    WorkingSet,
    find_safe_start_index,
    finalize_selection,
    select_messages_to_keep,
)

if TYPE_CHECKING:
    from ..llm.providers.base import Provider

logger = logging.getLogger(__name__)

EmbedFunction = Callable[[list[str]], Awaitable[list[list[float]]]]

# -- Constants ----------------------------------------------------------------

DEFAULT_MAX_MESSAGES = 500
PROACTIVE_THRESHOLD = 0.85
PRUNE_TARGET_RATIO = 0.8
SIMILARITY_THRESHOLD = 0.85
SUMMARY_LINE_CHARS = 500

PRUNE_NOTE = "[Note: {count} older messages were automatically pruned to stay within memory limits]"

SUMMARY_PROMPT = (
    "Create a concise summary of this conversation for context preservation.\n"
    "\n"
    "## What to Include\n"
    "- **Goal**: What task is the user trying to accomplish?\n"
    "- **Progress**: What has been done so far?\n"
    "- **Files Modified**: List any files that were created, edited, or deleted\n"
    "- **Key Decisions**: Any important choices made during the conversation\n"
    "- **Current State**: Where did the conversation leave off?\n"
    "\n"
    "## Format\n"
    "Write 3-5 short paragraphs. Use bullet points for file lists. Be factual and specific.\n"
    "{files_context}\n"
    "\n"
    "## Conversation to Summarize\n"
    "{content}"
)

AGGRESSIVE_SUMMARY_PROMPT = (
    "Create a brief summary for context preservation due to high memory usage.\n"
    "\n"
    "## What to Include\n"
    "- **Goal**: What task is being worked on?\n"
    "- **Progress**: What has been done?\n"
    "- **Key State**: Where did we leave off?\n"
    "\n"
    "## Format\n"
    "Write 1-2 short paragraphs. Be factual and specific.\n"
    "\n"
    "## Conversation to Summarize\n"
    "{content}"
)

# -- Message limit ------------------------------------------------------------


def enforce_message_limit(
    messages: list[Message],
    summary: str | None,
    max_messages: int = DEFAULT_MAX_MESSAGES,
) -> PruneResult:
    """Prune the oldest messages once the history exceeds ``max_messages``.

    The history is cut down to 80% of the ceiling, then the cut is moved
    forward to a safe start so no tool_use/tool_result pair is split. The
    number of pruned messages is noted at the top of the summary.
    """
    if len(messages) <= max_messages:
        return PruneResult(messages=messages, summary=summary)

    target = math.floor(max_messages * PRUNE_TARGET_RATIO)
    remove = len(messages) - target
    cut = find_safe_start_index(messages, remove)

    note = PRUNE_NOTE.format(count=cut)
    new_summary = f"{note}\n\n{summary}" if summary else note
    logger.debug("Pruned %d messages to enforce the %d message limit", cut, max_messages)
    return PruneResult(messages=messages[cut:], summary=new_summary, pruned=cut)


def needs_compaction(
    messages: list[Message],
    max_context_tokens: int,
    threshold: float = PROACTIVE_THRESHOLD,
) -> bool:
    """Whether the history is past the proactive share of the token budget."""
    return estimate_messages_tokens(messages) > math.floor(max_context_tokens * threshold)


# -- Summarization helpers ----------------------------------------------------


def cosine_similarity(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def group_by_similarity(
    embeddings: list[list[float]], threshold: float = SIMILARITY_THRESHOLD
) -> list[list[int]]:
    """Greedily group indices whose embeddings are at least ``threshold`` similar."""
    assigned: set[int] = set()
    groups: list[list[int]] = []
    for i in range(len(embeddings)):
        if i in assigned:
            continue
        group = [i]
        assigned.add(i)
        for j in range(i + 1, len(embeddings)):
            if j not in assigned and cosine_similarity(embeddings[i], embeddings[j]) >= threshold:
                group.append(j)
                assigned.add(j)
        groups.append(group)
    return groups


def _format_line(message: Message, limit: int = SUMMARY_LINE_CHARS) -> str:
    return f"[{message.role}]: {get_message_text(message)[:limit]}"


async def format_messages_for_summary(
    messages: list[Message], embed: EmbedFunction | None = None
) -> str:
    """Serialize messages as ``[role]: text`` lines for the summarization prompt.

    When an embedding function is available, near-duplicate messages are
    grouped so repeated content does not inflate the prompt.
    """
    if embed is not None and len(messages) > 2:
        try:
            embeddings = await embed([get_message_text(m)[:1000] for m in messages])
            groups = group_by_similarity(embeddings)
        except Exception as err:
            logger.warning("Semantic grouping failed, formatting messages individually: %s", err)
        else:
            parts = []
            for n, group in enumerate(groups, start=1):
                if len(group) == 1:
                    parts.append(_format_line(messages[group[0]]))
                    continue
                lines = "\n".join(f"  - {_format_line(messages[i], 200)}" for i in group)
                parts.append(f"[Similar discussion #{n}, {len(group)} messages]:\n{lines}")
            return "\n\n".join(parts)

    return "\n\n".join(_format_line(m) for m in messages)


def build_summary_prompt(
    content: str,
    current_summary: str | None,
    files: set[str] | None = None,
    mode: CompactionMode = CompactionMode.NORMAL,
) -> str:
    if current_summary:
        content = f"Previous summary:\n{current_summary}\n\nNew messages:\n{content}"
    if mode == CompactionMode.AGGRESSIVE:
        return AGGRESSIVE_SUMMARY_PROMPT.replace("{content}", content)
    files_context = f"\nFiles discussed: {', '.join(sorted(files))}" if files else ""
    return SUMMARY_PROMPT.replace("{files_context}", files_context).replace("{content}", content)


# -- Main function ------------------------------------------------------------


def _settings_for(
    mode: CompactionMode, base: WindowingConfig, message_count: int
) -> tuple[ScoringWeights, WindowingConfig]:
    if mode == CompactionMode.AGGRESSIVE:
        return ScoringWeights(recency=0.3), base.model_copy(
            update={
                "min_recent_messages": max(base.min_recent_messages - 2, 3),
                "max_messages": min(base.max_messages, 30),
                "importance_threshold": base.importance_threshold + 0.1,
            }
        )
    if mode == CompactionMode.FORCE:
        return ScoringWeights(), base.model_copy(
            update={"max_messages": min(base.max_messages, math.ceil(message_count / 2))}
        )
    return ScoringWeights(), base


async def compact_messages(
    messages: list[Message],
    current_summary: str | None,
    provider: Provider,
    working_set: WorkingSet | None = None,
    mode: CompactionMode = CompactionMode.NORMAL,
    windowing: WindowingConfig | None = None,
    indexed_files: set[str] | None = None,
    embed: EmbedFunction | None = None,
) -> CompactionResult:
    """Compact a conversation history.

    1. Score every message by importance
    2. Select messages to keep (recency, tool pairs, working set, score)
    3. Summarize the rest, folding in the current summary
    4. On summarization failure -> log warning, keep the current summary

    The result never holds more estimated tokens (messages + summary) than
    the input did.
    """
    base = windowing or WindowingConfig()
    summary_tokens = estimate_tokens(current_summary) if current_summary else 0
    tokens_before = estimate_messages_tokens(messages) + summary_tokens

    def unchanged() -> CompactionResult:
        return CompactionResult(
            compacted=False,
            messages=messages,
            summary=current_summary,
            tokens_before=tokens_before,
            tokens_after=tokens_before,
            messages_before=len(messages),
            messages_after=len(messages),
        )

    if mode == CompactionMode.FORCE and len(messages) <= base.min_recent_messages:
        return unchanged()

    weights, config = _settings_for(mode, base, len(messages))
    scores = score_messages(
        messages,
        weights,
        entities=working_set.active_entities if working_set else None,
        indexed_files=indexed_files,
    )
    selection = finalize_selection(
        messages, select_messages_to_keep(messages, scores, working_set, config)
    )
    logger.debug(
        "Context windowing (%s): keeping %d/%d messages, summarizing %d",
        mode.value,
        len(selection.keep),
        len(messages),
        len(selection.summarize),
    )
    if not selection.summarize:
        return unchanged()

    kept = [messages[i] for i in selection.keep]
    to_summarize = [messages[i] for i in selection.summarize]
    kept_tokens = estimate_messages_tokens(kept)

    summary = current_summary
    summary_failed = False
    try:
        files: set[str] = set()
        for message in to_summarize:
            files.update(extract_file_paths(get_message_text(message)))
        content = await format_messages_for_summary(
            to_summarize, embed if mode != CompactionMode.AGGRESSIVE else None
        )
        prompt = build_summary_prompt(content, current_summary, files, mode)
        new_summary = await _call_summarization_llm(provider, prompt)
        if not new_summary.strip():
            raise ValueError("summarization returned empty content")
        if kept_tokens + estimate_tokens(new_summary) <= tokens_before:
            summary = new_summary
        else:
            logger.warning("Discarding summary that would grow the context, keeping previous one")
    except Exception as err:
        logger.warning("Summarization failed, applying selection without a new summary: %s", err)
        summary_failed = True

    tokens_after = kept_tokens + (estimate_tokens(summary) if summary else 0)
    logger.info(
        "Compacted context: %d -> %d messages, %d -> %d tokens",
        len(messages),
        len(kept),
        tokens_before,
        tokens_after,
    )
    return CompactionResult(
        compacted=True,
        messages=kept,
        summary=summary,
        tokens_before=tokens_before,
        tokens_after=tokens_after,
        messages_before=len(messages),
        messages_after=len(kept),
        summarized_messages=len(to_summarize),
        summary_failed=summary_failed,
    )


async def _call_summarization_llm(provider: Provider, prompt: str) -> str:
    """Ask the provider for a summary with a single tool-less request."""
    response = await provider.stream_chat([Message.user(prompt)])
    return response.content or ""
