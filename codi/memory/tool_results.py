"""Tool result truncation and caching.

Large tool outputs dominate the context budget. Fresh results are clipped to a
per-result limit; older results are replaced by one-line summaries once all
results together exceed the tool-result budget, the full text being kept in a
``ToolResultCache`` for later retrieval.
"""

from __future__ import annotations

import hashlib
import logging
import re
from collections import OrderedDict

from pydantic import BaseModel

from ..types.types import Message, ToolResultBlock
from .tokens import estimate_tokens

logger = logging.getLogger(__name__)

MIN_RESULTS_KEPT_INTACT = 2
_CACHE_ID_RE = re.compile(r"cached:\s*([^,)]+)")


class CachedToolResult(BaseModel):
    cache_id: str
    tool_name: str
    content: str
    summary: str
    tokens: int
    is_error: bool = False


class ToolResultCache:
    """Bounded in-memory store of full tool outputs, evicting the oldest first."""

    def __init__(self, max_entries: int = 200):
        self.max_entries = max_entries
        self._entries: OrderedDict[str, CachedToolResult] = OrderedDict()

    def put(self, entry: CachedToolResult) -> None:
        self._entries[entry.cache_id] = entry
        self._entries.move_to_end(entry.cache_id)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def get(self, cache_id: str) -> CachedToolResult | None:
        return self._entries.get(cache_id)

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()


def generate_cache_id(tool_name: str, content: str) -> str:
    digest = hashlib.sha256(f"{tool_name}\0{content}".encode()).hexdigest()
    return f"{tool_name}_{digest[:12]}"


def truncate_tool_result(content: str, max_chars: int) -> str:
    """Clip a tool result to ``max_chars``, keeping its head and tail."""
    if len(content) <= max_chars:
        return content
    half = max_chars // 2
    removed = len(content) - max_chars
    return (
        content[:half]
        + f"\n\n... [{removed} characters truncated] ...\n\n"
        + (content[-half:] if half else "")
    )


def summarize_tool_result(
    tool_name: str, content: str, is_error: bool, cache_id: str | None = None
) -> str:
    """Build the one-line stand-in for a truncated tool result."""
    lines = content.count("\n") + 1
    chars = len(content)
    if is_error:
        base = f"ERROR: {content.splitlines()[0][:100] if content else ''}..."
    elif tool_name in ("read_file", "list_directory"):
        base = f"{lines} lines, {chars} chars"
    elif tool_name in ("glob", "grep"):
        base = f"{len([line for line in content.splitlines() if line.strip()])} matches"
    elif tool_name == "bash":
        preview = content[:80].replace("\n", " ").strip()
        base = f"{preview}{'...' if chars > 80 else ''} ({lines} lines)"
    elif tool_name in ("write_file", "edit_file", "insert_line", "patch_file"):
        base = "success"
    else:
        base = f"{lines} lines, {chars} chars"

    if cache_id:
        return f"[{tool_name}: {base}] (cached: {cache_id}, ~{estimate_tokens(content)} tokens)"
    return f"[{tool_name}: {base}]"


def is_tool_result_truncated(content: str) -> bool:
    return content.startswith("[") and "cached:" in content


def extract_cache_id(summary: str) -> str | None:
    match = _CACHE_ID_RE.search(summary)
    return match.group(1).strip() if match else None


def truncate_old_tool_results(
    messages: list[Message],
    token_budget: int,
    truncate_threshold: int,
    cache: ToolResultCache | None = None,
) -> list[Message]:
    """Replace the oldest tool results with summaries until all results fit ``token_budget``.

    The most recent results stay intact, results shorter than a tenth of
    ``truncate_threshold`` are not worth summarizing, and results already
    summarized are skipped. Returns a new list; input messages are not mutated.
    """
    located: list[tuple[int, int, ToolResultBlock]] = []
    for m_idx, message in enumerate(messages):
        if isinstance(message.content, str):
            continue
        for b_idx, block in enumerate(message.content):
            if block.type == "tool_result":
                located.append((m_idx, b_idx, block))
    if not located:
        return messages

    total = sum(estimate_tokens(block.content) for _, _, block in located)
    if total <= token_budget:
        return messages

    result = list(messages)
    keep_intact = min(MIN_RESULTS_KEPT_INTACT, len(located))
    truncated = 0
    for m_idx, b_idx, block in located[: len(located) - keep_intact]:
        if is_tool_result_truncated(block.content):
            continue
        if len(block.content) < truncate_threshold / 10:
            continue

        tool_name = block.name or "unknown"
        cache_id = generate_cache_id(tool_name, block.content)
        summary = summarize_tool_result(tool_name, block.content, block.is_error, cache_id)
        if cache is not None:
            cache.put(
                CachedToolResult(
                    cache_id=cache_id,
                    tool_name=tool_name,
                    content=block.content,
                    summary=summary,
                    tokens=estimate_tokens(block.content),
                    is_error=block.is_error,
                )
            )

        message = result[m_idx]
        blocks = list(message.content)
        blocks[b_idx] = block.model_copy(update={"content": summary})
        result[m_idx] = message.model_copy(update={"content": blocks})

        total -= estimate_tokens(block.content) - estimate_tokens(summary)
        truncated += 1
        if total <= token_budget:
            break

    if truncated:
        logger.debug("Truncated %d old tool results to fit the tool-result budget", truncated)
    return result


def build_continuation_prompt(original_task: str) -> str:
    """Remind the model of the original request after a long tool chain."""
    preview = original_task if len(original_task) <= 150 else original_task[:150] + "..."
    return (
        f'\n\nOriginal request: "{preview}"\n\n'
        "If you have completed the user's request, respond with your final answer. "
        "Do NOT continue calling tools unless the task is incomplete."
    )
