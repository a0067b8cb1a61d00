"""Context windowing: decide which messages to keep verbatim and which to summarize."""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field

from ..types.types import Message
from .scoring import MessageScore
from .tokens import get_message_text

# Tools whose inputs name files (or search patterns) the model is working on
FILE_TOOLS = frozenset(
    {"read_file", "write_file", "edit_file", "insert_line", "patch_file", "glob", "grep"}
)
MAX_RECENT_FILES = 50


class WorkingSet(BaseModel):
    """Files and entities touched recently in the conversation.

    Only the agent mutates the working set, right after dispatching a tool call.
    ``recent_files`` keeps insertion order, oldest first.
    """

    recent_files: list[str] = Field(default_factory=list)
    active_entities: list[str] = Field(default_factory=list)

    def add_file(self, path: str) -> None:
        if path in self.recent_files:
            self.recent_files.remove(path)
        self.recent_files.append(path)
        if len(self.recent_files) > MAX_RECENT_FILES:
            del self.recent_files[: len(self.recent_files) - MAX_RECENT_FILES]

    def add_entity(self, entity: str) -> None:
        if entity not in self.active_entities:
            self.active_entities.append(entity)

    def clear(self) -> None:
        self.recent_files.clear()
        self.active_entities.clear()

    def is_empty(self) -> bool:
        return not self.recent_files and not self.active_entities


class WindowingConfig(BaseModel):
    """Configuration for message selection."""

    min_recent_messages: int = 3
    max_messages: int = 20
    importance_threshold: float = 0.4
    preserve_tool_pairs: bool = True
    preserve_working_set: bool = True


class SelectionResult(BaseModel):
    """Partition of message indices. Both lists are sorted ascending."""

    keep: list[int]
    summarize: list[int]


class SelectionStats(BaseModel):
    total_messages: int
    kept_messages: int
    summarized_messages: int
    kept_percent: float
    working_set_size: int


# -- Working set --------------------------------------------------------------


def update_working_set(
    working_set: WorkingSet, tool_name: str, tool_input: Mapping[str, Any]
) -> None:
    """Record the file (or search pattern) a tool call operates on."""
    if tool_name not in FILE_TOOLS:
        return
    file_path = tool_input.get("path") or tool_input.get("file_path") or tool_input.get("file")
    if isinstance(file_path, str) and file_path:
        working_set.add_file(file_path)
    if tool_name in ("glob", "grep"):
        pattern = tool_input.get("pattern")
        if isinstance(pattern, str) and pattern:
            working_set.add_entity(pattern)


def references_working_set(message: Message, working_set: WorkingSet) -> bool:
    """Whether the message mentions a tracked file (full path or basename) or entity."""
    text = get_message_text(message)
    for path in working_set.recent_files:
        if path in text or os.path.basename(path) in text:
            return True
    return any(entity in text for entity in working_set.active_entities)


# -- Tool pair helpers --------------------------------------------------------


def find_safe_start_index(messages: list[Message], start: int = 0) -> int:
    """Return the first index at or after ``start`` where a history can begin.

    A safe start is a user message without tool results, a plain assistant
    message, or an assistant message whose tool calls are answered by the
    next message. Returns ``len(messages)`` if there is none.
    """
    for i in range(start, len(messages)):
        message = messages[i]
        if message.role == "user":
            if not message.has_tool_result():
                return i
            continue
        if message.has_tool_use():
            if i + 1 < len(messages) and messages[i + 1].has_tool_result():
                return i
            continue
        return i
    return len(messages)


def _pair_partner(messages: list[Message], index: int) -> int | None:
    message = messages[index]
    if message.has_tool_use() and index + 1 < len(messages):
        if messages[index + 1].has_tool_result():
            return index + 1
    if message.has_tool_result() and index > 0 and messages[index - 1].has_tool_use():
        return index - 1
    return None


# -- Selection ----------------------------------------------------------------


def select_messages_to_keep(
    messages: list[Message],
    scores: list[MessageScore],
    working_set: WorkingSet | None = None,
    config: WindowingConfig | None = None,
) -> SelectionResult:
    """Partition a history into messages to keep and messages to summarize.

    Rules, in priority order:

    1. the last ``min_recent_messages`` are always kept;
    2. a tool_use/tool_result pair is kept or summarized as a unit;
    3. with ``preserve_working_set``, messages referencing the working set are kept;
    4. remaining messages scoring at least ``importance_threshold`` are kept,
       best first, while the kept total stays within ``max_messages``;
    5. everything else is summarized.
    """
    config = config or WindowingConfig()
    if not messages:
        return SelectionResult(keep=[], summarize=[])

    keep: set[int] = set()

    def add(index: int) -> None:
        keep.add(index)
        if config.preserve_tool_pairs:
            partner = _pair_partner(messages, index)
            if partner is not None:
                keep.add(partner)

    recent_start = max(0, len(messages) - config.min_recent_messages)
    for i in range(recent_start, len(messages)):
        add(i)

    if config.preserve_working_set and working_set is not None and not working_set.is_empty():
        for i, message in enumerate(messages):
            if i not in keep and references_working_set(message, working_set):
                add(i)

    candidates = sorted(
        (
            s
            for s in scores
            if s.total_score >= config.importance_threshold and s.message_index not in keep
        ),
        key=lambda s: (-s.total_score, -s.message_index),
    )
    for score in candidates:
        index = score.message_index
        if index in keep or not 0 <= index < len(messages):
            continue
        needed = 1
        if config.preserve_tool_pairs:
            partner = _pair_partner(messages, index)
            if partner is not None and partner not in keep:
                needed = 2
        if len(keep) + needed > config.max_messages:
            continue
        add(index)

    summarize = [i for i in range(len(messages)) if i not in keep]
    return SelectionResult(keep=sorted(keep), summarize=summarize)


def finalize_selection(messages: list[Message], selection: SelectionResult) -> SelectionResult:
    """Move kept messages that cannot open a history (orphan tool results) to summarize."""
    kept = [messages[i] for i in selection.keep]
    safe_start = find_safe_start_index(kept)
    if safe_start == 0:
        return selection
    return SelectionResult(
        keep=selection.keep[safe_start:],
        summarize=sorted(selection.summarize + selection.keep[:safe_start]),
    )


def apply_selection(messages: list[Message], selection: SelectionResult) -> list[Message]:
    """Return the kept messages in order, starting at a safe index."""
    final = finalize_selection(messages, selection)
    return [messages[i] for i in final.keep]


def get_selection_stats(
    messages: list[Message], selection: SelectionResult, working_set: WorkingSet | None = None
) -> SelectionStats:
    total = len(messages)
    return SelectionStats(
        total_messages=total,
        kept_messages=len(selection.keep),
        summarized_messages=len(selection.summarize),
        kept_percent=(len(selection.keep) / total * 100) if total else 100.0,
        working_set_size=len(working_set.recent_files) if working_set else 0,
    )
