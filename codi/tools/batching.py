"""Batch planning and bounded-concurrency execution of tool calls.

Strategy:
1. Consecutive read-only calls on different paths form a parallel batch
2. Mutating (and unknown) calls run alone, in order
3. A read-only call on a path already in the current batch, or mutated
   earlier in the plan, starts a new batch

Results are always returned in the order the calls were requested.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable

from pydantic import BaseModel

from ..types.types import ToolCall, ToolResult

logger = logging.getLogger(__name__)

MAX_CONCURRENT_TOOLS = 8

READ_ONLY_TOOLS = frozenset(
    {
        "read_file",
        "glob",
        "grep",
        "list_directory",
        "find_symbol",
        "goto_definition",
        "find_references",
        "get_dependency_graph",
        "get_inheritance",
        "get_call_graph",
        "search_codebase",
        "analyze_image",
        "web_search",
    }
)

# bash could read or write, so it counts as mutating
MUTATING_TOOLS = frozenset({"write_file", "edit_file", "insert_line", "patch_file", "bash"})

ToolExecutor = Callable[[ToolCall], Awaitable[ToolResult]]
StartHook = Callable[[ToolCall], None]
ResultHook = Callable[[ToolCall, ToolResult], None]


class ToolBatch(BaseModel):
    calls: list[ToolCall]
    parallel: bool = False


class BatchStats(BaseModel):
    total_calls: int
    parallel_batches: int
    sequential_batches: int
    max_parallelism: int


def is_read_only(call: ToolCall) -> bool:
    return call.name in READ_ONLY_TOOLS


def get_file_path(call: ToolCall) -> str | None:
    """Normalized target path so ``./a.py`` and ``a.py`` compare equal."""
    for key in ("path", "file_path", "file"):
        value = call.input.get(key)
        if isinstance(value, str) and value:
            return os.path.normpath(value)
    return None


def plan_batches(calls: list[ToolCall]) -> list[ToolBatch]:
    batches: list[ToolBatch] = []
    current: list[ToolCall] = []
    current_paths: set[str] = set()
    mutated: set[str] = set()

    def flush() -> None:
        nonlocal current, current_paths
        if current:
            batches.append(ToolBatch(calls=current, parallel=len(current) > 1))
        current = []
        current_paths = set()

    for call in calls:
        path = get_file_path(call)
        if not is_read_only(call):
            flush()
            if path:
                mutated.add(path)
            batches.append(ToolBatch(calls=[call]))
            continue
        if path and path in mutated:
            flush()
            batches.append(ToolBatch(calls=[call]))
            continue
        if path and path in current_paths:
            flush()
        current.append(call)
        if path:
            current_paths.add(path)

    flush()
    return batches


def get_batch_stats(batches: list[ToolBatch]) -> BatchStats:
    parallel = [b for b in batches if b.parallel]
    return BatchStats(
        total_calls=sum(len(b.calls) for b in batches),
        parallel_batches=len(parallel),
        sequential_batches=len(batches) - len(parallel),
        max_parallelism=max((len(b.calls) for b in parallel), default=1 if batches else 0),
    )


async def _run_one(
    call: ToolCall,
    execute: ToolExecutor,
    on_start: StartHook | None,
    on_result: ResultHook | None,
) -> ToolResult:
    if on_start:
        on_start(call)
    try:
        result = await execute(call)
    except Exception as e:
        logger.warning("Tool %s raised instead of returning an error result: %s", call.name, e)
        result = ToolResult(
            tool_use_id=call.id, content=f"ERROR: {e}", is_error=True, name=call.name
        )
    if on_result:
        on_result(call, result)
    return result


async def execute_batches(
    batches: list[ToolBatch],
    execute: ToolExecutor,
    on_start: StartHook | None = None,
    on_result: ResultHook | None = None,
    max_concurrency: int = MAX_CONCURRENT_TOOLS,
) -> list[ToolResult]:
    """Run planned batches and return results in request order.

    Parallel batches run under a semaphore of ``max_concurrency``; an error
    result never cancels its siblings.
    """
    semaphore = asyncio.Semaphore(max_concurrency)

    async def limited(call: ToolCall) -> ToolResult:
        async with semaphore:
            return await _run_one(call, execute, on_start, on_result)

    stats = get_batch_stats(batches)
    logger.debug(
        "Executing %d tool calls in %d parallel and %d sequential batches",
        stats.total_calls,
        stats.parallel_batches,
        stats.sequential_batches,
    )

    results: list[ToolResult] = []
    for batch in batches:
        if batch.parallel:
            results.extend(await asyncio.gather(*(limited(c) for c in batch.calls)))
        else:
            for call in batch.calls:
                results.append(await _run_one(call, execute, on_start, on_result))
    return results
