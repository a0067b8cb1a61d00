"""Tests for tool-call batch planning and execution."""

import asyncio

import pytest
from helpers import make_call

from codi.tools.batching import (
    execute_batches,
    get_batch_stats,
    get_file_path,
    plan_batches,
)
from codi.types.types import ToolResult


def names(batches):
    return [[c.id for c in b.calls] for b in batches]


def ok(call, content=None):
    return ToolResult(tool_use_id=call.id, content=content or call.id, name=call.name)


class TestPlanBatches:
    """Tests for plan_batches."""

    def test_reads_on_different_paths_run_in_parallel(self):
        calls = [
            make_call("read_file", "r1", path="a.py"),
            make_call("read_file", "r2", path="b.py"),
            make_call("grep", "g1", pattern="x"),
        ]
        batches = plan_batches(calls)
        assert names(batches) == [["r1", "r2", "g1"]]
        assert batches[0].parallel is True

    def test_mutating_calls_run_alone(self):
        calls = [
            make_call("read_file", "r1", path="a.py"),
            make_call("write_file", "w1", path="b.py"),
            make_call("read_file", "r2", path="c.py"),
        ]
        batches = plan_batches(calls)
        assert names(batches) == [["r1"], ["w1"], ["r2"]]
        assert not any(b.parallel for b in batches)

    def test_duplicate_path_starts_new_batch(self):
        calls = [
            make_call("read_file", "r1", path="a.py"),
            make_call("read_file", "r2", path="./a.py"),
            make_call("read_file", "r3", path="b.py"),
        ]
        assert names(plan_batches(calls)) == [["r1"], ["r2", "r3"]]

    def test_read_after_mutation_of_same_path(self):
        calls = [
            make_call("edit_file", "e1", path="a.py"),
            make_call("read_file", "r1", path="b.py"),
            make_call("read_file", "r2", path="a.py"),
        ]
        assert names(plan_batches(calls)) == [["e1"], ["r1"], ["r2"]]

    def test_unknown_tools_are_sequential(self):
        calls = [make_call("custom", "c1"), make_call("custom", "c2")]
        assert names(plan_batches(calls)) == [["c1"], ["c2"]]

    def test_stats(self):
        calls = [
            make_call("read_file", "r1", path="a.py"),
            make_call("read_file", "r2", path="b.py"),
            make_call("bash", "b1", command="ls"),
        ]
        stats = get_batch_stats(plan_batches(calls))
        assert stats.total_calls == 3
        assert stats.parallel_batches == 1
        assert stats.sequential_batches == 1
        assert stats.max_parallelism == 2

    def test_get_file_path(self):
        assert get_file_path(make_call("read_file", path="./src/../a.py")) == "a.py"
        assert get_file_path(make_call("grep", pattern="x")) is None


class TestExecuteBatches:
    """Tests for execute_batches."""

    @pytest.mark.asyncio
    async def test_results_in_request_order(self):
        """Slower earlier calls still come back first."""
        delays = {"r1": 0.03, "r2": 0.0, "r3": 0.01}

        async def execute(call):
            await asyncio.sleep(delays[call.id])
            return ok(call)

        calls = [make_call("read_file", cid, path=f"{cid}.py") for cid in delays]
        results = await execute_batches(plan_batches(calls), execute)
        assert [r.tool_use_id for r in results] == ["r1", "r2", "r3"]

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self):
        running = 0
        peak = 0

        async def execute(call):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return ok(call)

        calls = [make_call("read_file", f"r{i}", path=f"f{i}.py") for i in range(6)]
        await execute_batches(plan_batches(calls), execute, max_concurrency=2)
        assert peak == 2

    @pytest.mark.asyncio
    async def test_error_does_not_cancel_siblings(self):
        async def execute(call):
            if call.id == "r1":
                raise RuntimeError("disk gone")
            return ok(call)

        calls = [make_call("read_file", f"r{i}", path=f"f{i}.py") for i in range(3)]
        results = await execute_batches(plan_batches(calls), execute)
        assert results[1].is_error is True
        assert results[1].content == "ERROR: disk gone"
        assert results[0].content == "r0"
        assert results[2].content == "r2"

    @pytest.mark.asyncio
    async def test_hooks(self):
        started = []
        finished = []

        async def execute(call):
            return ok(call)

        calls = [make_call("bash", "b1", command="ls"), make_call("read_file", "r1", path="a")]
        await execute_batches(
            plan_batches(calls),
            execute,
            on_start=lambda call: started.append(call.id),
            on_result=lambda call, result: finished.append(result.tool_use_id),
        )
        assert started == ["b1", "r1"]
        assert finished == ["b1", "r1"]
