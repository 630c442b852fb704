"""Unit tests for WorkflowManager."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.middleware.workflow_manager import BatchReport, WorkflowManager, make_batches


@pytest.mark.unit
class TestWorkflowManager:
    """Tests for bounded batch execution."""

    def test_make_batches(self) -> None:
        """Ids should be split into consecutive batches."""
        assert make_batches(["a", "b", "c", "d", "e"], 2) == [["a", "b"], ["c", "d"], ["e"]]
        with pytest.raises(ValueError):
            make_batches(["a"], 0)

    @pytest.mark.asyncio
    async def test_batches_bound_concurrency(self) -> None:
        """No more units than the batch size should run at once."""
        manager = WorkflowManager()
        ids = [f"s{i}" for i in range(7)]
        for loop_id in ids:
            manager.add_loop(loop_id)
        running = 0
        peak = 0

        async def unit(loop_id: str) -> str:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0)
            running -= 1
            return loop_id.upper()

        results = await manager.run_batches(make_batches(ids, 3), unit)

        assert peak == 3
        assert manager.peak_running == 3
        assert results == {loop_id: loop_id.upper() for loop_id in ids}
        assert all(loop.status == "completed" for loop in manager.get_all_loops())

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_siblings(self) -> None:
        """A failing unit should be recorded while others complete."""
        manager = WorkflowManager()

        async def unit(loop_id: str) -> str:
            if loop_id == "bad":
                raise RuntimeError("provider exploded")
            return loop_id

        reports: list[BatchReport] = []

        async def on_batch(report: BatchReport) -> None:
            reports.append(report)

        results = await manager.run_batches([["ok", "bad"], ["later"]], unit, on_batch_complete=on_batch)

        assert isinstance(results["bad"], RuntimeError)
        assert results["later"] == "later"
        assert manager.get_loop("bad").status == "failed"
        assert manager.get_loop("bad").error == "provider exploded"
        assert [(r.completed, r.failed) for r in reports] == [(1, 1), (1, 0)]

    @pytest.mark.asyncio
    async def test_stop_check_cancels_remaining(self) -> None:
        """Units after a stop signal should be cancelled without running."""
        manager = WorkflowManager()
        for loop_id in ("a", "b", "c"):
            manager.add_loop(loop_id)
        unit = AsyncMock(return_value="done")
        should_stop = AsyncMock(side_effect=[False, True])

        results = await manager.run_batches([["a"], ["b"], ["c"]], unit, should_stop=should_stop)

        assert list(results) == ["a"]
        assert manager.get_loop("b").status == "cancelled"
        assert manager.get_loop("c").status == "cancelled"
        unit.assert_awaited_once_with("a")
