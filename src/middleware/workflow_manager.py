"""Workflow manager for running section research units in bounded batches.

Tracks the status of each unit and runs them a batch at a time, so no
more than ``batch_size`` units are in flight at once. A stop check runs
before every batch; once it fires the remaining units are cancelled
without being started.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, Literal

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger()

LoopStatus = Literal["pending", "running", "completed", "failed", "cancelled"]


class ResearchLoop(BaseModel):
    """Represents a single unit of section research."""

    loop_id: str = Field(description="Unique identifier for the unit")
    label: str = Field(default="", description="Human-readable label, usually the section title")
    status: LoopStatus = Field(default="pending")
    batch_index: int | None = Field(default=None, ge=0)
    error: str | None = Field(default=None)

    model_config = {"frozen": False}  # Mutable for status updates


class BatchReport(BaseModel):
    """What happened in one batch."""

    batch_index: int
    loop_ids: list[str]
    completed: int = 0
    failed: int = 0


class WorkflowManager:
    """Manages batches of research units and their statuses."""

    def __init__(self) -> None:
        self._loops: dict[str, ResearchLoop] = {}
        self._peak_running = 0

    def add_loop(self, loop_id: str, label: str = "") -> ResearchLoop:
        """Register a unit in pending state, replacing any previous one with the same id."""
        loop = ResearchLoop(loop_id=loop_id, label=label)
        self._loops[loop_id] = loop
        logger.debug("Loop added", loop_id=loop_id, label=label)
        return loop

    def get_loop(self, loop_id: str) -> ResearchLoop | None:
        return self._loops.get(loop_id)

    def get_all_loops(self) -> list[ResearchLoop]:
        return list(self._loops.values())

    def update_loop_status(self, loop_id: str, status: LoopStatus, error: str | None = None) -> None:
        """Update the status of a unit.

        Args:
            loop_id: Unique identifier for the unit.
            status: New status for the unit.
            error: Optional error message if status is "failed".
        """
        if loop_id not in self._loops:
            logger.warning("Loop not found", loop_id=loop_id)
            return

        self._loops[loop_id].status = status
        if error:
            self._loops[loop_id].error = error
        logger.debug("Loop status updated", loop_id=loop_id, status=status)

    def cancel_loop(self, loop_id: str) -> None:
        self.update_loop_status(loop_id, "cancelled")

    @property
    def running_count(self) -> int:
        return sum(1 for loop in self._loops.values() if loop.status == "running")

    @property
    def peak_running(self) -> int:
        """Most units observed running at the same time."""
        return self._peak_running

    def _mark_running(self, loop_id: str) -> None:
        self.update_loop_status(loop_id, "running")
        self._peak_running = max(self._peak_running, self.running_count)

    async def run_batches(
        self,
        batches: list[list[str]],
        unit_func: Callable[[str], Awaitable[Any]],
        should_stop: Callable[[], Awaitable[bool]] | None = None,
        on_batch_complete: Callable[[BatchReport], Awaitable[None]] | None = None,
    ) -> dict[str, Any]:
        """Run units batch by batch.

        Units inside a batch run concurrently; a unit's failure is recorded
        and does not affect its siblings or later batches.

        Args:
            batches: Ordered batches of registered loop ids.
            unit_func: Async function run for each loop id.
            should_stop: Checked before each batch; True cancels the rest.
            on_batch_complete: Called after each batch with its report.

        Returns:
            Mapping of loop id to result, or to the exception it raised.
            Cancelled units are absent.
        """
        results: dict[str, Any] = {}

        async def run_single(loop_id: str) -> Any:
            self._mark_running(loop_id)
            try:
                result = await unit_func(loop_id)
            except Exception as e:
                self.update_loop_status(loop_id, "failed", error=str(e))
                logger.warning("Loop failed", loop_id=loop_id, error=str(e))
                raise
            self.update_loop_status(loop_id, "completed")
            return result

        for index, batch in enumerate(batches):
            if should_stop is not None and await should_stop():
                remaining = [loop_id for pending in batches[index:] for loop_id in pending]
                for loop_id in remaining:
                    self.cancel_loop(loop_id)
                logger.info("Workflow stopped", batch_index=index, cancelled=len(remaining))
                break

            for loop_id in batch:
                if loop_id not in self._loops:
                    self.add_loop(loop_id)
                self._loops[loop_id].batch_index = index

            outcomes = await asyncio.gather(
                *(run_single(loop_id) for loop_id in batch), return_exceptions=True
            )
            report = BatchReport(batch_index=index, loop_ids=list(batch))
            for loop_id, outcome in zip(batch, outcomes, strict=True):
                results[loop_id] = outcome
                if isinstance(outcome, BaseException):
                    report.failed += 1
                else:
                    report.completed += 1

            logger.info(
                "Batch completed",
                batch_index=index,
                completed=report.completed,
                failed=report.failed,
            )
            if on_batch_complete is not None:
                await on_batch_complete(report)

        return results


def make_batches(loop_ids: list[str], batch_size: int) -> list[list[str]]:
    """Split ids into consecutive batches of at most ``batch_size``."""
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    return [loop_ids[start : start + batch_size] for start in range(0, len(loop_ids), batch_size)]
