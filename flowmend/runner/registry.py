"""Registry of in-flight workflow runs, keyed by run id."""

from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger(__name__)


class JobRegistry:
    """
    Tracks active run tasks for cancellation bookkeeping.

    Holds no run data; a run removes itself when its task finishes.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, asyncio.Task] = {}

    def register(self, run_id: str, task: asyncio.Task) -> None:
        if run_id in self._jobs:
            raise ValueError(f"Run {run_id!r} is already registered")
        self._jobs[run_id] = task
        task.add_done_callback(lambda _t, rid=run_id: self._forget(rid, _t))

    def _forget(self, run_id: str, task: asyncio.Task) -> None:
        if self._jobs.get(run_id) is task:
            del self._jobs[run_id]

    def get(self, run_id: str) -> asyncio.Task | None:
        return self._jobs.get(run_id)

    def is_active(self, run_id: str) -> bool:
        task = self._jobs.get(run_id)
        return task is not None and not task.done()

    def active_ids(self) -> list[str]:
        return [rid for rid, task in self._jobs.items() if not task.done()]

    def cancel(self, run_id: str) -> bool:
        """Request cancellation. Returns False if the run is unknown or already done."""
        task = self._jobs.get(run_id)
        if task is None or task.done():
            return False
        logger.info("Cancelling run %s", run_id, extra={"run_id": run_id})
        return task.cancel()

    async def shutdown(self) -> None:
        """Cancel every active run and wait for them to unwind."""
        tasks = list(self._jobs.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._jobs.clear()

    def __len__(self) -> int:
        return len(self._jobs)
