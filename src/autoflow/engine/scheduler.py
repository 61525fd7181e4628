"""Run scheduler: the long-lived poller that drives active runs.

Architecture:
- One poll loop scans the store for running/paused runs every interval
- Each admitted run gets its own driver task (one cycle per admission)
- A run is never driven by two tasks at once (in-flight tracking)
- A concurrency cap bounds how many distinct runs are driven at once;
  running runs are admitted before paused ones, oldest first
- Steps abandoned by a dead engine process (expired heartbeat) are repaired
  on start and then once per recovery interval

Usage:
    scheduler = RunScheduler(store, driver, max_concurrent_runs=5)
    await scheduler.start()
    ...
    await scheduler.stop()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .run_driver import RunDriver
from .store import STEP_LEASE_SECONDS, RunStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT_RUNS = 5
DEFAULT_POLL_INTERVAL = 1.0
MAX_CONCURRENT_RUNS_LIMIT = 1000
MAX_CONCURRENT_RUNS_SETTING = "max_concurrent_runs"


class RunScheduler:
    """Poll-driven scheduler with a global concurrency cap."""

    def __init__(
        self,
        store: RunStore,
        driver: RunDriver,
        max_concurrent_runs: int = DEFAULT_MAX_CONCURRENT_RUNS,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        recovery_interval: float = STEP_LEASE_SECONDS,
    ):
        """Initialize scheduler.

        Args:
            store: Persistence gateway
            driver: Run driver invoked for each admitted run
            max_concurrent_runs: Default cap (the ``max_concurrent_runs`` setting overrides it)
            poll_interval: Seconds between scans
            recovery_interval: Seconds between scans for abandoned steps
        """
        self._store = store
        self._driver = driver
        self._max_concurrent_runs = max_concurrent_runs
        self._poll_interval = poll_interval
        self._recovery_interval = recovery_interval
        self._last_recovery = 0.0
        self._in_flight: dict[str, asyncio.Task[None]] = {}
        self._loop_task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> set[str]:
        """Run ids currently being driven."""
        return set(self._in_flight)

    async def start(self) -> None:
        """Recover interrupted steps and start the poll loop."""
        if self._running:
            logger.warning("RunScheduler already running")
            return

        await self.recover_abandoned_steps()

        self._running = True
        self._loop_task = asyncio.create_task(self._poll_loop())
        logger.info(
            f"RunScheduler started (cap={self._max_concurrent_runs}, "
            f"interval={self._poll_interval}s)"
        )

    async def stop(self, wait_for_completion: bool = True) -> None:
        """Stop the poll loop.

        Args:
            wait_for_completion: If True, let in-flight drive cycles finish;
                otherwise cancel them
        """
        if not self._running:
            return

        self._running = False

        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        tasks = list(self._in_flight.values())
        if not wait_for_completion:
            for task in tasks:
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("RunScheduler stopped")

    async def poll_once(self) -> list[str]:
        """
        One scan: admit active runs up to the concurrency cap.

        Returns:
            Ids of the runs admitted in this scan
        """
        cap = await self.resolve_max_concurrent_runs()
        admitted: list[str] = []

        for run_id in await self._store.list_active_run_ids():
            if len(self._in_flight) >= cap:
                break
            if run_id in self._in_flight:
                continue
            self._in_flight[run_id] = asyncio.create_task(self._drive(run_id))
            admitted.append(run_id)

        if admitted:
            logger.debug(f"Admitted runs: {admitted} (in flight: {len(self._in_flight)}/{cap})")
        return admitted

    async def resolve_max_concurrent_runs(self) -> int:
        """Cap from the ``max_concurrent_runs`` setting, else the configured default."""
        raw = await self._store.get_setting(MAX_CONCURRENT_RUNS_SETTING)
        if raw in (None, ""):
            return self._max_concurrent_runs
        try:
            value = int(raw)
        except ValueError:
            logger.warning(f"Invalid {MAX_CONCURRENT_RUNS_SETTING} setting {raw!r}; using default")
            return self._max_concurrent_runs
        return max(1, min(value, MAX_CONCURRENT_RUNS_LIMIT))

    async def recover_abandoned_steps(self) -> int:
        """Repair steps whose owning engine stopped heartbeating."""
        self._last_recovery = asyncio.get_running_loop().time()
        return await self._store.recover_interrupted_steps()

    def get_stats(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "in_flight": sorted(self._in_flight),
            "max_concurrent_runs": self._max_concurrent_runs,
            "poll_interval": self._poll_interval,
        }

    async def _drive(self, run_id: str) -> None:
        try:
            await self._driver.process_run(run_id)
        except Exception:
            logger.error(f"Run {run_id}: drive cycle crashed", exc_info=True)
        finally:
            self._in_flight.pop(run_id, None)

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                now = asyncio.get_running_loop().time()
                if now - self._last_recovery >= self._recovery_interval:
                    await self.recover_abandoned_steps()
                await self.poll_once()
            except Exception:
                logger.error("Scheduler scan failed", exc_info=True)
            await asyncio.sleep(self._poll_interval)


__all__ = [
    "DEFAULT_MAX_CONCURRENT_RUNS",
    "DEFAULT_POLL_INTERVAL",
    "RunScheduler",
]
