"""Scheduler — drives the periodic sweeps and the event watcher.

Two interval loops plus one long-lived watcher task:

- reconciliation sweep every RECONCILE_INTERVAL_SECONDS
- resolution sweep every RESOLUTION_INTERVAL_SECONDS
- ledger event subscription, restarted after an unexpected exit

Each tick runs as its own task under the sweep's guard, so a slow sweep
never delays the timer and an overlapping tick is skipped, not queued.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from src.pm_common.datetime_utils import utc_now
from src.pm_oracle.application.engine import DecisionEngine
from src.pm_scheduler.checkpoint import SyncCheckpoint
from src.pm_sync.reconciler import Reconciler

logger = logging.getLogger(__name__)

_WATCH_RESTART_DELAY_SECONDS = 5.0


class Scheduler:
    def __init__(
        self,
        reconciler: Reconciler,
        engine: DecisionEngine,
        checkpoint: SyncCheckpoint,
        *,
        reconcile_interval: float,
        resolution_interval: float,
        watch_events: bool = True,
    ) -> None:
        self._reconciler = reconciler
        self._engine = engine
        self._checkpoint = checkpoint
        self._reconcile_interval = reconcile_interval
        self._resolution_interval = resolution_interval
        self._watch_events = watch_events
        self._loops: list[asyncio.Task[None]] = []
        self._ticks: set[asyncio.Task[Any]] = set()

    @property
    def running(self) -> bool:
        return bool(self._loops)

    def start(self) -> None:
        if self._loops:
            return
        self._loops = [
            asyncio.create_task(
                self._every(self._reconcile_interval, self.reconcile_tick), name="reconcile-loop"
            ),
            asyncio.create_task(
                self._every(self._resolution_interval, self.resolution_tick), name="resolution-loop"
            ),
        ]
        if self._watch_events:
            self._loops.append(asyncio.create_task(self._watch(), name="ledger-watch"))
        logger.info(
            "Scheduler started: reconcile every %ss, resolution every %ss",
            self._reconcile_interval, self._resolution_interval,
        )

    async def stop(self, grace: float) -> None:
        """Stop the timers, then give in-flight ticks `grace` seconds to finish."""
        for task in self._loops:
            task.cancel()
        await asyncio.gather(*self._loops, return_exceptions=True)
        self._loops = []

        pending = set(self._ticks)
        if pending:
            logger.info("Waiting up to %ss for %d in-flight sweep(s)", grace, len(pending))
            _, still_running = await asyncio.wait(pending, timeout=grace)
            for task in still_running:
                task.cancel()
            await asyncio.gather(*still_running, return_exceptions=True)
        logger.info("Scheduler stopped")

    async def reconcile_tick(self) -> None:
        report = await self._checkpoint.reconcile_guard.run_exclusive(self._reconciler.sync_all)
        if report is not None:
            self._checkpoint.last_reconcile_at = utc_now()
            self._checkpoint.last_reconcile_report = report.as_dict()

    async def resolution_tick(self) -> None:
        report = await self._engine.run_sweep()
        if report is not None:
            self._checkpoint.last_resolution_at = utc_now()
            self._checkpoint.last_resolution_report = report.as_dict()

    async def _every(self, interval: float, tick: Callable[[], Awaitable[None]]) -> None:
        while True:
            self._spawn(tick)
            await asyncio.sleep(interval)

    def _spawn(self, tick: Callable[[], Awaitable[None]]) -> None:
        task = asyncio.create_task(self._run_tick(tick))
        self._ticks.add(task)
        task.add_done_callback(self._ticks.discard)

    async def _run_tick(self, tick: Callable[[], Awaitable[None]]) -> None:
        try:
            await tick()
        except Exception:
            logger.exception("Scheduled tick %s failed", getattr(tick, "__name__", tick))

    async def _watch(self) -> None:
        while True:
            try:
                await self._reconciler.watch(self._checkpoint)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Ledger event watcher crashed, restarting")
            else:
                logger.warning("Ledger event watcher exited, restarting")
            await asyncio.sleep(_WATCH_RESTART_DELAY_SECONDS)
