"""SweepGuard — a named, non-reentrant mutual-exclusion handle.

Each periodic sweep owns one guard. A tick that finds its guard held is
skipped rather than queued: the next tick re-converges from current truth,
so dropping a tick loses nothing.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from typing import AsyncIterator, TypeVar

from src.pm_common.errors import SweepInProgressError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SweepGuard:
    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = asyncio.Lock()
        self.skipped = 0

    @property
    def running(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[None]:
        """Enter the guarded section or raise SweepInProgressError immediately."""
        # locked() + acquire() has no await in between, so the check cannot go stale
        if self._lock.locked():
            raise SweepInProgressError(self.name)
        async with self._lock:
            yield

    async def run_exclusive(self, fn: Callable[[], Awaitable[T]]) -> T | None:
        """Run `fn` unless another holder is active; returns None when skipped."""
        if self._lock.locked():
            self.skipped += 1
            logger.info("%s still running, skipping this tick", self.name)
            return None
        async with self._lock:
            return await fn()
