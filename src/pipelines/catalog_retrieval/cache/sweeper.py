"""Periodic background sweep of expired cache entries."""

import asyncio
from typing import List, Optional

from .ttl_cache import BoundedTTLCache
from ..logging import RetrievalLoggerMixin


class CacheSweeper(RetrievalLoggerMixin):
    """
    Runs ``sweep()`` on a set of caches at a fixed interval.

    The sweep bounds memory for keys that are never queried again. It runs
    independently of request traffic and must be stopped when the owning
    pipeline is closed.
    """

    def __init__(self, caches: List[BoundedTTLCache], interval_seconds: float = 300.0):
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        self.caches = caches
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the sweep task on the running event loop. Idempotent."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name="catalog-retrieval-cache-sweeper"
        )
        self.logger.info(
            f"Cache sweeper started (interval {self.interval_seconds}s)",
            extra={'extra_fields': {'caches': [cache.name for cache in self.caches]}}
        )

    async def stop(self) -> None:
        """Cancel the sweep task and wait for it to finish."""
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self.logger.info("Cache sweeper stopped")

    def sweep_once(self) -> int:
        """Sweep every cache once and return the total number of removed entries."""
        return sum(cache.sweep() for cache in self.caches)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                removed = self.sweep_once()
            except Exception as e:
                # A failed sweep must not kill the loop; the next tick retries.
                self.logger.error(f"Cache sweep failed: {e}", exc_info=True)
                continue
            if removed:
                self.logger.debug(f"Cache sweep removed {removed} expired entries")
