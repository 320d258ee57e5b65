"""Recurring TTL cleanup for the durable dedup table."""

from __future__ import annotations

import asyncio

import structlog

from relayguard.dedup.store import DedupStore

logger = structlog.get_logger()


class PruneScheduler:
    """Runs DedupStore.prune on a fixed interval in a background task.

    A failing iteration is logged and the loop keeps going.
    """

    def __init__(
        self,
        store: DedupStore,
        *,
        interval_seconds: float,
        timeout_seconds: float | None = None,
    ) -> None:
        self._store = store
        self._interval = interval_seconds
        self._timeout = timeout_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="relayguard-dedup-prune")
        logger.info("dedup_prune_loop_started", interval_s=self._interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("dedup_prune_loop_stopped")

    async def run_once(self) -> int:
        return await self._store.prune(timeout=self._timeout)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.run_once()
            except Exception:
                logger.exception("dedup_prune_loop_error")
