"""Startup rehydration: prime the fast tier from durable dedup records.

Must run after storage is available and before any scheduler loop,
watchdog, or agent re-initialization. Agents replay their last send
right after a restart, when the fast tier would otherwise be empty.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

import structlog

from relayguard.dedup.store import DedupStore
from relayguard.infra.errors import RehydrationFailure, StorageUnavailable

logger = structlog.get_logger()


class StartupRehydrator:
    """Replays recent live dedup records into a DedupStore's fast tier.

    Safe to skip and safe to run twice. Failure leaves a cold (or partially
    warm) fast tier, which is degraded but correct: the durable tier still
    decides every miss.
    """

    def __init__(self, store: DedupStore) -> None:
        self._store = store

    async def rehydrate(
        self, window: timedelta | None = None, timeout: float | None = None
    ) -> int:
        """Load live records seen within window. Returns records loaded."""
        settings = self._store.settings
        window = window if window is not None else settings.rehydrate_window
        now = self._store.now()
        collected: list[tuple[str, datetime]] = []

        try:
            async with asyncio.timeout(timeout):
                async for batch in self._store.durable_tier.iter_live(
                    now=now,
                    since=now - window,
                    limit=settings.rehydrate_row_cap,
                    batch_size=settings.rehydrate_batch_size,
                ):
                    collected.extend(batch)
        except TimeoutError:
            failure = RehydrationFailure(
                f"Rehydration timed out after {timeout}s with {len(collected)} records read"
            )
            logger.warning("dedup_rehydrate_failed", code=failure.code, error=str(failure))
        except StorageUnavailable as exc:
            failure = RehydrationFailure(str(exc))
            logger.warning("dedup_rehydrate_failed", code=failure.code, error=str(failure))

        # Rows arrive newest first; insert oldest first so capacity eviction
        # drops the oldest records, not the newest.
        loaded = self._store.fast_tier.put_many(reversed(collected))
        logger.info(
            "dedup_rehydrated",
            loaded=loaded,
            window_h=round(window.total_seconds() / 3600, 2),
            fast_tier_size=len(self._store.fast_tier),
        )
        return loaded
