"""Two-tier message dedup store: fast in-process tier, then durable tier.

The fast tier alone is wiped exactly when agents replay their last send
(restart); the durable tier alone would put every delivery on the DB hot
path. Tiers are consulted in a fixed fast-then-durable order and the
durable tier wins on conflict.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog

from relayguard.dedup.fingerprint import Correlation, fingerprint
from relayguard.dedup.tiers import DedupRecord, DurableTier, MemoryTier
from relayguard.infra.errors import PruneFailure, StorageUnavailable

if TYPE_CHECKING:
    from relayguard.config.settings import DedupSettings

logger = structlog.get_logger()


class DedupReason(StrEnum):
    fast_tier_hit = "fast_tier_hit"
    durable_conflict = "durable_conflict"
    recorded = "recorded"
    storage_unavailable = "storage_unavailable"


@dataclass(frozen=True)
class DedupResult:
    is_duplicate: bool
    reason: DedupReason
    fingerprint: str

    @property
    def tier(self) -> str | None:
        """Detection tier for duplicates ("fast" / "durable"), else None."""
        if self.reason == DedupReason.fast_tier_hit:
            return "fast"
        if self.reason == DedupReason.durable_conflict:
            return "durable"
        return None


def utc_now() -> datetime:
    return datetime.now(UTC)


class DedupStore:
    """Cross-restart message dedup.

    Construct once at startup and hand to every component that routes
    messages. Instances are independent; tests may build as many as needed.
    """

    def __init__(
        self,
        durable: DurableTier,
        settings: DedupSettings,
        *,
        fast_tier: MemoryTier | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._durable = durable
        self._settings = settings
        self._fast = fast_tier or MemoryTier(
            capacity=settings.fast_tier_capacity, ttl=settings.ttl
        )
        self._clock = clock

    @property
    def fast_tier(self) -> MemoryTier:
        return self._fast

    @property
    def durable_tier(self) -> DurableTier:
        return self._durable

    @property
    def settings(self) -> DedupSettings:
        return self._settings

    def now(self) -> datetime:
        return self._clock()

    async def check_and_record(
        self,
        from_id: str,
        to_id: str,
        content: str,
        correlation: Correlation | None = None,
        ttl: timedelta | None = None,
    ) -> DedupResult:
        """Return whether this payload was already accepted within ttl, recording it if not.

        Never raises on storage failure: an unreachable durable tier fails open
        (non-duplicate) so a legitimate delivery is never blocked.

        The two tiers judge age differently. A fast-tier hit uses this call's
        ttl against the cached seen_at, while the durable tier honours the
        expires_at stored by whichever call recorded the row. Callers that
        mix ttl values for the same payload can therefore get different
        answers from a warm process and a freshly restarted one; keep one ttl
        per kind of message.
        """
        ttl = ttl if ttl is not None else self._settings.ttl
        fp = fingerprint(from_id, to_id, content, correlation)
        now = self._clock()

        seen_at = self._fast.get(fp)
        if seen_at is not None and now - seen_at <= ttl:
            logger.debug(
                "dedup_fast_tier_hit",
                fingerprint=fp,
                age_s=round((now - seen_at).total_seconds(), 1),
            )
            return DedupResult(True, DedupReason.fast_tier_hit, fp)

        corr = correlation or Correlation()
        record = DedupRecord(
            fingerprint=fp,
            from_agent_id=from_id,
            to_agent_id=to_id,
            seen_at=now,
            expires_at=now + ttl,
            task_id=corr.task_id,
            seq=corr.seq,
        )
        try:
            outcome = await self._durable.conditional_insert(record)
        except StorageUnavailable as exc:
            self._fast.put(fp, now)
            logger.warning(
                "dedup_storage_degraded",
                fingerprint=fp,
                error=str(exc),
                code=exc.code,
                msg="Durable dedup unavailable; failing open on fast tier only",
            )
            return DedupResult(False, DedupReason.storage_unavailable, fp)

        self._fast.put(fp, outcome.seen_at)
        if not outcome.inserted:
            logger.info("dedup_durable_conflict", fingerprint=fp, from_id=from_id, to_id=to_id)
            return DedupResult(True, DedupReason.durable_conflict, fp)
        return DedupResult(False, DedupReason.recorded, fp)

    async def prune(self, now: datetime | None = None, timeout: float | None = None) -> int:
        """Delete durable records with expires_at < now and sweep the fast tier.

        Best-effort: storage errors and timeouts are logged and the rows
        removed so far are returned.
        """
        now = now or self._clock()
        batch_size = self._settings.prune_batch_size
        evicted = self._fast.sweep(now)
        removed = 0
        try:
            async with asyncio.timeout(timeout):
                while True:
                    deleted = await self._durable.delete_expired(now, batch_size=batch_size)
                    removed += deleted
                    if deleted < batch_size:
                        break
        except TimeoutError:
            failure = PruneFailure(f"Prune timed out after {timeout}s")
            logger.warning("dedup_prune_failed", code=failure.code, error=str(failure), removed=removed)
            return removed
        except StorageUnavailable as exc:
            failure = PruneFailure(str(exc))
            logger.warning("dedup_prune_failed", code=failure.code, error=str(failure), removed=removed)
            return removed

        logger.info("dedup_pruned", removed=removed, fast_tier_evicted=evicted)
        return removed

    def clear_fast_tier(self) -> None:
        """Drop all process-local state, as a restart would."""
        self._fast.clear()
