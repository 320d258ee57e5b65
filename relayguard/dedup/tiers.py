"""Dedup storage tiers.

MemoryTier: process-local fingerprint → seen_at cache, bounded and lock-guarded.
DurableTier: cross-process, cross-restart store of record. The PostgreSQL
implementation relies on INSERT ... ON CONFLICT DO NOTHING so that racing
writers (threads, workers, or freshly restarted processes) agree on exactly
one first writer.
"""

from __future__ import annotations

import asyncio
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog
from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from relayguard.infra.errors import StorageUnavailable
from relayguard.storage.models import DedupEntry

logger = structlog.get_logger()


@dataclass(frozen=True)
class DedupRecord:
    """One accepted delivery. Never mutated after creation."""

    fingerprint: str
    from_agent_id: str
    to_agent_id: str
    seen_at: datetime
    expires_at: datetime
    task_id: str | None = None
    seq: str | None = None


@dataclass(frozen=True)
class InsertOutcome:
    """Result of a conditional insert.

    seen_at is the winning row's timestamp: ours when inserted, the
    existing row's on conflict.
    """

    inserted: bool
    seen_at: datetime


class MemoryTier:
    """Bounded in-process fast tier.

    All operations hold one mutex around dict work only; nothing here blocks on I/O.
    Eviction order is insertion order (oldest-inserted first).
    """

    def __init__(self, *, capacity: int, ttl: timedelta) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be > 0, got {capacity}")
        self._capacity = capacity
        self._ttl = ttl
        self._entries: OrderedDict[str, datetime] = OrderedDict()
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, fingerprint: object) -> bool:
        with self._lock:
            return fingerprint in self._entries

    def get(self, fingerprint: str) -> datetime | None:
        with self._lock:
            return self._entries.get(fingerprint)

    def put(self, fingerprint: str, seen_at: datetime) -> None:
        with self._lock:
            self._insert(fingerprint, seen_at)
            self._trim()

    def put_many(self, items: Iterable[tuple[str, datetime]]) -> int:
        """Insert items in iteration order. Returns how many were inserted."""
        count = 0
        with self._lock:
            for fingerprint, seen_at in items:
                self._insert(fingerprint, seen_at)
                count += 1
            self._trim()
        return count

    def sweep(self, now: datetime) -> int:
        """Drop entries older than the TTL, then trim to capacity. Returns entries removed."""
        with self._lock:
            before = len(self._entries)
            expired = [fp for fp, seen_at in self._entries.items() if now - seen_at > self._ttl]
            for fp in expired:
                del self._entries[fp]
            self._trim()
            return before - len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _insert(self, fingerprint: str, seen_at: datetime) -> None:
        # Re-inserting counts as a fresh insertion for eviction order.
        self._entries.pop(fingerprint, None)
        self._entries[fingerprint] = seen_at

    def _trim(self) -> None:
        while len(self._entries) > self._capacity:
            self._entries.popitem(last=False)


class DurableTier(ABC):
    """Store of record for dedup decisions across processes and restarts.

    Implementations raise StorageUnavailable for any backend failure.
    """

    @abstractmethod
    async def conditional_insert(self, record: DedupRecord) -> InsertOutcome:
        """Insert record unless a live row with the same fingerprint exists.

        A row whose expires_at is before record.seen_at is expired and is
        superseded by the new record.
        """
        ...

    @abstractmethod
    def iter_live(
        self,
        *,
        now: datetime,
        since: datetime,
        limit: int,
        batch_size: int,
    ) -> AsyncIterator[list[tuple[str, datetime]]]:
        """Yield batches of (fingerprint, seen_at) for live rows seen after since.

        Most recent first, at most limit rows in total.
        """
        ...

    @abstractmethod
    async def delete_expired(self, now: datetime, *, batch_size: int) -> int:
        """Delete up to batch_size rows with expires_at < now. Returns rows deleted."""
        ...


class PostgresDurableTier(DurableTier):
    """DurableTier backed by the message_dedup table."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def conditional_insert(self, record: DedupRecord) -> InsertOutcome:
        try:
            async with self._engine.begin() as conn:
                # Supersede an expired row. Concurrent writers block on the row
                # lock here, then see the winner's fresh row at INSERT time.
                await conn.execute(
                    delete(DedupEntry).where(
                        DedupEntry.fingerprint == record.fingerprint,
                        DedupEntry.expires_at < record.seen_at,
                    )
                )
                stmt = (
                    pg_insert(DedupEntry)
                    .values(
                        fingerprint=record.fingerprint,
                        from_agent_id=record.from_agent_id,
                        to_agent_id=record.to_agent_id,
                        task_id=record.task_id,
                        seq=record.seq,
                        seen_at=record.seen_at,
                        expires_at=record.expires_at,
                    )
                    .on_conflict_do_nothing(index_elements=["fingerprint"])
                    .returning(DedupEntry.seen_at)
                )
                inserted_at = (await conn.execute(stmt)).scalar_one_or_none()
                if inserted_at is not None:
                    return InsertOutcome(inserted=True, seen_at=inserted_at)

                existing = await conn.execute(
                    select(DedupEntry.seen_at).where(
                        DedupEntry.fingerprint == record.fingerprint
                    )
                )
                # The conflicting row can vanish under a concurrent prune.
                existing_at = existing.scalar_one_or_none()
                return InsertOutcome(inserted=False, seen_at=existing_at or record.seen_at)
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as exc:
            raise StorageUnavailable(f"Dedup insert failed: {exc}") from exc

    async def iter_live(
        self,
        *,
        now: datetime,
        since: datetime,
        limit: int,
        batch_size: int,
    ) -> AsyncIterator[list[tuple[str, datetime]]]:
        stmt = (
            select(DedupEntry.fingerprint, DedupEntry.seen_at)
            .where(DedupEntry.expires_at >= now, DedupEntry.seen_at > since)
            .order_by(DedupEntry.seen_at.desc())
            .limit(limit)
        )
        try:
            async with self._engine.connect() as conn:
                result = await conn.stream(stmt)
                async for partition in result.partitions(batch_size):
                    yield [(row.fingerprint, row.seen_at) for row in partition]
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as exc:
            raise StorageUnavailable(f"Dedup read failed: {exc}") from exc

    async def delete_expired(self, now: datetime, *, batch_size: int) -> int:
        batch = select(DedupEntry.id).where(DedupEntry.expires_at < now).limit(batch_size)
        try:
            async with self._engine.begin() as conn:
                result = await conn.execute(
                    delete(DedupEntry).where(DedupEntry.id.in_(batch))
                )
                return result.rowcount or 0
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as exc:
            raise StorageUnavailable(f"Dedup prune failed: {exc}") from exc
