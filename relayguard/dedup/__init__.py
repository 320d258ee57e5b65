"""Dedup module: fingerprinting, two-tier store, startup rehydration, pruning."""

from relayguard.dedup.fingerprint import Correlation, fingerprint, normalize_content
from relayguard.dedup.pruner import PruneScheduler
from relayguard.dedup.rehydrator import StartupRehydrator
from relayguard.dedup.store import DedupReason, DedupResult, DedupStore
from relayguard.dedup.tiers import (
    DedupRecord,
    DurableTier,
    InsertOutcome,
    MemoryTier,
    PostgresDurableTier,
)

__all__ = [
    "Correlation",
    "DedupReason",
    "DedupRecord",
    "DedupResult",
    "DedupStore",
    "DurableTier",
    "InsertOutcome",
    "MemoryTier",
    "PostgresDurableTier",
    "PruneScheduler",
    "StartupRehydrator",
    "fingerprint",
    "normalize_content",
]
