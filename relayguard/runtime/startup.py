"""Startup sequence for hosts embedding relayguard.

Order matters: durable storage → prune → rehydrate → reconcile agent
statuses → prune loop. Only after startup() returns may the host begin its
scheduler loops, watchdog, or agent re-initialization.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from relayguard.agents.directory import ActivityLog, ActivitySink, AgentDirectory, AgentRepository
from relayguard.agents.guard import reconcile_on_startup
from relayguard.agents.models import ReconcileResult
from relayguard.config.settings import Settings, get_settings
from relayguard.dedup.pruner import PruneScheduler
from relayguard.dedup.rehydrator import StartupRehydrator
from relayguard.dedup.store import DedupStore
from relayguard.dedup.tiers import PostgresDurableTier
from relayguard.infra.logging import setup_logging
from relayguard.routing.router import DeliverFn, MessageRouter
from relayguard.storage.database import create_db_engine, ensure_schema, make_session_factory

logger = structlog.get_logger()


@dataclass
class Runtime:
    """Explicitly owned relayguard state for one host process."""

    settings: Settings
    engine: AsyncEngine
    dedup_store: DedupStore
    directory: AgentDirectory
    activity_sink: ActivitySink
    pruner: PruneScheduler
    reconcile: ReconcileResult = field(default_factory=ReconcileResult)
    pruned: int = 0
    rehydrated: int = 0
    owns_engine: bool = True

    def make_router(self, deliver: DeliverFn) -> MessageRouter:
        return MessageRouter(
            directory=self.directory,
            dedup_store=self.dedup_store,
            activity_sink=self.activity_sink,
            deliver=deliver,
            excerpt_chars=self.settings.dedup.excerpt_chars,
        )

    async def shutdown(self) -> None:
        await self.pruner.stop()
        self.dedup_store.clear_fast_tier()
        if self.owns_engine:
            await self.engine.dispose()
            logger.info("db_engine_disposed")


async def startup(
    settings: Settings | None = None,
    *,
    engine: AsyncEngine | None = None,
    directory: AgentDirectory | None = None,
    activity_sink: ActivitySink | None = None,
    configure_logging: bool = True,
) -> Runtime:
    """Bring up dedup and run the stopped-safe reconcile.

    The DB is mandatory: engine or schema failures propagate. Prune and
    rehydrate are best-effort and never fail startup.
    """
    settings = settings or get_settings()
    if configure_logging:
        setup_logging(json_output=settings.log.json_output, log_level=settings.log.level)

    owns_engine = engine is None
    if engine is None:
        engine = await create_db_engine(settings.database)
    try:
        await ensure_schema(engine, settings.database.schema_)
        session_factory = make_session_factory(engine)

        directory = directory or AgentRepository(session_factory)
        activity_sink = activity_sink or ActivityLog(session_factory)

        dedup = settings.dedup
        store = DedupStore(PostgresDurableTier(engine), dedup)
        timeout = dedup.maintenance_timeout_seconds

        pruned = await store.prune(timeout=timeout)
        rehydrated = await StartupRehydrator(store).rehydrate(timeout=timeout)

        agents = await directory.list_agents()
        reconcile = await reconcile_on_startup(
            agents, directory.update_status, activity_sink.record
        )
    except Exception:
        if owns_engine:
            await engine.dispose()
            logger.info("db_engine_disposed", reason="startup_failed")
        raise

    pruner = PruneScheduler(
        store,
        interval_seconds=dedup.prune_interval_seconds,
        timeout_seconds=timeout,
    )
    pruner.start()

    logger.info(
        "relayguard_started",
        pruned=pruned,
        rehydrated=rehydrated,
        reconciled=len(reconcile.reset),
        stopped_protected=len(reconcile.skipped),
    )
    return Runtime(
        settings=settings,
        engine=engine,
        dedup_store=store,
        directory=directory,
        activity_sink=activity_sink,
        pruner=pruner,
        reconcile=reconcile,
        pruned=pruned,
        rehydrated=rehydrated,
        owns_engine=owns_engine,
    )
