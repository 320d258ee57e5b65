"""Integration tests for AgentRepository/ActivityLog and the full startup path."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine

from relayguard.agents.directory import ActivityLog, AgentRepository
from relayguard.agents.guard import guarded_start
from relayguard.agents.models import Activity, Agent, AgentStatus
from relayguard.config.settings import Settings
from relayguard.infra.errors import AgentNotFound, RefusedStoppedAgent
from relayguard.runtime.startup import startup
from relayguard.storage.models import ActivityRecord, AgentRecord

pytestmark = pytest.mark.integration


async def _seed(repo: AgentRepository) -> None:
    await repo.upsert_agent(Agent(id="dev", name="Dev", role="developer", status=AgentStatus.executing))
    await repo.upsert_agent(Agent(id="vz1", name="Vizzy", role="designer", status=AgentStatus.stopped))
    await repo.upsert_agent(Agent(id="pm", name="Pam", role="pm", status=AgentStatus.idle))


class TestAgentRepository:
    async def test_get_and_list(self, db_session_factory) -> None:
        repo = AgentRepository(db_session_factory)
        await _seed(repo)

        agent = await repo.get_agent("vz1")
        assert agent is not None
        assert agent.status == AgentStatus.stopped
        assert {a.id for a in await repo.list_agents()} == {"dev", "vz1", "pm"}
        assert await repo.get_agent("ghost") is None

    async def test_automated_update_refused_for_stopped(self, db_session_factory) -> None:
        repo = AgentRepository(db_session_factory)
        await _seed(repo)

        assert await repo.update_status("vz1", AgentStatus.idle) is False
        assert (await repo.get_agent("vz1")).status == AgentStatus.stopped

    async def test_manual_unstop(self, db_session_factory) -> None:
        repo = AgentRepository(db_session_factory)
        await _seed(repo)

        assert await repo.update_status("vz1", AgentStatus.idle, manual=True) is True
        assert (await repo.get_agent("vz1")).status == AgentStatus.idle

    async def test_update_unknown_raises(self, db_session_factory) -> None:
        with pytest.raises(AgentNotFound):
            await AgentRepository(db_session_factory).update_status("ghost", AgentStatus.idle)

    async def test_invalid_status_read_as_error(self, db_session_factory) -> None:
        async with db_session_factory() as db:
            db.add(AgentRecord(id="odd", name="Odd", role="x", status="sleeping"))
            await db.commit()

        agent = await AgentRepository(db_session_factory).get_agent("odd")
        assert agent.status == AgentStatus.error

    async def test_guarded_start_refuses_stopped_row(self, db_session_factory) -> None:
        repo = AgentRepository(db_session_factory)
        await _seed(repo)
        start = AsyncMock()

        with pytest.raises(RefusedStoppedAgent):
            await guarded_start("vz1", repo.get_agent, start)
        start.assert_not_awaited()


class TestActivityLog:
    async def test_record_persists(self, db_session_factory) -> None:
        await ActivityLog(db_session_factory).record(
            Activity(agent_id="pm", category="message_deduplicated", summary="s", details={"tier": "fast"})
        )

        async with db_session_factory() as db:
            row = (await db.execute(select(ActivityRecord))).scalar_one()
        assert row.category == "message_deduplicated"
        assert row.details == {"tier": "fast"}


class TestStartupEndToEnd:
    async def test_startup_reconciles_and_routes(
        self, db_engine: AsyncEngine, db_session_factory
    ) -> None:
        repo = AgentRepository(db_session_factory)
        await _seed(repo)

        runtime = await startup(Settings(), engine=db_engine, configure_logging=False)
        try:
            assert runtime.reconcile.reset == ["dev"]
            assert runtime.reconcile.skipped == ["vz1"]
            assert (await repo.get_agent("dev")).status == AgentStatus.idle
            assert (await repo.get_agent("vz1")).status == AgentStatus.stopped

            deliver = AsyncMock()
            router = runtime.make_router(deliver)
            await router.deliver("dev", "pm", "handoff notes")
            await router.deliver("dev", "pm", "handoff notes")
            refused = await router.deliver("pm", "vz1", "please redo")

            deliver.assert_awaited_once()
            assert not refused.delivered

            async with db_session_factory() as db:
                categories = (await db.execute(select(ActivityRecord.category))).scalars().all()
            assert sorted(categories) == ["agent_reconciled", "message_deduplicated"]
        finally:
            await runtime.shutdown()
