"""Agent directory and activity sink.

The guard and router only depend on the Protocols below. AgentRepository
and ActivityLog are the PostgreSQL-backed defaults for hosts that keep
agents in the same database as the dedup table.
"""

from __future__ import annotations

from typing import Protocol

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from relayguard.agents.models import Activity, Agent, AgentStatus
from relayguard.infra.errors import AgentNotFound
from relayguard.storage.models import ActivityRecord, AgentRecord

logger = structlog.get_logger()


class AgentDirectory(Protocol):
    async def get_agent(self, agent_id: str) -> Agent | None: ...

    async def list_agents(self) -> list[Agent]: ...

    async def update_status(self, agent_id: str, status: AgentStatus) -> bool | None: ...


class ActivitySink(Protocol):
    async def record(self, activity: Activity) -> None: ...


class AgentRepository:
    """Agents table access.

    update_status is the automated write path and never moves an agent out of
    stopped: the stopped check is part of the UPDATE's WHERE clause, so an
    operator stop that lands between a read and this write still wins.
    """

    def __init__(self, db_session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._db = db_session_factory

    async def get_agent(self, agent_id: str) -> Agent | None:
        async with self._db() as db:
            result = await db.execute(select(AgentRecord).where(AgentRecord.id == agent_id))
            record = result.scalar_one_or_none()
            return self._to_agent(record) if record else None

    async def list_agents(self) -> list[Agent]:
        async with self._db() as db:
            result = await db.execute(select(AgentRecord).order_by(AgentRecord.created_at, AgentRecord.id))
            return [self._to_agent(r) for r in result.scalars().all()]

    async def update_status(
        self, agent_id: str, status: AgentStatus, *, manual: bool = False
    ) -> bool:
        """Set an agent's status. Returns False if refused because the agent is stopped.

        manual=True is the operator path (explicit un-stop); automation never sets it.
        Raises AgentNotFound for an unknown id.
        """
        stmt = update(AgentRecord).where(AgentRecord.id == agent_id).values(status=str(status))
        if not manual:
            stmt = stmt.where(AgentRecord.status != str(AgentStatus.stopped))

        async with self._db() as db:
            result = await db.execute(stmt)
            await db.commit()
            if result.rowcount:
                return True

            exists = await db.execute(select(AgentRecord.id).where(AgentRecord.id == agent_id))
            if exists.scalar_one_or_none() is None:
                raise AgentNotFound(agent_id)

        logger.warning(
            "agent_status_update_refused",
            agent_id=agent_id,
            requested_status=str(status),
            reason="status=stopped",
        )
        return False

    async def upsert_agent(self, agent: Agent) -> None:
        """Create or replace an agent row. Host-side helper for registration."""
        async with self._db() as db:
            await db.merge(
                AgentRecord(
                    id=agent.id,
                    name=agent.name,
                    role=agent.role,
                    status=str(agent.status),
                    last_active_at=agent.last_active_at,
                )
            )
            await db.commit()

    @staticmethod
    def _to_agent(record: AgentRecord) -> Agent:
        try:
            status = AgentStatus(record.status)
        except ValueError:
            # Unknown statuses are treated as error, never as stopped or idle.
            logger.warning("agent_status_invalid", agent_id=record.id, status=record.status)
            status = AgentStatus.error
        return Agent(
            id=record.id,
            name=record.name,
            role=record.role,
            status=status,
            last_active_at=record.last_active_at,
        )


class ActivityLog:
    """Writes activity records to agent_activities."""

    def __init__(self, db_session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._db = db_session_factory

    async def record(self, activity: Activity) -> None:
        async with self._db() as db:
            db.add(
                ActivityRecord(
                    agent_id=activity.agent_id,
                    category=activity.category,
                    summary=activity.summary,
                    details=activity.details or None,
                )
            )
            await db.commit()
