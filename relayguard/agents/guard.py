"""Stopped-agent guard.

One predicate, is_dispatchable, decides whether automation may touch an
agent. Every automated call site (dispatch, task assignment, startup
reconcile, watchdog start, task resume) goes through it instead of
re-deriving the condition.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable

import structlog

from relayguard.agents.models import (
    STALE_STATUSES,
    Activity,
    Agent,
    AgentStatus,
    InFlightTask,
    ReconcileResult,
    ResumeResult,
)
from relayguard.infra.errors import AgentNotFound, RefusedStoppedAgent

logger = structlog.get_logger()

# transition(agent_id, status) may return False when the store refused the
# change (the agent was stopped concurrently); None/True mean applied.
StatusTransition = Callable[[str, AgentStatus], Awaitable[bool | None]]
ActivityLogger = Callable[[Activity], Awaitable[None]]
AgentFetcher = Callable[[str], Awaitable[Agent | None]]
AgentStarter = Callable[[str], Awaitable[None]]
ResumeNotifier = Callable[[Agent, InFlightTask], Awaitable[None]]


def is_dispatchable(agent: Agent) -> bool:
    return agent.status != AgentStatus.stopped


def filter_dispatchable(agents: Iterable[Agent], *, context: str = "dispatch") -> list[Agent]:
    """Order-preserving subset of agents automation may act on.

    Exclusions are always logged so a missing agent in a dispatch decision
    can be traced back here.
    """
    kept: list[Agent] = []
    excluded: list[Agent] = []
    for agent in agents:
        (kept if is_dispatchable(agent) else excluded).append(agent)

    if excluded:
        logger.info(
            "stopped_agents_excluded",
            context=context,
            count=len(excluded),
            agents=[a.label for a in excluded],
            reason="status=stopped",
        )
    return kept


def pick_assignee(role: str, candidates: Iterable[Agent]) -> Agent | None:
    """First dispatchable candidate with the given role, or None."""
    for agent in filter_dispatchable(candidates, context="assignment"):
        if agent.role == role:
            return agent
    return None


async def reconcile_on_startup(
    agents: Iterable[Agent],
    transition: StatusTransition,
    log_activity: ActivityLogger,
) -> ReconcileResult:
    """Reset agents left mid-execution by a crash back to idle.

    Stopped agents are skipped explicitly; they are never candidates even
    though stopped is not a stale status.
    """
    result = ReconcileResult()

    for agent in agents:
        if not is_dispatchable(agent):
            result.skipped.append(agent.id)
            logger.info("reconcile_skipped_stopped", agent=agent.label)
            continue

        if agent.status not in STALE_STATUSES:
            continue

        try:
            applied = await transition(agent.id, AgentStatus.idle)
        except AgentNotFound:
            # Deleted between the listing and this update.
            result.skipped.append(agent.id)
            logger.warning("reconcile_agent_vanished", agent=agent.label)
            continue
        if applied is False:
            result.skipped.append(agent.id)
            logger.warning("reconcile_refused_by_store", agent=agent.label)
            continue

        await log_activity(
            Activity(
                agent_id=agent.id,
                category="agent_reconciled",
                summary=(
                    f"{agent.name} state reconciled after restart "
                    f"({agent.status} -> {AgentStatus.idle})"
                ),
                details={
                    "source": "startup_reconcile",
                    "previous_status": str(agent.status),
                },
            )
        )
        result.reset.append(agent.id)
        logger.info("agent_reconciled", agent=agent.label, previous_status=str(agent.status))

    logger.info(
        "startup_reconcile_complete",
        reset=len(result.reset),
        stopped_protected=len(result.skipped),
    )
    return result


async def guarded_start(agent_id: str, fetch: AgentFetcher, start: AgentStarter) -> None:
    """Start an agent from an automated path (watchdog, recovery).

    Raises AgentNotFound for an unknown id and RefusedStoppedAgent for a
    stopped agent; the caller must not retry the latter automatically.
    """
    agent = await fetch(agent_id)
    if agent is None:
        raise AgentNotFound(agent_id)
    if not is_dispatchable(agent):
        logger.warning("agent_start_refused", agent=agent.label, status=str(agent.status))
        raise RefusedStoppedAgent(agent.id, agent.name)
    await start(agent_id)


async def resume_in_flight_tasks(
    tasks: Iterable[InFlightTask],
    agents: Iterable[Agent],
    notify: ResumeNotifier,
) -> ResumeResult:
    """Send resume notifications for tasks in progress before a restart.

    Tasks whose assignee is unknown or stopped get no message at all. A
    failed notification is logged and does not stop the remaining resumes.
    """
    by_id = {a.id: a for a in agents}
    result = ResumeResult()

    for task in tasks:
        if not task.assignee_id:
            continue
        assignee = by_id.get(task.assignee_id)
        if assignee is None or not is_dispatchable(assignee):
            result.skipped.append(task.id)
            logger.info(
                "task_resume_skipped",
                task_id=task.id,
                assignee_id=task.assignee_id,
                reason="unknown_assignee" if assignee is None else "status=stopped",
            )
            continue
        try:
            await notify(assignee, task)
        except Exception:
            logger.exception("task_resume_failed", task_id=task.id, agent=assignee.label)
            continue
        result.resumed.append(task.id)

    return result
