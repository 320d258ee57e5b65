from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class AgentStatus(StrEnum):
    """Agent lifecycle status.

    Normal loop: idle → thinking/executing → idle.
    Operator action: any → stopped. stopped is absorbing for every automated
    transition; only an explicit manual un-stop leaves it.
    """

    idle = "idle"
    thinking = "thinking"
    executing = "executing"
    error = "error"
    stopped = "stopped"


# Statuses meaning "was mid-execution when the process died".
STALE_STATUSES: frozenset[AgentStatus] = frozenset({AgentStatus.thinking, AgentStatus.executing})


@dataclass(frozen=True)
class Agent:
    id: str
    name: str
    role: str
    status: AgentStatus
    last_active_at: datetime | None = None

    @property
    def label(self) -> str:
        return f"{self.name}({self.id})"


@dataclass(frozen=True)
class InFlightTask:
    """Task that was in progress when the process stopped."""

    id: str
    assignee_id: str | None
    title: str = ""


@dataclass(frozen=True)
class Activity:
    """Structured audit record written to the host's activity sink."""

    agent_id: str
    category: str
    summary: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class ReconcileResult:
    reset: list[str] = field(default_factory=list)  # agent ids moved to idle
    skipped: list[str] = field(default_factory=list)  # stopped, refused or vanished agents


@dataclass
class ResumeResult:
    resumed: list[str] = field(default_factory=list)  # task ids notified
    skipped: list[str] = field(default_factory=list)  # task ids with stopped/unknown assignee
