"""Custom exception hierarchy for relayguard.

All application-specific exceptions inherit from RelayGuardError,
which carries an error code so hosts can map failures to their own
error frames without string matching.
"""

from __future__ import annotations


class RelayGuardError(Exception):
    """Base exception for all relayguard errors."""

    def __init__(self, message: str, *, code: str = "INTERNAL_ERROR") -> None:
        super().__init__(message)
        self.code = code


class StorageUnavailable(RelayGuardError):
    """Durable dedup store unreachable or erroring.

    Never propagated as a delivery failure: DedupStore catches it and fails open.
    """

    def __init__(self, message: str, *, code: str = "STORAGE_UNAVAILABLE") -> None:
        super().__init__(message, code=code)


class AgentError(RelayGuardError):
    """Errors about a specific agent referenced by a caller."""

    def __init__(self, message: str, *, code: str = "AGENT_ERROR") -> None:
        super().__init__(message, code=code)


class AgentNotFound(AgentError):
    """Referenced agent id has no record. A caller bug, not a transient condition."""

    def __init__(self, agent_id: str) -> None:
        super().__init__(f"Agent {agent_id} not found", code="AGENT_NOT_FOUND")
        self.agent_id = agent_id


class RefusedStoppedAgent(AgentError):
    """Automation tried to start or dispatch to a stopped agent."""

    def __init__(self, agent_id: str, agent_name: str = "") -> None:
        label = f"{agent_name}({agent_id})" if agent_name else agent_id
        super().__init__(
            f"Refusing to start stopped agent {label}. "
            "Stopped agents require an explicit manual un-stop; "
            "automation never restarts them.",
            code="AGENT_STOPPED",
        )
        self.agent_id = agent_id


class MaintenanceError(RelayGuardError):
    """Best-effort dedup maintenance failed. Logged, never fatal."""

    def __init__(self, message: str, *, code: str = "MAINTENANCE_ERROR") -> None:
        super().__init__(message, code=code)


class RehydrationFailure(MaintenanceError):
    """Startup rehydration of the fast tier failed or timed out."""

    def __init__(self, message: str = "Dedup rehydration failed") -> None:
        super().__init__(message, code="REHYDRATION_FAILED")


class PruneFailure(MaintenanceError):
    """Deleting expired durable dedup records failed or timed out."""

    def __init__(self, message: str = "Dedup prune failed") -> None:
        super().__init__(message, code="PRUNE_FAILED")
