"""Inter-agent message routing: stopped-agent guard → dedup → deliver.

A deduplicated delivery is silent to the sender and recorded in the audit
trail. A delivery to a stopped agent returns an explicit refusal, because
that is a policy decision an operator should see.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum

import structlog

from relayguard.agents.directory import ActivitySink, AgentDirectory
from relayguard.agents.guard import is_dispatchable
from relayguard.agents.models import Activity, Agent
from relayguard.dedup.fingerprint import Correlation, normalize_content
from relayguard.dedup.store import DedupStore
from relayguard.infra.errors import AgentNotFound

logger = structlog.get_logger()

DeliverFn = Callable[[Agent, str], Awaitable[None]]


class DeliveryStatus(StrEnum):
    delivered = "delivered"
    deduplicated = "deduplicated"
    refused = "refused"


@dataclass(frozen=True)
class DeliveryOutcome:
    status: DeliveryStatus
    message: str
    fingerprint: str | None = None

    @property
    def delivered(self) -> bool:
        return self.status == DeliveryStatus.delivered


def excerpt(content: str, limit: int) -> str:
    normalized = normalize_content(content)
    if len(normalized) <= limit:
        return normalized
    return normalized[:limit] + "…"


class MessageRouter:
    """Routes agent-to-agent messages through the guard and the dedup store.

    deliver is the host's actual send (persist user message, wake the agent
    loop); it only runs when both checks pass.
    """

    def __init__(
        self,
        *,
        directory: AgentDirectory,
        dedup_store: DedupStore,
        activity_sink: ActivitySink,
        deliver: DeliverFn,
        excerpt_chars: int = 80,
    ) -> None:
        self._directory = directory
        self._dedup = dedup_store
        self._activity = activity_sink
        self._deliver = deliver
        self._excerpt_chars = excerpt_chars

    async def deliver(
        self,
        from_id: str,
        to_id: str,
        content: str,
        correlation: Correlation | None = None,
    ) -> DeliveryOutcome:
        """Route one message. Raises AgentNotFound for an unknown recipient."""
        target = await self._directory.get_agent(to_id)
        if target is None:
            raise AgentNotFound(to_id)

        if not is_dispatchable(target):
            logger.warning(
                "message_refused_stopped",
                from_id=from_id,
                to=target.label,
                excerpt=excerpt(content, self._excerpt_chars),
            )
            return DeliveryOutcome(
                DeliveryStatus.refused,
                f"Agent {target.name} is stopped; message not delivered. "
                "Stopped agents only accept traffic after a manual un-stop.",
            )

        result = await self._dedup.check_and_record(from_id, target.id, content, correlation)
        if result.is_duplicate:
            summary = excerpt(content, self._excerpt_chars)
            await self._record_drop(target, from_id, summary, result.tier, result.fingerprint)
            logger.info(
                "message_deduplicated",
                from_id=from_id,
                to=target.label,
                tier=result.tier,
                fingerprint=result.fingerprint,
            )
            return DeliveryOutcome(
                DeliveryStatus.deduplicated,
                f"Message delivered to {target.name}",
                fingerprint=result.fingerprint,
            )

        await self._deliver(target, content)
        return DeliveryOutcome(
            DeliveryStatus.delivered,
            f"Message delivered to {target.name}",
            fingerprint=result.fingerprint,
        )

    async def _record_drop(
        self, target: Agent, from_id: str, summary: str, tier: str | None, fp: str
    ) -> None:
        try:
            await self._activity.record(
                Activity(
                    agent_id=target.id,
                    category="message_deduplicated",
                    summary=f"[Dedup] Dropped duplicate message to {target.name}: {summary}",
                    details={
                        "source": "message_dedup",
                        "dropped": True,
                        "from_agent_id": from_id,
                        "tier": tier,
                        "fingerprint": fp,
                    },
                )
            )
        except Exception:
            # Audit is best-effort; the drop decision stands.
            logger.exception("dedup_audit_failed", agent=target.label, fingerprint=fp)
