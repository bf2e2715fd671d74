"""Hand-off authorization between the coordinator and specialists.

Rules, in order:
1. No self-transfer.
2. The coordinator may transfer to any specialist.
3. A specialist may transfer only back to the coordinator.
4. Everything else is denied, whatever the routing confidence.

A transfer is proposed only when the routed capability differs from the
current one and routing confidence is at least `HANDOFF_CONFIDENCE_THRESHOLD`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from relay_agent.agent.capabilities import COORDINATOR, CapabilityRegistry
from relay_agent.routing.router import CapabilityRouter, RouteOptions
from relay_agent.types import RoutingDecision

logger = logging.getLogger(__name__)

HANDOFF_CONFIDENCE_THRESHOLD = 0.7


@dataclass(frozen=True, slots=True)
class Handoff:
    target: str
    reason: str
    context: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, target: str, reason: str, context: dict[str, Any] | None = None) -> "Handoff":
        return cls(target=target, reason=reason, context=dict(context or {}))


@dataclass(frozen=True, slots=True)
class HandoffDecision:
    should_handoff: bool
    routing_decision: RoutingDecision
    handoff: Handoff | None = None


def can_handoff(from_capability: str, to_capability: str, registry: CapabilityRegistry | None = None) -> bool:
    if from_capability == to_capability:
        return False
    if registry is not None and (from_capability not in registry or to_capability not in registry):
        return False
    if from_capability == COORDINATOR:
        return True
    return to_capability == COORDINATOR


def handoff_targets(registry: CapabilityRegistry) -> list[str]:
    return [cid for cid in registry.specialists() if can_handoff(COORDINATOR, cid, registry)]


def evaluate_handoff(decision: RoutingDecision, current_capability: str, registry: CapabilityRegistry | None = None) -> HandoffDecision:
    """Apply the hand-off rules to an existing routing decision."""

    if decision.capability == current_capability:
        return HandoffDecision(should_handoff=False, routing_decision=decision)

    if decision.confidence < HANDOFF_CONFIDENCE_THRESHOLD:
        logger.debug(
            "Handoff skipped: confidence %.2f below %.2f",
            decision.confidence,
            HANDOFF_CONFIDENCE_THRESHOLD,
        )
        return HandoffDecision(should_handoff=False, routing_decision=decision)

    if not can_handoff(current_capability, decision.capability, registry):
        logger.debug("Handoff not allowed: %s -> %s", current_capability, decision.capability)
        return HandoffDecision(should_handoff=False, routing_decision=decision)

    return HandoffDecision(
        should_handoff=True,
        routing_decision=decision,
        handoff=Handoff.create(decision.capability, decision.rationale),
    )


async def decide_handoff(
    message: str,
    current_capability: str,
    *,
    router: CapabilityRouter,
    decision: RoutingDecision | None = None,
    options: RouteOptions | None = None,
) -> HandoffDecision:
    """Route `message` (unless a decision is supplied) and decide on a transfer."""

    if decision is None:
        decision = await router.route(message, options)
    return evaluate_handoff(decision, current_capability, router.registry)
