"""Credential pre-flight checks for capabilities."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from relay_agent.agent.capabilities import CapabilityDefinition, CapabilityRegistry

_PLACEHOLDERS = {"", "placeholder", "changeme"}


@dataclass(slots=True)
class Availability:
    capability: str
    missing_credentials: list[str] = field(default_factory=list)

    @property
    def available(self) -> bool:
        return not self.missing_credentials


def _is_valid_credential(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() not in _PLACEHOLDERS


def check_availability(
    definition: CapabilityDefinition,
    environ: Mapping[str, str] | None = None,
) -> Availability:
    env = os.environ if environ is None else environ
    missing = [key for key in definition.required_credentials if not _is_valid_credential(env.get(key))]
    return Availability(capability=definition.id, missing_credentials=missing)


def check_all(
    registry: CapabilityRegistry,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Availability]:
    return {definition.id: check_availability(definition, environ) for definition in registry}


def availability_report(registry: CapabilityRegistry, environ: Mapping[str, str] | None = None) -> str:
    lines = ["Capability tool availability:"]
    for capability_id, result in check_all(registry, environ).items():
        status = "[OK]" if result.available else "[MISSING]"
        suffix = f" (missing: {', '.join(result.missing_credentials)})" if result.missing_credentials else ""
        lines.append(f"  {status} {capability_id}{suffix}")
    return "\n".join(lines)
