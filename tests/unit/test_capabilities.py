import pytest

from relay_agent.agent.capabilities import (
    COORDINATOR,
    CapabilityDefinition,
    CapabilityRegistry,
    build_default_registry,
)
from relay_agent.agent.preflight import availability_report, check_all, check_availability
from relay_agent.routing.patterns import KEYWORD_TABLES


def test_default_registry_has_one_coordinator_and_seven_specialists() -> None:
    registry = build_default_registry()

    assert registry.coordinator.id == COORDINATOR
    assert registry.specialists() == [
        "coder",
        "researcher",
        "secretary",
        "personality",
        "home",
        "finance",
        "imagegen",
    ]
    assert len(registry) == 8


def test_specialists_only_hand_back_to_coordinator() -> None:
    registry = build_default_registry()
    for capability_id in registry.specialists():
        assert registry.get(capability_id).handoff_targets == (COORDINATOR,)
    assert set(registry.coordinator.handoff_targets) == set(registry.specialists())


def test_every_specialist_has_a_keyword_table() -> None:
    registry = build_default_registry()
    assert set(KEYWORD_TABLES) == set(registry.specialists())


def test_definitions_are_read_only() -> None:
    registry = build_default_registry()
    with pytest.raises(Exception):
        registry.get("coder").display_name = "Other"  # type: ignore[misc]
    with pytest.raises(KeyError):
        registry.get("astrologer")


def test_registry_requires_unique_ids_and_coordinator() -> None:
    coder = CapabilityDefinition(id="coder", display_name="DevBot", instructions="code")
    with pytest.raises(ValueError):
        CapabilityRegistry([coder])
    coordinator = CapabilityDefinition(id=COORDINATOR, display_name="Coordinator", instructions="route")
    with pytest.raises(ValueError):
        CapabilityRegistry([coordinator, coder, coder])


def test_preflight_reports_missing_credentials() -> None:
    registry = build_default_registry()
    environ = {"GITHUB_PERSONAL_ACCESS_TOKEN": "ghp_real", "HASS_TOKEN": "placeholder"}

    assert check_availability(registry.get("coder"), environ).available
    home = check_availability(registry.get("home"), environ)
    assert not home.available
    assert home.missing_credentials == ["HASS_TOKEN", "HASS_URL"]

    results = check_all(registry, environ)
    assert results["researcher"].available

    report = availability_report(registry, environ)
    assert "[OK] coder" in report
    assert "[MISSING] secretary (missing: GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET)" in report
