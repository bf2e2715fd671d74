import asyncio

import pytest

from relay_agent.agent.capabilities import build_default_registry
from relay_agent.config import RouterConfig
from relay_agent.routing.classifier import RoutingChoice
from relay_agent.routing.router import CapabilityRouter, RouteOptions, keyword_route
from relay_agent.types import RoutingSource


class StubClassifier:
    def __init__(self, choice: RoutingChoice | None = None, error: Exception | None = None) -> None:
        self.choice = choice
        self.error = error
        self.calls: list[str] = []

    def classify(self, message: str) -> RoutingChoice:
        self.calls.append(message)
        if self.error is not None:
            raise self.error
        assert self.choice is not None
        return self.choice


def _route(router: CapabilityRouter, message: str, options: RouteOptions | None = None):
    return asyncio.run(router.route(message, options))


def test_explicit_mention_short_circuits() -> None:
    classifier = StubClassifier(RoutingChoice(capability="finance", confidence=0.9, rationale="nope"))
    router = CapabilityRouter(build_default_registry(), classifier=classifier)

    decision = _route(router, "ask the coder agent to review this")

    assert decision.capability == "coder"
    assert decision.confidence == 0.99
    assert decision.source is RoutingSource.EXPLICIT
    assert classifier.calls == []


@pytest.mark.parametrize(
    ("message", "capability"),
    [
        ("@home turn off the lights", "home"),
        ("have the devbot look at it", "coder"),
        ("Let the researcher dig into this", "researcher"),
        ("@coordinator what can you do?", "coordinator"),
    ],
)
def test_explicit_aliases(message: str, capability: str) -> None:
    router = CapabilityRouter(build_default_registry())
    decision = _route(router, message)
    assert decision.capability == capability
    assert decision.source is RoutingSource.EXPLICIT


def test_play_some_jazz_routes_to_personality_by_keywords() -> None:
    router = CapabilityRouter(build_default_registry())

    decision = _route(router, "play some jazz")

    assert decision.capability == "personality"
    assert decision.source is RoutingSource.KEYWORD
    assert 0.70 <= decision.confidence <= 0.80
    assert "play" in decision.rationale


def test_keyword_score_below_minimum_never_routes_by_keyword() -> None:
    assert keyword_route("what about jazz", min_score=2) is None

    router = CapabilityRouter(build_default_registry())
    decision = _route(router, "what about jazz")
    assert decision.source is RoutingSource.FALLBACK
    assert decision.capability == "coordinator"
    assert decision.confidence == 0.5


def test_confident_keyword_match_skips_model() -> None:
    classifier = StubClassifier(RoutingChoice(capability="finance", confidence=0.9, rationale="money"))
    router = CapabilityRouter(build_default_registry(), classifier=classifier)

    decision = _route(router, "please fix the bug in this python function")

    assert decision.capability == "coder"
    assert decision.source is RoutingSource.KEYWORD
    assert decision.confidence == 0.95
    assert classifier.calls == []


def test_model_agreement_boosts_confidence() -> None:
    classifier = StubClassifier(RoutingChoice(capability="personality", confidence=0.85, rationale="Music request"))
    router = CapabilityRouter(build_default_registry(), classifier=classifier)

    decision = _route(router, "play some jazz")

    assert decision.capability == "personality"
    assert decision.source is RoutingSource.MODEL
    assert decision.confidence == pytest.approx(0.95)
    assert decision.rationale.endswith("(confirmed by keyword match)")


def test_agreement_boost_is_capped() -> None:
    classifier = StubClassifier(RoutingChoice(capability="personality", confidence=0.97, rationale="Music"))
    router = CapabilityRouter(build_default_registry(), classifier=classifier)

    assert _route(router, "play some jazz").confidence == 0.99


def test_disagreement_prefers_higher_confidence_and_keyword_on_tie() -> None:
    registry = build_default_registry()

    stronger_model = CapabilityRouter(
        registry, classifier=StubClassifier(RoutingChoice(capability="home", confidence=0.9, rationale="Home"))
    )
    assert _route(stronger_model, "play some jazz").capability == "home"

    tie = CapabilityRouter(
        registry, classifier=StubClassifier(RoutingChoice(capability="home", confidence=0.75, rationale="Home"))
    )
    tied = _route(tie, "play some jazz")
    assert tied.capability == "personality"
    assert tied.source is RoutingSource.KEYWORD


def test_unknown_model_capability_falls_back() -> None:
    classifier = StubClassifier(RoutingChoice(capability="astrologer", confidence=0.9, rationale="Stars"))
    router = CapabilityRouter(build_default_registry(), classifier=classifier)

    decision = _route(router, "what should I think about today")

    assert decision.source is RoutingSource.FALLBACK
    assert decision.capability == "coordinator"


def test_model_failure_overrides_weak_keyword_result() -> None:
    classifier = StubClassifier(error=RuntimeError("503 service unavailable"))
    router = CapabilityRouter(build_default_registry(), classifier=classifier)

    decision = _route(router, "play some jazz")

    assert decision.capability == "coordinator"
    assert decision.confidence == 0.5
    assert decision.source is RoutingSource.FALLBACK


def test_unknown_model_capability_overrides_weak_keyword_result() -> None:
    classifier = StubClassifier(RoutingChoice(capability="astrologer", confidence=0.9, rationale="Stars"))
    router = CapabilityRouter(build_default_registry(), classifier=classifier)

    decision = _route(router, "play some jazz")

    assert decision.capability == "coordinator"
    assert decision.source is RoutingSource.FALLBACK


def test_model_failure_without_keywords_falls_back() -> None:
    classifier = StubClassifier(error=TimeoutError("timed out"))
    router = CapabilityRouter(build_default_registry(), classifier=classifier)

    decision = _route(router, "hmm")

    assert decision.source is RoutingSource.FALLBACK
    assert decision.confidence == 0.5


def test_skip_model_option_and_threshold_override() -> None:
    classifier = StubClassifier(RoutingChoice(capability="home", confidence=0.99, rationale="Home"))
    router = CapabilityRouter(build_default_registry(), classifier=classifier)

    skipped = _route(router, "play some jazz", RouteOptions(skip_model=True))
    assert skipped.source is RoutingSource.KEYWORD

    lowered = _route(router, "play some jazz", RouteOptions(keyword_skip_threshold=0.7))
    assert lowered.source is RoutingSource.KEYWORD
    assert classifier.calls == []


def test_configurable_minimum_score() -> None:
    router = CapabilityRouter(build_default_registry(), config=RouterConfig(keyword_min_score=3))
    assert _route(router, "play some jazz").source is RoutingSource.FALLBACK


def test_route_sync_matches_async() -> None:
    router = CapabilityRouter(build_default_registry())
    assert router.route_sync("play some jazz") == _route(router, "play some jazz")
