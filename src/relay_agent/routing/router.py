"""Three-tier capability router: explicit mention, keywords, model."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace

from relay_agent.agent.capabilities import COORDINATOR, CapabilityRegistry
from relay_agent.config import RouterConfig
from relay_agent.routing.classifier import RoutingChoice, RoutingClassifier
from relay_agent.routing.patterns import EXPLICIT_PATTERNS, KEYWORD_TABLES, KeywordTable, tokenize
from relay_agent.types import RoutingDecision, RoutingSource

logger = logging.getLogger(__name__)

EXPLICIT_CONFIDENCE = 0.99
FALLBACK_CONFIDENCE = 0.5
_PHRASE_WEIGHT = 3
_WORD_WEIGHT = 1


@dataclass(frozen=True, slots=True)
class RouteOptions:
    skip_model: bool = False
    keyword_skip_threshold: float | None = None


def fallback_decision(rationale: str) -> RoutingDecision:
    return RoutingDecision(
        capability=COORDINATOR,
        confidence=FALLBACK_CONFIDENCE,
        rationale=rationale,
        source=RoutingSource.FALLBACK,
    )


def explicit_route(message: str, registry: CapabilityRegistry | None = None) -> RoutingDecision | None:
    for pattern, capability in EXPLICIT_PATTERNS:
        if registry is not None and capability not in registry:
            continue
        if pattern.search(message):
            logger.debug("Explicit capability request detected: %s", capability)
            return RoutingDecision(
                capability=capability,
                confidence=EXPLICIT_CONFIDENCE,
                rationale=f"Explicit request to use {capability}",
                source=RoutingSource.EXPLICIT,
            )
    return None


def score_keywords(message: str, table: KeywordTable) -> tuple[int, list[str]]:
    lowered = message.lower()
    tokens = set(tokenize(message))
    score = 0
    matched: list[str] = []
    for phrase in table.phrases:
        if phrase in lowered:
            score += _PHRASE_WEIGHT
            matched.append(phrase)
    for word in table.words:
        if word in tokens:
            score += _WORD_WEIGHT
            matched.append(word)
    return score, matched


def keyword_confidence(score: int) -> float:
    return min(0.95, 0.65 + 0.05 * score)


def keyword_route(
    message: str,
    *,
    min_score: int = 2,
    registry: CapabilityRegistry | None = None,
) -> RoutingDecision | None:
    """Score every specialist's keyword table; best score at or above `min_score` wins."""

    best: tuple[str, int, list[str]] | None = None
    for capability, table in KEYWORD_TABLES.items():
        if capability == COORDINATOR:
            continue
        if registry is not None and capability not in registry:
            continue
        score, matched = score_keywords(message, table)
        if score > (best[1] if best else 0):
            best = (capability, score, matched)

    if best is None or best[1] < min_score:
        return None

    capability, score, matched = best
    confidence = keyword_confidence(score)
    logger.debug("Keyword routing matched %s (score=%d, confidence=%.2f)", capability, score, confidence)
    return RoutingDecision(
        capability=capability,
        confidence=confidence,
        rationale=f"Keyword match: {', '.join(matched[:3])}",
        source=RoutingSource.KEYWORD,
    )


class CapabilityRouter:
    """Produces one `RoutingDecision` per message.

    Tier order:
    1. Explicit mention ("ask the coder ...", "@home") short-circuits at 0.99.
    2. Keyword scoring returns directly when confident enough or when the
       caller skips the model tier.
    3. Structured model classification, fused with the keyword result.
    4. Otherwise the coordinator fallback at 0.5.

    Routing never raises: model failures and unknown capability ids downgrade
    to the fallback decision.
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        *,
        classifier: RoutingClassifier | None = None,
        config: RouterConfig | None = None,
    ) -> None:
        self.registry = registry
        self.classifier = classifier
        self.config = config or RouterConfig()

    async def route(self, message: str, options: RouteOptions | None = None) -> RoutingDecision:
        options = options or RouteOptions()
        early, keyword_result = self._fast_tiers(message, options)
        if early is not None:
            return early
        if options.skip_model or self.classifier is None:
            return keyword_result or fallback_decision("No specific intent detected, using coordinator")

        attempts = self.config.model_max_retries + 1
        try:
            choice = await asyncio.wait_for(
                asyncio.to_thread(self.classifier.classify, message),
                timeout=self.config.model_timeout_seconds * attempts,
            )
        except Exception as exc:
            logger.error("Model routing failed: %s", exc)
            choice = None
        return self._fuse(keyword_result, self._model_decision(choice))

    def route_sync(self, message: str, options: RouteOptions | None = None) -> RoutingDecision:
        """Blocking variant for callers outside an event loop."""

        options = options or RouteOptions()
        early, keyword_result = self._fast_tiers(message, options)
        if early is not None:
            return early
        if options.skip_model or self.classifier is None:
            return keyword_result or fallback_decision("No specific intent detected, using coordinator")

        try:
            choice = self.classifier.classify(message)
        except Exception as exc:
            logger.error("Model routing failed: %s", exc)
            choice = None
        return self._fuse(keyword_result, self._model_decision(choice))

    def _fast_tiers(
        self, message: str, options: RouteOptions
    ) -> tuple[RoutingDecision | None, RoutingDecision | None]:
        explicit = explicit_route(message, self.registry)
        if explicit is not None:
            return explicit, None

        keyword_result = keyword_route(
            message,
            min_score=self.config.keyword_min_score,
            registry=self.registry,
        )
        threshold = (
            options.keyword_skip_threshold
            if options.keyword_skip_threshold is not None
            else self.config.keyword_skip_threshold
        )
        if keyword_result is not None and (keyword_result.confidence >= threshold or options.skip_model):
            return keyword_result, keyword_result
        return None, keyword_result

    def _model_decision(self, choice: RoutingChoice | None) -> RoutingDecision:
        if choice is None:
            return fallback_decision("Model routing failed, defaulting to coordinator")
        if choice.capability not in self.registry:
            logger.warning("Model returned unknown capability %r, using fallback", choice.capability)
            return fallback_decision(f"Model returned unknown capability {choice.capability!r}")
        return RoutingDecision(
            capability=choice.capability,
            confidence=max(0.0, min(1.0, choice.confidence)),
            rationale=choice.rationale,
            source=RoutingSource.MODEL,
        )

    def _fuse(self, keyword_result: RoutingDecision | None, model_result: RoutingDecision) -> RoutingDecision:
        if keyword_result is None:
            return model_result
        if model_result.source is RoutingSource.FALLBACK:
            return model_result
        if keyword_result.capability == model_result.capability:
            return replace(
                model_result,
                confidence=min(0.99, model_result.confidence + self.config.agreement_boost),
                rationale=f"{model_result.rationale} (confirmed by keyword match)",
            )
        if model_result.confidence > keyword_result.confidence:
            return model_result
        return keyword_result
