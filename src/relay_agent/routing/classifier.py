"""Model-based routing classifier using LangChain structured output."""

from __future__ import annotations

from typing import Any, Protocol

from langchain_core.prompts import ChatPromptTemplate
from pydantic import BaseModel, Field

from relay_agent.agent.capabilities import CapabilityRegistry
from relay_agent.config import RetryConfig, RouterConfig
from relay_agent.resilience.retry import execute_with_retry, retry_kwargs

_CLASSIFIER_PROMPT = """
You are a routing classifier for a multi-capability assistant.
Analyze the user's message and select the capability most likely to complete the task.

Available capabilities:
{capabilities}

Rules:
1) Consider the primary intent of the message.
2) If the request is unclear or spans several domains, choose coordinator.
3) Respond with the capability id, your confidence between 0 and 1, and a one-sentence rationale.
""".strip()


class RoutingChoice(BaseModel):
    """Structured output the classification model is constrained to."""

    capability: str = Field(description="Selected capability id")
    confidence: float = Field(ge=0.0, le=1.0)
    rationale: str


class RoutingClassifier(Protocol):
    def classify(self, message: str) -> RoutingChoice:
        """Return the model's choice; raise on transport or parse failure."""


class LLMRoutingClassifier:
    """Classifies messages with a fast chat model bound to `RoutingChoice`."""

    def __init__(
        self,
        *,
        llm: Any,
        registry: CapabilityRegistry,
        config: RouterConfig | None = None,
    ) -> None:
        self.registry = registry
        self.config = config or RouterConfig()
        prompt = ChatPromptTemplate.from_messages(
            [("system", _CLASSIFIER_PROMPT), ("human", "{message}")]
        )
        self._chain = prompt | llm.with_structured_output(RoutingChoice)
        self._capabilities = "\n".join(
            f"- {definition.id}: {definition.handoff_description}" for definition in registry
        )

    def classify(self, message: str) -> RoutingChoice:
        retry = RetryConfig(max_retries=self.config.model_max_retries)

        def _call() -> RoutingChoice:
            result = self._chain.invoke({"capabilities": self._capabilities, "message": message})
            if result is None:
                raise ValueError("No parsed routing choice from model")
            if isinstance(result, dict):
                return RoutingChoice.model_validate(result)
            return result

        return execute_with_retry(_call, **retry_kwargs(retry))


def create_router_llm(model: str, *, api_key: str, timeout_seconds: float) -> Any:
    from langchain_openai import ChatOpenAI

    return ChatOpenAI(
        model=model,
        api_key=api_key,
        temperature=0,
        timeout=timeout_seconds,
        max_retries=0,
    )
