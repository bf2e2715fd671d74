from langchain_core.runnables import RunnableLambda

from relay_agent.agent.capabilities import build_default_registry
from relay_agent.routing.classifier import _CLASSIFIER_PROMPT, LLMRoutingClassifier, RoutingChoice


class StructuredLLM:
    def __init__(self, choice) -> None:
        self.choice = choice
        self.prompts: list = []

    def with_structured_output(self, schema):
        assert schema is RoutingChoice

        def _answer(prompt_value):
            self.prompts.append(prompt_value.to_messages())
            return self.choice

        return RunnableLambda(_answer)


def test_classifier_prompt_constraints() -> None:
    assert "{capabilities}" in _CLASSIFIER_PROMPT
    assert "choose coordinator" in _CLASSIFIER_PROMPT
    assert "confidence between 0 and 1" in _CLASSIFIER_PROMPT


def test_classifier_lists_every_capability_and_parses_dicts() -> None:
    llm = StructuredLLM({"capability": "finance", "confidence": 0.8, "rationale": "Budget question"})
    classifier = LLMRoutingClassifier(llm=llm, registry=build_default_registry())

    choice = classifier.classify("can I afford a new bike?")

    assert choice == RoutingChoice(capability="finance", confidence=0.8, rationale="Budget question")
    system, human = llm.prompts[0]
    for capability_id in build_default_registry().ids():
        assert f"- {capability_id}:" in system.content
    assert human.content == "can I afford a new bike?"


def test_coordinator_instructions_describe_every_specialist() -> None:
    registry = build_default_registry()
    instructions = registry.coordinator.instructions
    for capability_id in registry.specialists():
        assert capability_id in instructions
