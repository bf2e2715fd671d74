"""Static capability registry: coordinator plus specialists."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from types import MappingProxyType
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

COORDINATOR = "coordinator"

ModelTier = Literal["fast", "standard", "reasoning"]


class CapabilityDefinition(BaseModel):
    """Execution configuration for one capability."""

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    instructions: str
    tools: tuple[str, ...] = ()
    model_tier: ModelTier = "standard"
    handoff_targets: tuple[str, ...] = ()
    handoff_description: str = ""
    required_credentials: tuple[str, ...] = Field(default_factory=tuple)

    @property
    def is_coordinator(self) -> bool:
        return self.id == COORDINATOR


class CapabilityRegistry:
    """Read-only lookup of capability definitions, built once at startup."""

    def __init__(self, definitions: list[CapabilityDefinition]) -> None:
        table: dict[str, CapabilityDefinition] = {}
        for definition in definitions:
            if definition.id in table:
                raise ValueError(f"Capability already registered: {definition.id}")
            table[definition.id] = definition
        if COORDINATOR not in table:
            raise ValueError("Registry requires a coordinator capability")
        self._table: Mapping[str, CapabilityDefinition] = MappingProxyType(table)

    def __contains__(self, capability_id: object) -> bool:
        return capability_id in self._table

    def __iter__(self) -> Iterator[CapabilityDefinition]:
        return iter(self._table.values())

    def __len__(self) -> int:
        return len(self._table)

    def get(self, capability_id: str) -> CapabilityDefinition:
        definition = self._table.get(capability_id)
        if definition is None:
            raise KeyError(f"Unknown capability: {capability_id}")
        return definition

    def ids(self) -> list[str]:
        return list(self._table)

    def specialists(self) -> list[str]:
        return [cid for cid in self._table if cid != COORDINATOR]

    @property
    def coordinator(self) -> CapabilityDefinition:
        return self._table[COORDINATOR]


_COORDINATOR_INSTRUCTIONS = """
You are the coordinator of a team of specialist assistants.

Your role:
- Handle general queries that don't need specialist knowledge.
- Transfer requests to the best specialist when one clearly fits:
  code and GitHub -> coder; web research and news -> researcher;
  email, calendar and documents -> secretary; casual chat and music -> personality;
  smart home and sleep data -> home; money and budgets -> finance;
  images, charts and diagrams -> imagegen.
- Present one consistent voice to the user across transfers.
""".strip()

_CODER_INSTRUCTIONS = """
You are an expert software engineer.
Use GitHub tools to gather context before answering, think through complex
problems systematically, follow the conventions of the repository at hand and
call out security implications.
""".strip()

_RESEARCHER_INSTRUCTIONS = """
You are a research specialist with real-time web search.
Always cite sources, cross-check facts across sources, distinguish fact from
opinion and note when information may become outdated.
""".strip()

_SECRETARY_INSTRUCTIONS = """
You are a personal secretary for email, calendar and documents.
Confirm destructive actions (sending email, deleting events) before executing
them, state exact dates and times, and check for calendar conflicts.
""".strip()

_PERSONALITY_INSTRUCTIONS = """
You are the fun, conversational side of the assistant.
Be witty but helpful, match the user's tone, and for music requests always use
the Spotify tools instead of explaining how to do it manually.
""".strip()

_HOME_INSTRUCTIONS = """
You control the user's smart home and read their wearable sleep data.
Confirm security-sensitive actions (unlocking doors, disabling alarms) and
report the device state after every change.
""".strip()

_FINANCE_INSTRUCTIONS = """
You are a personal financial advisor.
Use the finance tools for current data, present numbers with currency
formatting and context, and never be judgmental about spending.
""".strip()

_IMAGEGEN_INSTRUCTIONS = """
You are an image generation specialist.
Write a detailed prompt covering style, mood, lighting and composition, then
always call the image generation tool rather than describing the image.
""".strip()

_DEFAULT_TOOLS = ("get_current_time", "calculate", "get_weather")


def _specialist(
    capability_id: str,
    display_name: str,
    instructions: str,
    tools: tuple[str, ...],
    *,
    model_tier: ModelTier,
    description: str,
    credentials: tuple[str, ...] = (),
) -> CapabilityDefinition:
    return CapabilityDefinition(
        id=capability_id,
        display_name=display_name,
        instructions=instructions,
        tools=tools + _DEFAULT_TOOLS,
        model_tier=model_tier,
        handoff_targets=(COORDINATOR,),
        handoff_description=description,
        required_credentials=credentials,
    )


def default_capabilities() -> list[CapabilityDefinition]:
    """Built-in capability set: one coordinator and seven specialists."""

    specialists = [
        _specialist(
            "coder",
            "DevBot",
            _CODER_INSTRUCTIONS,
            ("github_search_code", "github_get_file", "github_create_pr"),
            model_tier="reasoning",
            description="Software engineering, GitHub, debugging and architecture",
            credentials=("GITHUB_PERSONAL_ACCESS_TOKEN",),
        ),
        _specialist(
            "researcher",
            "ResearchBot",
            _RESEARCHER_INSTRUCTIONS,
            ("web_search",),
            model_tier="reasoning",
            description="Web research, fact-finding and analysis",
        ),
        _specialist(
            "secretary",
            "SecretaryBot",
            _SECRETARY_INSTRUCTIONS,
            ("calendar_list_events", "calendar_create_event", "gmail_search", "gmail_send"),
            model_tier="fast",
            description="Email, calendar, documents and scheduling",
            credentials=("GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET"),
        ),
        _specialist(
            "personality",
            "PersonalityBot",
            _PERSONALITY_INSTRUCTIONS,
            ("spotify_search", "spotify_play_pause", "spotify_now_playing", "spotify_add_to_queue"),
            model_tier="fast",
            description="Casual chat, creative writing and music control",
        ),
        _specialist(
            "home",
            "HomeBot",
            _HOME_INSTRUCTIONS,
            ("home_control_device", "home_get_state", "oura_sleep_summary"),
            model_tier="fast",
            description="Smart home devices, scenes and sleep data",
            credentials=("HASS_TOKEN", "HASS_URL"),
        ),
        _specialist(
            "finance",
            "FinanceAdvisor",
            _FINANCE_INSTRUCTIONS,
            ("finance_balance_sheet", "finance_spending_summary", "finance_upcoming_bills"),
            model_tier="standard",
            description="Budgeting, spending analysis and financial planning",
        ),
        _specialist(
            "imagegen",
            "ImageGen",
            _IMAGEGEN_INSTRUCTIONS,
            ("generate_image",),
            model_tier="standard",
            description="Image, chart and diagram generation",
        ),
    ]
    coordinator = CapabilityDefinition(
        id=COORDINATOR,
        display_name="Coordinator",
        instructions=_COORDINATOR_INSTRUCTIONS,
        tools=_DEFAULT_TOOLS + ("web_search",),
        model_tier="standard",
        handoff_targets=tuple(spec.id for spec in specialists),
        handoff_description="Routes requests to specialists and handles general queries",
    )
    return [coordinator, *specialists]


def build_default_registry() -> CapabilityRegistry:
    return CapabilityRegistry(default_capabilities())
