"""Configuration models for the relay system."""

from __future__ import annotations

import os

from pydantic import BaseModel, Field


class RouterConfig(BaseModel):
    """Configures the three routing tiers and their thresholds."""

    keyword_min_score: int = Field(default=2, ge=1)
    keyword_skip_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    model_timeout_seconds: float = Field(default=15.0, gt=0.0)
    model_max_retries: int = Field(default=3, ge=0)
    agreement_boost: float = Field(default=0.1, ge=0.0, le=1.0)


class RetryConfig(BaseModel):
    """Configures exponential backoff for transient failures."""

    max_retries: int = Field(default=3, ge=0)
    backoff_ms: float = Field(default=1000.0, ge=0.0)
    max_backoff_ms: float = Field(default=10000.0, ge=0.0)


class ValidationConfig(BaseModel):
    """Configures input checks applied before a run starts."""

    max_message_length: int = Field(default=4000, ge=1)
    reject_injection: bool = True


class RunConfig(BaseModel):
    """Configures run execution limits."""

    max_turns: int = Field(default=10, ge=1)
    max_handoffs: int = Field(default=3, ge=0)
    tool_timeout_seconds: float = Field(default=30.0, gt=0.0)
    history_limit: int = Field(default=20, ge=0)
    show_tool_executions: bool = True
    enforce_credentials: bool = False


class Settings(BaseModel):
    """Process-level settings assembled from the environment."""

    openai_api_key: str | None = None
    router_model: str = "gpt-4o-mini"
    model_fast: str = "gpt-4o-mini"
    model_standard: str = "gpt-4o"
    model_reasoning: str = "o3-mini"
    db_path: str | None = None
    run_cache_dir: str = ".relay_runs"
    router: RouterConfig = Field(default_factory=RouterConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    run: RunConfig = Field(default_factory=RunConfig)

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            router_model=os.getenv("RELAY_ROUTER_MODEL", defaults.router_model),
            model_fast=os.getenv("RELAY_MODEL_FAST", defaults.model_fast),
            model_standard=os.getenv("RELAY_MODEL_STANDARD", defaults.model_standard),
            model_reasoning=os.getenv("RELAY_MODEL_REASONING", defaults.model_reasoning),
            db_path=os.getenv("RELAY_DB_PATH") or None,
            run_cache_dir=os.getenv("RELAY_RUN_CACHE_DIR", defaults.run_cache_dir),
        )

    def model_for_tier(self, tier: str) -> str:
        return {
            "fast": self.model_fast,
            "standard": self.model_standard,
            "reasoning": self.model_reasoning,
        }.get(tier, self.model_standard)
