"""Input checks applied before a run is started."""

from __future__ import annotations

import re

from relay_agent.config import ValidationConfig
from relay_agent.resilience.errors import ValidationFailure

_INJECTION_PATTERNS = [
    re.compile(r"ignore\s+(?:all\s+)?(?:the\s+)?(?:previous|prior|above)\s+(?:instructions|prompts?|rules)", re.IGNORECASE),
    re.compile(r"disregard\s+(?:all\s+)?(?:your|the)\s+(?:instructions|system\s+prompt|rules)", re.IGNORECASE),
    re.compile(r"(?:reveal|print|show)\s+(?:me\s+)?(?:your|the)\s+system\s+prompt", re.IGNORECASE),
    re.compile(r"you\s+are\s+now\s+in\s+(?:developer|dan|jailbreak)\s+mode", re.IGNORECASE),
    re.compile(r"<\s*/?\s*system\s*>", re.IGNORECASE),
]


def validate_message(message: str, config: ValidationConfig | None = None) -> str:
    """Return the stripped message or raise `ValidationFailure`."""

    config = config or ValidationConfig()
    text = (message or "").strip()
    if not text:
        raise ValidationFailure("Message is required")
    if len(text) > config.max_message_length:
        raise ValidationFailure(
            f"Message is too long ({len(text)} characters, limit {config.max_message_length})"
        )
    if config.reject_injection and any(pattern.search(text) for pattern in _INJECTION_PATTERNS):
        raise ValidationFailure("Message rejected by input safety checks")
    return text
