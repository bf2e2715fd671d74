"""Error taxonomy shared by routing, tool execution and the run lifecycle.

All string matching on raw error text lives in `classify_error` so the rules
can be swapped for typed codes once upstream providers expose them.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    TIMEOUT = "timeout"
    CONNECTION = "connection"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    VALIDATION = "validation"
    MISSING_CREDENTIAL = "missing_credential"
    SERVER = "server"
    UNKNOWN = "unknown"


_RECOVERABLE = {
    ErrorCode.TIMEOUT: True,
    ErrorCode.CONNECTION: True,
    ErrorCode.AUTH: False,
    ErrorCode.RATE_LIMIT: True,
    ErrorCode.VALIDATION: False,
    ErrorCode.MISSING_CREDENTIAL: False,
    ErrorCode.SERVER: True,
    ErrorCode.UNKNOWN: False,
}


@dataclass(frozen=True, slots=True)
class ErrorClassification:
    code: ErrorCode
    recoverable: bool


class RelayError(Exception):
    """Base error carrying its own classification."""

    code = ErrorCode.UNKNOWN

    def classification(self) -> ErrorClassification:
        return ErrorClassification(self.code, _RECOVERABLE[self.code])


class ValidationFailure(RelayError):
    code = ErrorCode.VALIDATION


class MissingCredentialError(RelayError):
    code = ErrorCode.MISSING_CREDENTIAL


# Ordered: first matching rule wins.
_RULES: list[tuple[ErrorCode, tuple[str, ...]]] = [
    (ErrorCode.TIMEOUT, ("timed out", "timeout")),
    (
        ErrorCode.CONNECTION,
        ("econnrefused", "econnreset", "connection refused", "connection reset", "failed to fetch", "connection error"),
    ),
    (ErrorCode.AUTH, ("401", "403", "unauthorized", "forbidden")),
    (ErrorCode.RATE_LIMIT, ("429", "rate limit", "too many requests")),
    (ErrorCode.MISSING_CREDENTIAL, ("api key", "missing_api_key", "not configured", "missing credential")),
    (ErrorCode.VALIDATION, ("validation", "invalid")),
    (ErrorCode.SERVER, ("500", "502", "503", "internal server error", "bad gateway", "service unavailable")),
]


def error_text(error: BaseException | str) -> str:
    if isinstance(error, BaseException):
        return str(error) or error.__class__.__name__
    return str(error)


def classify_error(error: BaseException | str) -> ErrorClassification:
    """Map a raw failure to a taxonomy code and recoverability flag."""

    if isinstance(error, RelayError):
        return error.classification()
    if isinstance(error, TimeoutError):
        return ErrorClassification(ErrorCode.TIMEOUT, True)
    if isinstance(error, ConnectionError):
        return ErrorClassification(ErrorCode.CONNECTION, True)

    lowered = error_text(error).lower()
    for code, needles in _RULES:
        if any(needle in lowered for needle in needles):
            return ErrorClassification(code, _RECOVERABLE[code])
    return ErrorClassification(ErrorCode.UNKNOWN, False)


_FRIENDLY_BY_TOOL = {
    "spotify": "I couldn't connect to Spotify. Make sure a Spotify session is active on one of your devices.",
    "github": "GitHub isn't responding right now. The API might be temporarily unavailable.",
    "calendar": "I couldn't access your calendar. You may need to re-authorize Google access.",
    "gmail": "I couldn't access your email. Please check your Google authorization.",
    "home": "Home Assistant isn't reachable. Check if your smart home hub is online.",
    "weather": "Weather data isn't available right now. Please try again shortly.",
    "oura": "I couldn't fetch your Oura Ring data. Check that your Oura token is configured.",
    "finance": "I couldn't access your financial data. Please check your finance integration settings.",
    "calculate": "The calculation couldn't be completed. Please check the expression and try again.",
}

_SUGGESTION_BY_CODE = {
    ErrorCode.AUTH: "Try re-authenticating or check your API credentials in settings.",
    ErrorCode.RATE_LIMIT: "You've hit a rate limit. Please wait a moment and try again.",
    ErrorCode.TIMEOUT: "The service is responding slowly. Check your connection and try again.",
    ErrorCode.CONNECTION: "Cannot reach the service. Check if it is running and accessible.",
    ErrorCode.MISSING_CREDENTIAL: "This integration needs an API key. Check your settings to configure it.",
    ErrorCode.SERVER: "The service had an internal error. Try again in a moment.",
}


def user_friendly_message(tool_name: str, error: BaseException | str) -> str:
    del error  # message depends on the integration only.
    lowered = tool_name.lower()
    return next(
        (message for key, message in _FRIENDLY_BY_TOOL.items() if key in lowered),
        f"The {tool_name.replace('_', ' ')} tool encountered an issue. Please try again.",
    )


def recovery_suggestion(tool_name: str, error: BaseException | str) -> str:
    classification = classify_error(error)
    suggestion = _SUGGESTION_BY_CODE.get(classification.code)
    if suggestion:
        return suggestion
    if tool_name.startswith("spotify"):
        return "Make sure Spotify is open on one of your devices."
    if tool_name.startswith("home"):
        return "Check that Home Assistant is running and accessible on your network."
    return "Please try again in a few moments. If the issue persists, check your settings."


def tool_error_payload(tool_name: str, error: BaseException | str, *, include_technical: bool = False) -> dict[str, Any]:
    """Structured, JSON-serializable description of a tool failure."""

    classification = classify_error(error)
    payload: dict[str, Any] = {
        "success": False,
        "message": user_friendly_message(tool_name, error),
        "error": {
            "code": classification.code.value,
            "recoverable": classification.recoverable,
            "suggestion": recovery_suggestion(tool_name, error),
        },
    }
    if include_technical:
        payload["error"]["technical"] = error_text(error)
    return payload
