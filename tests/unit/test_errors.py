from relay_agent.resilience.errors import (
    ErrorCode,
    MissingCredentialError,
    ValidationFailure,
    classify_error,
    recovery_suggestion,
    tool_error_payload,
    user_friendly_message,
)


def test_classify_error_codes_and_recoverability() -> None:
    cases = {
        "Request timed out after 30s": (ErrorCode.TIMEOUT, True),
        "connect ECONNREFUSED 127.0.0.1:8123": (ErrorCode.CONNECTION, True),
        "401 Unauthorized": (ErrorCode.AUTH, False),
        "429 Too Many Requests": (ErrorCode.RATE_LIMIT, True),
        "OPENWEATHER api key not configured": (ErrorCode.MISSING_CREDENTIAL, False),
        "Invalid timezone: Mars/Olympus": (ErrorCode.VALIDATION, False),
        "503 Service Unavailable": (ErrorCode.SERVER, True),
        "something odd happened": (ErrorCode.UNKNOWN, False),
    }
    for text, (code, recoverable) in cases.items():
        result = classify_error(RuntimeError(text))
        assert result.code is code, text
        assert result.recoverable is recoverable, text


def test_typed_errors_carry_their_code() -> None:
    assert classify_error(ValidationFailure("Message is required")).code is ErrorCode.VALIDATION
    assert classify_error(MissingCredentialError("x")).code is ErrorCode.MISSING_CREDENTIAL
    assert classify_error(TimeoutError()).code is ErrorCode.TIMEOUT
    assert classify_error(ConnectionResetError()).code is ErrorCode.CONNECTION


def test_user_facing_messages() -> None:
    assert "Spotify" in user_friendly_message("spotify_play_pause", "boom")
    assert user_friendly_message("get_weather", "boom").startswith("Weather data")
    assert user_friendly_message("web_search", "boom") == "The web search tool encountered an issue. Please try again."
    assert "rate limit" in recovery_suggestion("github_search_code", "429")
    assert "Home Assistant" in recovery_suggestion("home_control_device", "weird failure")


def test_tool_error_payload_shape() -> None:
    payload = tool_error_payload("calculate", ValueError("invalid expression"), include_technical=True)

    assert payload["success"] is False
    assert payload["error"]["code"] == "validation"
    assert payload["error"]["recoverable"] is False
    assert payload["error"]["technical"] == "invalid expression"
    assert "calculation" in payload["message"]
