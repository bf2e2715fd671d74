"""Built-in tools available to every capability."""

from __future__ import annotations

import ast
import math
import operator
import os
from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx
from pydantic import BaseModel, Field, model_validator

from relay_agent.agent.registry import ToolContext, ToolRegistry, ToolSpec
from relay_agent.resilience.errors import MissingCredentialError
from relay_agent.resilience.retry import execute_with_retry

_OPENWEATHER_URL = "https://api.openweathermap.org/data/2.5/weather"


class CurrentTimeInput(BaseModel):
    timezone: str = Field(default="UTC", min_length=1)


class CalculateInput(BaseModel):
    expression: str = Field(min_length=1, max_length=200)


class WeatherInput(BaseModel):
    location: str | None = None
    lat: float | None = None
    lon: float | None = None

    @model_validator(mode="after")
    def _require_location(self) -> "WeatherInput":
        if not self.location and (self.lat is None or self.lon is None):
            raise ValueError("Either location or both lat and lon must be provided")
        return self


_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
_UNARY_OPS = {ast.UAdd: operator.pos, ast.USub: operator.neg}
_FUNCTIONS = {
    "sqrt": math.sqrt,
    "log": math.log,
    "log10": math.log10,
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "abs": abs,
    "round": round,
}
_CONSTANTS = {"pi": math.pi, "e": math.e}


def safe_evaluate(expression: str) -> float:
    """Evaluate arithmetic without `eval`; only numbers, operators and math functions."""

    tree = ast.parse(expression.replace("^", "**"), mode="eval")

    def _eval(node: ast.AST) -> float:
        if isinstance(node, ast.Expression):
            return _eval(node.body)
        if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)):
            return node.value
        if isinstance(node, ast.Name) and node.id in _CONSTANTS:
            return _CONSTANTS[node.id]
        if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
            left, right = _eval(node.left), _eval(node.right)
            if isinstance(node.op, ast.Pow) and abs(right) > 100:
                raise ValueError("Exponent too large")
            return _BINARY_OPS[type(node.op)](left, right)
        if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
            return _UNARY_OPS[type(node.op)](_eval(node.operand))
        if (
            isinstance(node, ast.Call)
            and isinstance(node.func, ast.Name)
            and node.func.id in _FUNCTIONS
            and not node.keywords
        ):
            return _FUNCTIONS[node.func.id](*[_eval(arg) for arg in node.args])
        raise ValueError(f"Unsupported expression element: {type(node).__name__}")

    return _eval(tree)


def register_builtin_tools(
    registry: ToolRegistry,
    *,
    weather_api_key: str | None = None,
    http_client: httpx.Client | None = None,
) -> None:
    """Register the default tool set shared by all capabilities.

    Tools:
    - `get_current_time`: current date and time in a named timezone.
    - `calculate`: safe arithmetic evaluation.
    - `get_weather`: current conditions from OpenWeather when a key is configured.

    Integration tools (GitHub, Spotify, Google, Home Assistant, finance) are
    registered by their own packages against the same registry.
    """

    api_key = weather_api_key if weather_api_key is not None else os.getenv("OPENWEATHER_API_KEY")

    def _current_time(input_data: CurrentTimeInput, context: ToolContext | None) -> dict[str, Any]:
        del context
        try:
            zone = ZoneInfo(input_data.timezone)
        except ZoneInfoNotFoundError as exc:
            raise ValueError(f"Invalid timezone: {input_data.timezone}") from exc
        now = datetime.now(timezone.utc).astimezone(zone)
        return {"iso": now.isoformat(), "timezone": input_data.timezone, "weekday": now.strftime("%A")}

    def _calculate(input_data: CalculateInput, context: ToolContext | None) -> dict[str, Any]:
        del context
        return {"expression": input_data.expression, "result": safe_evaluate(input_data.expression)}

    def _weather(input_data: WeatherInput, context: ToolContext | None) -> dict[str, Any]:
        del context
        if not api_key:
            raise MissingCredentialError("Weather API key not configured")
        params: dict[str, Any] = {"appid": api_key, "units": "metric"}
        if input_data.location:
            params["q"] = input_data.location
        else:
            params["lat"], params["lon"] = input_data.lat, input_data.lon

        def _fetch() -> dict[str, Any]:
            client = http_client or httpx.Client(timeout=10.0)
            try:
                response = client.get(_OPENWEATHER_URL, params=params)
                response.raise_for_status()
                return response.json()
            finally:
                if http_client is None:
                    client.close()

        data = execute_with_retry(_fetch, max_retries=2, backoff_ms=500, max_backoff_ms=2000)
        weather = (data.get("weather") or [{}])[0]
        main = data.get("main", {})
        return {
            "location": data.get("name", input_data.location),
            "temp": main.get("temp"),
            "feels_like": main.get("feels_like"),
            "humidity": main.get("humidity"),
            "condition": weather.get("main", "Unknown"),
            "description": weather.get("description", "Unknown"),
        }

    registry.register(
        ToolSpec(
            name="get_current_time",
            description="Get the current date and time in a timezone.",
            args_schema=CurrentTimeInput,
            handler=_current_time,
            tags=["default"],
        )
    )
    registry.register(
        ToolSpec(
            name="calculate",
            description="Evaluate a mathematical expression safely (+, -, *, /, ^, sqrt, log, sin, cos).",
            args_schema=CalculateInput,
            handler=_calculate,
            tags=["default", "math"],
        )
    )
    registry.register(
        ToolSpec(
            name="get_weather",
            description="Get current weather for a city name or lat/lon coordinates.",
            args_schema=WeatherInput,
            handler=_weather,
            tags=["default", "weather"],
            timeout_seconds=10.0,
        )
    )
