"""Explicit-mention patterns and keyword tables for fast routing."""

from __future__ import annotations

import re
from dataclasses import dataclass

_VERB = r"\b(?:ask|have|let|get)\s+(?:the\s+)?"

# Ordered: first match wins.
EXPLICIT_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(_VERB + r"(?:coder|dev(?:bot)?|developer)\b", re.IGNORECASE), "coder"),
    (re.compile(r"@coder\b", re.IGNORECASE), "coder"),
    (re.compile(_VERB + r"(?:researcher|research(?:bot)?)\b", re.IGNORECASE), "researcher"),
    (re.compile(r"@researcher\b", re.IGNORECASE), "researcher"),
    (re.compile(_VERB + r"(?:secretary|secretarybot)\b", re.IGNORECASE), "secretary"),
    (re.compile(r"@secretary\b", re.IGNORECASE), "secretary"),
    (re.compile(_VERB + r"(?:personality(?:bot)?)\b", re.IGNORECASE), "personality"),
    (re.compile(r"@personality\b", re.IGNORECASE), "personality"),
    (re.compile(_VERB + r"(?:home(?:bot)?|smart\s*home)\b", re.IGNORECASE), "home"),
    (re.compile(r"@home\b", re.IGNORECASE), "home"),
    (re.compile(_VERB + r"(?:finance(?:\s*(?:bot|advisor))?)\b", re.IGNORECASE), "finance"),
    (re.compile(r"@finance\b", re.IGNORECASE), "finance"),
    (re.compile(_VERB + r"(?:imagegen|image\s*gen(?:erator)?)\b", re.IGNORECASE), "imagegen"),
    (re.compile(r"@imagegen\b", re.IGNORECASE), "imagegen"),
    (re.compile(_VERB + r"coordinator\b", re.IGNORECASE), "coordinator"),
    (re.compile(r"@coordinator\b", re.IGNORECASE), "coordinator"),
]


@dataclass(frozen=True, slots=True)
class KeywordTable:
    phrases: tuple[str, ...]
    words: tuple[str, ...]


KEYWORD_TABLES: dict[str, KeywordTable] = {
    "coder": KeywordTable(
        phrases=(
            "code review", "pull request", "bug fix", "debug this", "fix the bug",
            "implement feature", "write code", "refactor", "git commit", "git push",
            "create branch", "merge request", "code change", "review this code",
            "review my code", "this code",
        ),
        words=(
            "code", "coding", "debug", "debugging", "github", "pr", "repo", "repository",
            "bug", "bugs", "error", "exception", "function", "class", "sql", "database",
            "api", "endpoint", "commit", "merge", "branch", "implement", "typescript",
            "javascript", "python", "query", "review",
        ),
    ),
    "researcher": KeywordTable(
        phrases=(
            "search for", "find out", "look up", "research about", "tell me about",
            "what is", "how does", "latest news", "current events", "the latest",
            "search the",
        ),
        words=(
            "search", "find", "research", "news", "latest", "current", "article",
            "source", "reference", "information", "wikipedia", "define", "compare",
            "explain", "papers",
        ),
    ),
    "secretary": KeywordTable(
        phrases=(
            "schedule meeting", "send email", "check calendar", "book appointment",
            "create event", "reschedule", "cancel meeting", "email draft", "gmail",
            "google drive", "youtube video", "search youtube", "send an email",
            "schedule a meeting",
        ),
        words=(
            "calendar", "schedule", "email", "meeting", "appointment", "remind",
            "task", "event", "invite", "agenda", "availability", "youtube", "video",
        ),
    ),
    "personality": KeywordTable(
        phrases=(
            "play music", "play song", "spotify", "now playing", "what is playing",
            "next song", "previous song", "turn up", "turn down", "add to queue",
            "how are you", "tell me a joke", "chat with me", "play some music",
            "some music", "a joke", "funny joke",
        ),
        words=(
            "music", "song", "play", "jazz", "playlist", "album", "artist", "spotify",
            "queue", "volume", "skip", "pause", "playing", "track", "listen", "hello",
            "hi", "hey", "thanks", "joke", "funny", "story", "chat", "talk", "opinion",
        ),
    ),
    "home": KeywordTable(
        phrases=(
            "turn on", "turn off", "set temperature", "dim lights", "smart home",
            "activate scene", "lock door", "unlock door", "adjust thermostat",
            "the lights", "living room", "how did i sleep", "sleep score",
            "readiness score", "oura ring", "sleep last night", "sleep quality",
        ),
        words=(
            "light", "lights", "lamp", "thermostat", "temperature", "lock", "door",
            "blinds", "fan", "hvac", "scene", "automation", "device", "sensor",
            "climate", "brightness", "dim", "switch", "degrees", "sleep", "oura",
            "readiness", "hrv",
        ),
    ),
    "finance": KeywordTable(
        phrases=(
            "check balance", "spending summary", "budget analysis", "net worth",
            "can i afford", "upcoming bills", "subscription audit", "expense report",
            "my budget", "my spending", "monthly budget", "how much",
        ),
        words=(
            "money", "finance", "budget", "spending", "expense", "income", "save",
            "savings", "invest", "investment", "stock", "portfolio", "balance",
            "transaction", "bill", "bills", "payment", "subscription", "afford", "cost",
            "price", "bank", "credit", "debt", "loan", "wealth", "monthly",
        ),
    ),
    "imagegen": KeywordTable(
        phrases=(
            "generate image", "create image", "make image", "draw me", "create picture",
            "generate picture", "create diagram", "make diagram", "draw diagram",
            "create chart", "pie chart", "bar chart", "analyze image", "describe image",
            "generate an image", "create a diagram", "make a pie chart",
        ),
        words=(
            "image", "picture", "photo", "visual", "graphic", "artwork", "drawing",
            "visualize", "illustration", "infographic", "mockup", "sketch", "render",
            "diagram", "graph", "chart", "flowchart",
        ),
    ),
}

_PUNCTUATION = ".,!?;:\"'()[]{}"


def tokenize(message: str) -> list[str]:
    """Lowercased whitespace tokens with surrounding punctuation stripped."""
    return [token.strip(_PUNCTUATION) for token in message.lower().split() if token.strip(_PUNCTUATION)]
