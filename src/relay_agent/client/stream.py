"""SSE transport for the client reducer."""

from __future__ import annotations

import codecs
import json
import logging
from typing import Any

import httpx

from relay_agent.client.reducer import ChatState, begin_turn, cancel_run, load_view, reduce
from relay_agent.client.run_cache import RunMetadataCache
from relay_agent.resilience.errors import classify_error, error_text
from relay_agent.runtime.events import ErrorEvent
from relay_agent.storage.threads import message_from_dict

logger = logging.getLogger(__name__)


class SSEDecoder:
    """Splits a text stream into `data:` frames, keeping partial frames buffered."""

    def __init__(self) -> None:
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")()

    def feed(self, chunk: str | bytes) -> list[dict[str, Any]]:
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer = (self._buffer + chunk).replace("\r\n", "\n")
        *frames, self._buffer = self._buffer.split("\n\n")
        payloads: list[dict[str, Any]] = []
        for frame in frames:
            payload = _decode_frame(frame)
            if payload is not None:
                payloads.append(payload)
        return payloads

    def flush(self) -> list[dict[str, Any]]:
        self._buffer = (self._buffer + self._decoder.decode(b"", final=True)).replace("\r\n", "\n")
        frame, self._buffer = self._buffer, ""
        payload = _decode_frame(frame)
        return [payload] if payload is not None else []


def _decode_frame(frame: str) -> dict[str, Any] | None:
    data = "\n".join(line[5:].lstrip() for line in frame.split("\n") if line.startswith("data:"))
    if not data:
        return None
    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        logger.debug("Skipping undecodable SSE frame: %r", data[:80])
        return None
    return payload if isinstance(payload, dict) else None


class StreamSession:
    """Owns one conversation view and the HTTP streaming loop that feeds it."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        user_id: str = "anonymous",
        cache: RunMetadataCache | None = None,
        state: ChatState | None = None,
    ) -> None:
        self.client = client
        self.user_id = user_id
        self.cache = cache
        self.state = state or ChatState()
        self._cancelled = False

    async def send(self, message: str, *, force_capability: str | None = None) -> ChatState:
        begin_turn(self.state, message)
        self._cancelled = False
        body: dict[str, Any] = {"message": message, "user_id": self.user_id, "thread_id": self.state.thread_id}
        if force_capability is not None:
            body["force_capability"] = force_capability

        decoder = SSEDecoder()
        try:
            async with self.client.stream("POST", "/chat/stream", json=body) as response:
                response.raise_for_status()
                async for chunk in response.aiter_text():
                    for payload in decoder.feed(chunk):
                        if self._cancelled:
                            return self.state
                        reduce(self.state, payload, cache=self.cache)
                    if self._cancelled:
                        return self.state
                for payload in decoder.flush():
                    reduce(self.state, payload, cache=self.cache)
        except httpx.HTTPError as exc:
            logger.error("Stream request failed: %s", exc)
            classification = classify_error(exc)
            reduce(
                self.state,
                ErrorEvent(
                    run_id=self.state.run_id,
                    message=error_text(exc),
                    code=classification.code.value,
                    recoverable=classification.recoverable,
                ),
                cache=self.cache,
            )
        return self.state

    def cancel(self) -> ChatState:
        self._cancelled = True
        return cancel_run(self.state, cache=self.cache)

    async def reload(self, thread_id: str) -> ChatState:
        response = await self.client.get(f"/threads/{thread_id}")
        response.raise_for_status()
        messages = [message_from_dict(item) for item in response.json()["messages"]]
        run_metadata = self.cache.load(thread_id) if self.cache is not None else None
        self.state = load_view(messages, thread_id=thread_id, run_metadata=run_metadata)
        return self.state
