"""Thread and message persistence boundary."""

from __future__ import annotations

import json
import sqlite3
import threading
import uuid
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from relay_agent.types import ChatMessage, HandoffInfo, RunMetadata, ToolExecution


class ThreadStore(Protocol):
    def create_thread(self, user_id: str | None = None) -> str: ...

    def get_messages(self, thread_id: str) -> list[ChatMessage]: ...

    def append_message(self, message: ChatMessage) -> None: ...


def new_thread_id() -> str:
    return f"thread_{uuid.uuid4().hex}"


class InMemoryThreadStore:
    """Process-local store used by tests and single-process deployments."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._threads: dict[str, list[ChatMessage]] = {}

    def create_thread(self, user_id: str | None = None) -> str:
        del user_id
        thread_id = new_thread_id()
        with self._lock:
            self._threads[thread_id] = []
        return thread_id

    def get_messages(self, thread_id: str) -> list[ChatMessage]:
        with self._lock:
            if thread_id not in self._threads:
                raise KeyError(f"Thread not found: {thread_id}")
            return list(self._threads[thread_id])

    def append_message(self, message: ChatMessage) -> None:
        if message.thread_id is None:
            raise ValueError("Message has no thread_id")
        with self._lock:
            self._threads.setdefault(message.thread_id, []).append(message)


class SqliteThreadStore:
    """SQLite-backed store; tool executions and run metadata live in JSON columns."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS threads (id TEXT PRIMARY KEY, user_id TEXT, created_at TEXT NOT NULL)"
            )
            conn.execute(
                "CREATE TABLE IF NOT EXISTS messages ("
                "id TEXT PRIMARY KEY, thread_id TEXT NOT NULL, role TEXT NOT NULL, content TEXT NOT NULL, "
                "capability TEXT, tool_executions TEXT NOT NULL, run TEXT, handoff TEXT, created_at TEXT NOT NULL)"
            )
            conn.commit()

    def create_thread(self, user_id: str | None = None) -> str:
        thread_id = new_thread_id()
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                "INSERT INTO threads(id, user_id, created_at) VALUES(?, ?, ?)",
                (thread_id, user_id, datetime.now().astimezone().isoformat()),
            )
            conn.commit()
        return thread_id

    def get_messages(self, thread_id: str) -> list[ChatMessage]:
        with sqlite3.connect(self.db_path) as conn:
            if conn.execute("SELECT 1 FROM threads WHERE id = ?", (thread_id,)).fetchone() is None:
                raise KeyError(f"Thread not found: {thread_id}")
            rows = conn.execute(
                "SELECT id, role, content, capability, tool_executions, run, handoff, created_at "
                "FROM messages WHERE thread_id = ? ORDER BY rowid",
                (thread_id,),
            ).fetchall()
        return [_row_to_message(thread_id, row) for row in rows]

    def append_message(self, message: ChatMessage) -> None:
        if message.thread_id is None:
            raise ValueError("Message has no thread_id")
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                "INSERT OR IGNORE INTO threads(id, user_id, created_at) VALUES(?, NULL, ?)",
                (message.thread_id, message.created_at.isoformat()),
            )
            conn.execute(
                "INSERT INTO messages(id, thread_id, role, content, capability, tool_executions, run, handoff, created_at) "
                "VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    message.id,
                    message.thread_id,
                    message.role,
                    message.content,
                    message.capability,
                    json.dumps([_tool_to_dict(t) for t in message.tool_executions], default=str),
                    json.dumps(message.run.to_dict()) if message.run else None,
                    json.dumps(_handoff_to_dict(message.handoff)) if message.handoff else None,
                    message.created_at.isoformat(),
                ),
            )
            conn.commit()


def _tool_to_dict(tool: ToolExecution) -> dict[str, Any]:
    data = asdict(tool)
    data["start_time"] = tool.start_time.isoformat()
    data["end_time"] = tool.end_time.isoformat() if tool.end_time else None
    return data


def _tool_from_dict(data: dict[str, Any]) -> ToolExecution:
    return ToolExecution(
        id=data["id"],
        tool=data["tool"],
        args=data.get("args") or {},
        status=data.get("status", "completed"),
        result=data.get("result"),
        start_time=datetime.fromisoformat(data["start_time"]),
        end_time=datetime.fromisoformat(data["end_time"]) if data.get("end_time") else None,
        duration_ms=data.get("duration_ms"),
    )


def _handoff_to_dict(handoff: HandoffInfo) -> dict[str, Any]:
    return {
        "from_capability": handoff.from_capability,
        "to_capability": handoff.to_capability,
        "reason": handoff.reason,
        "timestamp": handoff.timestamp.isoformat(),
    }


def _row_to_message(thread_id: str, row: tuple[Any, ...]) -> ChatMessage:
    message_id, role, content, capability, tools_json, run_json, handoff_json, created_at = row
    return message_from_dict(
        {
            "id": message_id,
            "role": role,
            "content": content,
            "thread_id": thread_id,
            "capability": capability,
            "tool_executions": json.loads(tools_json),
            "run": json.loads(run_json) if run_json else None,
            "handoff": json.loads(handoff_json) if handoff_json else None,
            "created_at": created_at,
        }
    )


def message_to_dict(message: ChatMessage) -> dict[str, Any]:
    """JSON-ready view of a message, as served by the thread endpoint."""

    return {
        "id": message.id,
        "role": message.role,
        "content": message.content,
        "thread_id": message.thread_id,
        "capability": message.capability,
        "tool_executions": [_tool_to_dict(tool) for tool in message.tool_executions],
        "run": message.run.to_dict() if message.run else None,
        "handoff": _handoff_to_dict(message.handoff) if message.handoff else None,
        "created_at": message.created_at.isoformat(),
    }


def message_from_dict(data: dict[str, Any]) -> ChatMessage:
    handoff = data.get("handoff")
    return ChatMessage(
        id=data["id"],
        role=data["role"],
        content=data.get("content", ""),
        thread_id=data.get("thread_id"),
        capability=data.get("capability"),
        tool_executions=[_tool_from_dict(item) for item in data.get("tool_executions") or []],
        run=RunMetadata.from_dict(data["run"]) if data.get("run") else None,
        handoff=(
            HandoffInfo(
                from_capability=handoff["from_capability"],
                to_capability=handoff["to_capability"],
                reason=handoff.get("reason", ""),
                timestamp=datetime.fromisoformat(handoff["timestamp"]),
            )
            if handoff
            else None
        ),
        created_at=datetime.fromisoformat(data["created_at"]),
    )
