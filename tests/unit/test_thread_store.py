import pytest

from relay_agent.storage.threads import InMemoryThreadStore, SqliteThreadStore, message_from_dict, message_to_dict
from relay_agent.types import ChatMessage, HandoffInfo, RunMetadata, RunState, ToolExecution, utc_now


def _assistant_message(thread_id: str) -> ChatMessage:
    now = utc_now()
    return ChatMessage(
        id="msg_1",
        role="assistant",
        content="Done.",
        thread_id=thread_id,
        capability="coder",
        tool_executions=[
            ToolExecution(id="t1", tool="calculate", args={"expression": "1+1"}, status="completed", result={"result": 2}, end_time=now, duration_ms=3.5)
        ],
        run=RunMetadata(run_id="run_1", state=RunState.DONE, started_at=now, updated_at=now, ended_at=now),
        handoff=HandoffInfo(from_capability="coordinator", to_capability="coder", reason="code"),
    )


@pytest.mark.parametrize("kind", ["memory", "sqlite"])
def test_thread_store_round_trip(kind: str, tmp_path) -> None:
    store = InMemoryThreadStore() if kind == "memory" else SqliteThreadStore(tmp_path / "threads.db")
    thread_id = store.create_thread("user-1")
    assert store.get_messages(thread_id) == []

    store.append_message(ChatMessage(id="u1", role="user", content="hi", thread_id=thread_id))
    store.append_message(_assistant_message(thread_id))

    user, assistant = store.get_messages(thread_id)
    assert user.content == "hi"
    assert assistant.capability == "coder"
    assert assistant.run is not None and assistant.run.state is RunState.DONE
    assert assistant.tool_executions[0].duration_ms == 3.5
    assert assistant.handoff is not None and assistant.handoff.to_capability == "coder"


@pytest.mark.parametrize("kind", ["memory", "sqlite"])
def test_unknown_thread_raises_key_error(kind: str, tmp_path) -> None:
    store = InMemoryThreadStore() if kind == "memory" else SqliteThreadStore(tmp_path / "threads.db")
    with pytest.raises(KeyError):
        store.get_messages("thread_missing")


def test_message_dict_round_trip() -> None:
    original = _assistant_message("thread_1")
    restored = message_from_dict(message_to_dict(original))

    assert restored.id == original.id
    assert restored.run == original.run
    assert restored.tool_executions[0].result == {"result": 2}
