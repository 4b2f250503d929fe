import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from src.server.session.dependencies import set_session_store
from src.server.session.store import SQLiteSessionStore


@pytest.fixture
def client(tmp_path):
    store = SQLiteSessionStore(str(tmp_path / "stream_api.db"))
    asyncio.run(store.init())
    set_session_store(store)

    from src.server.app import app

    with TestClient(app) as test_client:
        yield test_client

    asyncio.run(store.close())


def _parse_sse(body: str) -> list[tuple[str, dict]]:
    events = []
    for block in body.strip().split("\n\n"):
        lines = block.split("\n")
        event_type = lines[0].removeprefix("event: ")
        data = json.loads(lines[1].removeprefix("data: "))
        events.append((event_type, data))
    return events


def _tool_event(status, **fields):
    entry_type = "ToolCallResult" if status == "Success" else "ToolCallStart"
    return {"type": entry_type, "tool_call": {"tool_id": "call-1", "tool_name": "search", "status": status, **fields}}


def _start_conversation(client):
    session = client.post("/api/sessions", json={"initial_message": "Find EIP-7702 threads"}).json()["session"]
    return session["id"], session["messages"][0]["id"]


def test_stream_groups_and_persists_assistant_message(client: TestClient):
    session_id, question_id = _start_conversation(client)

    response = client.post(
        f"/api/sessions/{session_id}/stream",
        json={
            "parent_message_id": question_id,
            "model": "test-model",
            "events": [
                _tool_event("Starting", arguments='{"q": "7702"}'),
                _tool_event("Success", result="2 topics"),
                {"type": "Content", "content": "Hello "},
                {"type": "Content", "content": "world"},
            ],
        },
    )
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")

    events = _parse_sse(response.text)
    assert [event_type for event_type, _ in events] == ["groups"] * 5 + ["message"]

    # The open text buffer is already visible while streaming.
    assert events[2][1]["groups"][1] == {"type": "content", "index": 1, "content": "Hello ", "tool_call": None}

    final_groups = events[-2][1]["groups"]
    assert final_groups[0]["type"] == "tool"
    assert final_groups[0]["tool_call"] == {
        "tool_id": "call-1",
        "tool_name": "search",
        "arguments": '{"q": "7702"}',
        "result": "2 topics",
        "status": "Success",
    }
    assert final_groups[1] == {"type": "content", "index": 1, "content": "Hello world", "tool_call": None}

    message = events[-1][1]
    assert message["role"] == "assistant"
    assert message["content"] == "Hello world"
    assert message["parent_message_id"] == question_id
    assert message["path"] == {"root": question_id, question_id: message["id"]}

    detail = client.get(f"/api/sessions/{session_id}").json()
    assert detail["last_message_id"] == message["id"]
    stored = detail["messages"][-1]
    assert stored["model"] == "test-model"
    assert stored["tool_calls"][0]["status"] == "Success"


def test_stream_hides_open_buffer_when_disabled(client: TestClient, monkeypatch):
    monkeypatch.setenv("STREAM_EMIT_PROVISIONAL", "false")
    session_id, question_id = _start_conversation(client)

    response = client.post(
        f"/api/sessions/{session_id}/stream",
        json={"parent_message_id": question_id, "events": [{"type": "Content", "content": "partial"}]},
    )

    events = _parse_sse(response.text)
    assert events[0] == ("groups", {"session_id": session_id, "groups": []})
    assert events[1][1]["groups"][0]["content"] == "partial"


def test_stream_validates_session_and_parent(client: TestClient):
    response = client.post("/api/sessions/missing/stream", json={"events": []})
    assert response.status_code == 404

    session_id, _ = _start_conversation(client)
    response = client.post(
        f"/api/sessions/{session_id}/stream",
        json={"parent_message_id": "ghost", "events": []},
    )
    assert response.status_code == 400


def test_stream_failure_emits_error_event(client: TestClient, monkeypatch):
    session_id, question_id = _start_conversation(client)

    async def _broken_append(*args, **kwargs):
        raise RuntimeError("disk full")

    from src.server.session.dependencies import get_session_store

    store = get_session_store(None)
    monkeypatch.setattr(store, "append_message", _broken_append)

    response = client.post(
        f"/api/sessions/{session_id}/stream",
        json={"parent_message_id": question_id, "events": [{"type": "Content", "content": "hi"}]},
    )

    events = _parse_sse(response.text)
    assert events[-1][0] == "error"
    assert events[-1][1]["session_id"] == session_id
