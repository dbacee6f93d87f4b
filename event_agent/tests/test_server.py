import tempfile
from pathlib import Path

from fastapi.testclient import TestClient

from event_agent.agents.orchestrator import AgentOrchestrator
from event_agent.api.server import create_app
from event_agent.api.sse import iter_agent_events
from event_agent.infrastructure.storage.json_store import JsonConversationStore
from event_agent.tests.fakes import FakeQuota, ScriptedProvider, create_round, event_handlers, search_round
from event_agent.tools.catalog import default_tool_defs
from event_agent.tools.executor import ToolExecutor


def _app(root, provider, quota=None, log=None):
    store = JsonConversationStore(root=Path(root) / ".storage")
    orchestrator = AgentOrchestrator(
        store=store,
        provider=provider,
        tool_executor=ToolExecutor(event_handlers(log if log is not None else []), default_tool_defs()),
        quota=quota or FakeQuota(),
    )
    return TestClient(create_app(orchestrator, store)), orchestrator


def _events(response):
    return list(iter_agent_events(response))


def _new_conversation(client):
    resp = client.post("/api/conversations", json={"userId": "user-1", "context": {"source": "test"}})
    assert resp.status_code == 200
    return resp.json()["id"]


def test_create_conversation():
    with tempfile.TemporaryDirectory() as d:
        client, _ = _app(d, ScriptedProvider())
        resp = client.post("/api/conversations", json={"userId": "user-1"})

        body = resp.json()
        assert resp.status_code == 200
        assert body["id"].startswith("c-")
        assert body["userId"] == "user-1"
        assert body["status"] == "active"


def test_chat_stream_emits_event_sequence():
    with tempfile.TemporaryDirectory() as d:
        client, orchestrator = _app(d, ScriptedProvider(search_round(), []))
        conv_id = _new_conversation(client)

        resp = client.post("/api/chat/stream", json={"conversationId": conv_id, "userMessage": "find catering"})

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        events = _events(resp)
        assert [e.name for e in events if e.name not in ("thinking", "text")] == ["tool_start", "tool_result", "done"]
        assert events[-1].payload["turnId"] == 1
        assert not orchestrator.is_busy(conv_id)


def test_precondition_errors_are_json():
    with tempfile.TemporaryDirectory() as d:
        client, _ = _app(d, ScriptedProvider(), quota=FakeQuota(remaining=0))
        conv_id = _new_conversation(client)

        quota_resp = client.post("/api/chat/stream", json={"conversationId": conv_id, "userMessage": "hi"})
        assert quota_resp.status_code == 429
        assert quota_resp.json()["error"] == "QUOTA_EXCEEDED"
        assert quota_resp.json()["retryAfter"] == "2030-01-02T00:00:00Z"

        missing = client.post("/api/chat/stream", json={"conversationId": "c-nope", "userMessage": "hi"})
        assert missing.status_code == 404

        invalid = client.post("/api/chat/stream", json={"conversationId": conv_id})
        assert invalid.status_code == 422


def test_busy_conversation_is_rejected():
    with tempfile.TemporaryDirectory() as d:
        client, orchestrator = _app(d, ScriptedProvider())
        conv_id = _new_conversation(client)

        turn = orchestrator.chat(conv_id, "in progress")
        resp = client.post("/api/chat/stream", json={"conversationId": conv_id, "userMessage": "again"})
        turn.close()

        assert resp.status_code == 409
        assert resp.json()["error"] == "CONVERSATION_BUSY"


def test_confirm_flow():
    with tempfile.TemporaryDirectory() as d:
        log = []
        client, _ = _app(d, ScriptedProvider(create_round()), log=log)
        conv_id = _new_conversation(client)

        events = _events(client.post("/api/chat/stream", json={"conversationId": conv_id, "userMessage": "create"}))
        pending = events[-1].payload["pendingConfirmations"][0]
        assert log == []

        body = {
            "conversationId": conv_id,
            "toolCallId": pending["id"],
            "toolName": pending["name"],
            "arguments": pending["arguments"],
        }
        confirm = client.post("/api/chat/confirm", json=body)
        confirm_events = _events(confirm)

        assert [e.name for e in confirm_events] == ["tool_result", "done"]
        assert confirm_events[0].payload["success"] is True
        assert confirm_events[1].payload["isComplete"] is True
        assert confirm_events[1].payload["entityId"] == "evt_1"

        again = client.post("/api/chat/confirm", json=body)
        assert again.status_code == 409
        assert again.json()["error"] == "ALREADY_RESOLVED"

        unknown = client.post("/api/chat/confirm", json={**body, "toolCallId": "call_other"})
        assert unknown.status_code == 404
        assert len(log) == 1


def test_abandon_conversation():
    with tempfile.TemporaryDirectory() as d:
        client, _ = _app(d, ScriptedProvider())
        conv_id = _new_conversation(client)

        resp = client.post(f"/api/conversations/{conv_id}/abandon")
        assert resp.json()["status"] == "abandoned"

        rejected = client.post("/api/chat/stream", json={"conversationId": conv_id, "userMessage": "hi"})
        assert rejected.status_code == 409
