import json
import tempfile
from pathlib import Path

import httpx
from fastapi.testclient import TestClient

from event_agent.agents.orchestrator import AgentOrchestrator
from event_agent.api.server import create_app
from event_agent.client.consumer import StreamingChatClient
from event_agent.domain.exceptions import AuthenticationFailed
from event_agent.domain.models import DoneChunk, TextChunk, ToolCallStartChunk
from event_agent.infrastructure.storage.json_store import JsonConversationStore
from event_agent.tests.fakes import FakeQuota, ScriptedProvider, create_round, event_handlers, search_round
from event_agent.tools.catalog import default_tool_defs
from event_agent.tools.executor import ToolExecutor


def _client(root, provider, quota=None, log=None, on_event=None):
    store = JsonConversationStore(root=Path(root) / ".storage")
    orchestrator = AgentOrchestrator(
        store=store,
        provider=provider,
        tool_executor=ToolExecutor(event_handlers(log if log is not None else []), default_tool_defs()),
        quota=quota or FakeQuota(),
    )
    http = TestClient(create_app(orchestrator, store))
    conv = store.create_conversation("user-1", {})
    return StreamingChatClient("http://testserver", conv.id, http_client=http, on_event=on_event)


SSE_CONTENT_TYPE = {"content-type": "text/event-stream"}


def _frames(*events):
    return b"".join(
        f"event: {name}\ndata: {json.dumps(payload)}\n\n".encode("utf-8") for name, payload in events
    )


def _mock_client(handler, on_event=None):
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return StreamingChatClient("http://agent.local", "c-1", http_client=http, on_event=on_event)


def test_send_applies_events_incrementally():
    with tempfile.TemporaryDirectory() as d:
        seen = []
        client = _client(d, ScriptedProvider(search_round(), []), on_event=lambda e, s: seen.append(e.name))

        state = client.send("find catering")

        assert state.status == "done"
        assert state.text == "Let me look that up."
        assert [r.name for r in state.tool_results] == ["searchVendors"]
        assert state.turn_id == 1
        assert state.rate_limit == {"remaining": 4, "limit": 5}
        assert state.optimistic_message is None
        assert seen[-1] == "done"
        assert "tool_start" in seen


def test_blank_message_is_ignored():
    with tempfile.TemporaryDirectory() as d:
        client = _client(d, ScriptedProvider())
        assert client.send("   ").status == "idle"


def test_confirm_tool_completes_entity():
    with tempfile.TemporaryDirectory() as d:
        log = []
        client = _client(d, ScriptedProvider(create_round()), log=log)

        state = client.send("create the event")
        assert state.status == "awaiting_confirmation"
        assert state.pending_confirmation.id == "call_c"
        assert log == []

        state = client.confirm_tool()

        assert state.status == "done"
        assert state.is_complete is True
        assert state.entity_id == "evt_1"
        assert state.pending_confirmation is None
        assert log[0][1]["expectedAttendees"] == 200


def test_pending_calls_are_exposed_one_at_a_time():
    two_gated = [
        ToolCallStartChunk(index=0, id="call_c", name="createEvent", arguments='{"title": "A"}'),
        ToolCallStartChunk(index=1, id="call_v", name="addVendorToEvent", arguments='{"vendorId": "v1"}'),
        DoneChunk(finish_reason="tool_calls"),
    ]
    with tempfile.TemporaryDirectory() as d:
        client = _client(d, ScriptedProvider(two_gated))

        state = client.send("set it up")
        assert state.pending_confirmation.id == "call_c"
        assert [c.id for c in state.queued_confirmations] == ["call_v"]

        state = client.cancel_tool()
        assert state.pending_confirmation.id == "call_v"
        assert state.status == "awaiting_confirmation"

        state = client.cancel_tool()
        assert state.pending_confirmation is None
        assert state.status == "done"


def test_confirming_first_call_surfaces_the_next():
    two_gated = [
        ToolCallStartChunk(index=0, id="call_c", name="createEvent", arguments='{"title": "A"}'),
        ToolCallStartChunk(index=1, id="call_v", name="addVendorToEvent", arguments='{"vendorId": "v1"}'),
        DoneChunk(finish_reason="tool_calls"),
    ]
    with tempfile.TemporaryDirectory() as d:
        client = _client(d, ScriptedProvider(two_gated))
        client.send("set it up")

        state = client.confirm_tool()

        assert state.status == "awaiting_confirmation"
        assert state.pending_confirmation.id == "call_v"
        assert state.queued_confirmations == []


def test_error_then_retry():
    with tempfile.TemporaryDirectory() as d:
        provider = ScriptedProvider(AuthenticationFailed(), [TextChunk(content="ok"), DoneChunk(finish_reason="stop")])
        client = _client(d, provider)

        state = client.send("hello")
        assert state.status == "error"
        assert "authentication" in state.error

        state = client.retry()
        assert state.status == "done"
        assert state.text == "ok"
        assert state.turn_id == 2


def test_http_error_reports_retry_after():
    with tempfile.TemporaryDirectory() as d:
        client = _client(d, ScriptedProvider(), quota=FakeQuota(remaining=0))

        state = client.send("hello")

        assert state.status == "error"
        assert state.error.startswith("You've used all 5 AI prompts")
        assert state.retry_after == "2030-01-02T00:00:00Z"


def test_stream_without_terminal_event_is_an_error():
    def handler(request):
        return httpx.Response(200, headers=SSE_CONTENT_TYPE, content=_frames(("text", {"content": "partial"})))

    client = _mock_client(handler)
    state = client.send("hello")

    assert state.status == "error"
    assert state.error == "Stream ended before completion"
    assert state.text == "partial"


def test_frames_split_across_chunks():
    body = _frames(("text", {"content": "héllo"}), ("done", {"message": "héllo", "isComplete": False, "turnId": 3}))

    def handler(request):
        assert json.loads(request.content) == {"conversationId": "c-1", "userMessage": "hi"}
        return httpx.Response(200, headers=SSE_CONTENT_TYPE, content=iter([body[:7], body[7:23], body[23:]]))

    state = _mock_client(handler).send("hi")

    assert state.status == "done"
    assert state.text == "héllo"
    assert state.turn_id == 3


def test_abort_discards_partial_text():
    body = _frames(
        ("text", {"content": "one"}),
        ("text", {"content": "two"}),
        ("done", {"message": "onetwo", "isComplete": False}),
    )

    def handler(request):
        return httpx.Response(200, headers=SSE_CONTENT_TYPE, content=iter([body]))

    holder = {}

    def on_event(event, state):
        if event.name == "text":
            holder["client"].abort()

    client = _mock_client(handler, on_event=on_event)
    holder["client"] = client
    state = client.send("hi")

    assert state.status == "idle"
    assert state.text == ""


def test_reconcile_drops_optimistic_message():
    def handler(request):
        return httpx.Response(200, headers=SSE_CONTENT_TYPE, content=b"")

    client = _mock_client(handler)
    client.send("lost message")
    assert client.state.optimistic_message == "lost message"

    assert client.reconcile(0) is False
    assert client.reconcile(4) is True
    assert client.state.turn_id == 4
    assert client.state.optimistic_message is None


def test_reset_clears_state():
    def handler(request):
        return httpx.Response(200, headers=SSE_CONTENT_TYPE, content=_frames(("done", {"message": "", "isComplete": True, "entityId": "e"})))

    client = _mock_client(handler)
    client.send("hi")
    assert client.state.entity_id == "e"

    client.reset()
    assert client.state.status == "idle"
    assert client.state.entity_id is None


def test_malformed_event_payload_fails_the_request():
    requests = []

    def handler(request):
        requests.append(request)
        body = b'event: text\ndata: {"content": "ok"}\n\nevent: text\ndata: not json\n\n'
        return httpx.Response(200, headers=SSE_CONTENT_TYPE, content=body)

    client = _mock_client(handler)
    state = client.send("hi")

    assert state.status == "error"
    assert state.error == "Malformed text event from server"
    assert state.text == "ok"

    # 失败后不再处于忙碌状态，可以重试
    state = client.retry()
    assert len(requests) == 2
    assert state.status == "error"


def test_non_event_stream_response_is_an_error():
    def handler(request):
        return httpx.Response(200, json={"ok": True})

    state = _mock_client(handler).send("hi")

    assert state.status == "error"
    assert state.error
