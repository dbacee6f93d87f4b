import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from event_agent.domain.conversation import MessageRecord
from event_agent.domain.exceptions import BusinessError
from event_agent.infrastructure.storage.json_store import JsonConversationStore
from event_agent.tools.definitions import ToolCall


def _record(conv_id, mid, role, content="", turn_id=1, **kwargs):
    return MessageRecord(
        id=mid,
        conversation_id=conv_id,
        role=role,
        content=content,
        turn_id=turn_id,
        created_at=datetime.now(timezone.utc),
        **kwargs,
    )


def test_json_store_create_and_messages():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d) / ".storage")
        conv = store.create_conversation("user-1", {"profile": {"organizationName": "Acme"}})
        assert conv.status == "active"

        call = ToolCall(id="call_1", name="searchVendors", arguments={"category": "av"}, raw_arguments='{"category":"av"}')
        store.append_message(_record(conv.id, "m1", "user", "find AV"))
        store.append_message(_record(conv.id, "m2", "assistant", "", tool_calls=[call]))
        store.append_message(_record(conv.id, "m3", "tool", '{"success": true}', tool_call_id="call_1"))

        msgs = store.list_messages(conv.id)
        assert [m.id for m in msgs] == ["m1", "m2", "m3"]
        assert msgs[1].tool_calls == [call]
        assert msgs[2].tool_call_id == "call_1"
        assert msgs[0].tool_calls is None

        loaded = store.get_conversation(conv.id)
        assert loaded.context["profile"]["organizationName"] == "Acme"
        assert loaded.updated_at >= conv.updated_at


def test_json_store_status_updates():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d) / ".storage")
        conv = store.create_conversation("user-1", {})
        other = store.create_conversation("user-2", {})

        done = store.mark_complete(conv.id, "evt_9")
        assert done.status == "completed"
        assert done.entity_id == "evt_9"

        updated = store.update_context(conv.id, {"draft": {"title": "DevConf"}})
        assert updated.context == {"draft": {"title": "DevConf"}}
        assert updated.entity_id == "evt_9"

        store.update_status(other.id, "abandoned")
        assert store.get_conversation(other.id).status == "abandoned"
        assert [c.id for c in store.list_conversations(user_id="user-1")] == [conv.id]
        assert len(store.list_conversations()) == 2


def test_json_store_missing_conversation():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d) / ".storage")
        with pytest.raises(BusinessError) as exc:
            store.get_conversation("c-missing")
        assert exc.value.code == "CONVERSATION_NOT_FOUND"
        with pytest.raises(BusinessError):
            store.append_message(_record("c-missing", "m1", "user"))
        assert store.list_messages("c-missing") == []


def test_json_store_accepts_str_root():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=str(Path(d) / "nested" / ".storage"))
        conv = store.create_conversation("user-1", {})

        assert (Path(d) / "nested" / ".storage" / "conversations" / conv.id / "meta.json").exists()
