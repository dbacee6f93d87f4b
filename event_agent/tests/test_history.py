from datetime import datetime, timezone

import pytest

from event_agent.agents.confirmations import PendingConfirmationQueue
from event_agent.agents.history import build_provider_messages
from event_agent.domain.conversation import MessageRecord
from event_agent.domain.exceptions import AlreadyResolved, UnknownToolCall
from event_agent.domain.models import AssistantMessage, SystemMessage, ToolResultMessage, UserMessage
from event_agent.prompts import load_system_prompt, render_system_prompt
from event_agent.tools.definitions import ToolCall


def _rec(mid, role, content="", turn_id=1, **kwargs):
    return MessageRecord(
        id=mid,
        conversation_id="c1",
        role=role,
        content=content,
        turn_id=turn_id,
        created_at=datetime.now(timezone.utc),
        **kwargs,
    )


def test_unanswered_tool_calls_are_dropped_and_results_follow_their_call():
    search = ToolCall(id="s1", name="searchVendors", arguments={})
    create = ToolCall(id="c1", name="createEvent", arguments={"title": "X"})
    records = [
        _rec("1", "user", "plan an event"),
        _rec("2", "assistant", "Searching and creating", tool_calls=[search, create]),
        _rec("3", "tool", '{"success": true}', tool_call_id="s1"),
        _rec("4", "user", "what next?", turn_id=2),
        _rec("5", "assistant", "", turn_id=2, tool_calls=[ToolCall(id="u1", name="updateEvent", arguments={})]),
    ]

    messages = build_provider_messages("system", records, max_context=20)

    assert messages == [
        SystemMessage(content="system"),
        UserMessage(content="plan an event"),
        AssistantMessage(content="Searching and creating", tool_calls=[search]),
        ToolResultMessage(content='{"success": true}', tool_call_id="s1"),
        UserMessage(content="what next?"),
    ]


def test_late_confirmed_result_moves_next_to_its_call():
    create = ToolCall(id="c1", name="createEvent", arguments={})
    records = [
        _rec("1", "user", "create it"),
        _rec("2", "assistant", "Please confirm", tool_calls=[create]),
        _rec("3", "user", "also find AV", turn_id=2),
        _rec("4", "assistant", "Sure", turn_id=2),
        _rec("5", "tool", "created", turn_id=2, tool_call_id="c1"),
    ]

    messages = build_provider_messages("", records, max_context=20)

    assert [type(m).__name__ for m in messages] == [
        "UserMessage",
        "AssistantMessage",
        "ToolResultMessage",
        "UserMessage",
        "AssistantMessage",
    ]


def test_trimming_drops_orphaned_results():
    records = [
        _rec("1", "assistant", "", tool_calls=[ToolCall(id="a", name="searchVendors", arguments={})]),
        _rec("2", "tool", "result", tool_call_id="a"),
        _rec("3", "user", "hi", turn_id=2),
    ]
    messages = build_provider_messages("sys", records, max_context=2)
    assert messages == [SystemMessage(content="sys"), UserMessage(content="hi")]


def test_pending_queue_is_first_in_first_out():
    queue = PendingConfirmationQueue()
    first = ToolCall(id="a", name="createEvent", arguments={})
    second = ToolCall(id="b", name="addVendorToEvent", arguments={})
    queue.register("conv", [first, second])

    assert queue.first("conv") == first
    assert queue.resolve("conv", "a", "createEvent") == first
    assert queue.first("conv") == second
    with pytest.raises(AlreadyResolved):
        queue.resolve("conv", "a", "createEvent")
    with pytest.raises(UnknownToolCall):
        queue.resolve("other", "b", "addVendorToEvent")

    assert queue.discard("conv") == [second]
    assert queue.pending("conv") == []
    with pytest.raises(AlreadyResolved):
        queue.resolve("conv", "b", "addVendorToEvent")


def test_system_prompt_with_profile_context():
    base = load_system_prompt()
    assert "createEvent" in base
    rendered = render_system_prompt(base, {"profile": {"organizationName": "Acme", "eventTypes": ["meetup"]}})
    assert rendered.startswith(base)
    assert "- Organization: Acme" in rendered
    assert "- Event Types: meetup" in rendered
    assert render_system_prompt(base, {}) == base
